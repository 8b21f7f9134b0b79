"""End-to-end tests for the mutation pipeline."""

from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from mutagraph.config import BACKUP_DIR, MUTAGRAPH_DIR
from mutagraph.exceptions import RevertFailure
from mutagraph.mutation.applier import MutationApplier
from mutagraph.mutation.models import Verdict
from mutagraph.orchestrator import Orchestrator
from mutagraph.runner.pytest_runner import PytestExecutor

ADD = "tests/test_calc.py::test_add"


def sha(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()


def verdicts(report) -> dict[tuple[str, str], Verdict]:
    return {(r.site.form_id, r.site.operator_id): r.verdict for r in report.results}


@pytest.fixture
def make_orchestrator(tmp_project: Path, oracle, reloader):
    created: list[Orchestrator] = []

    def _make(config, executor, **kwargs) -> Orchestrator:
        kwargs.setdefault("oracle", oracle)
        kwargs.setdefault("reloader", reloader)
        orchestrator = Orchestrator(tmp_project, config, executor, **kwargs)
        created.append(orchestrator)
        return orchestrator

    yield _make
    for orchestrator in created:
        orchestrator.store.close()


class TestScenarios:
    def test_killed(self, make_orchestrator, make_config, executor, tmp_project: Path):
        before = sha(tmp_project / "calc.py")
        report = make_orchestrator(make_config("aor:add->sub"), executor).run()

        assert len(report.results) == 1
        result = report.results[0]
        assert result.verdict is Verdict.KILLED
        assert result.tests == [ADD]
        assert result.failed_tests == [ADD]
        assert report.score == 1.0
        assert sha(tmp_project / "calc.py") == before

    def test_provably_equivalent(self, make_orchestrator, make_config, executor):
        report = make_orchestrator(make_config("aor:mul->div"), executor).run()

        assert [r.verdict for r in report.results] == [Verdict.EQUIVALENT]
        assert "multiplicative-identity" in report.results[0].reason
        assert executor.calls == []
        assert report.score is None

    def test_no_coverage(self, make_orchestrator, make_config, executor):
        report = make_orchestrator(make_config("aor:sub->add"), executor).run()

        assert [r.verdict for r in report.results] == [Verdict.NO_COVERAGE]
        assert report.results[0].tests == []
        assert executor.calls == []

    def test_survived(self, make_orchestrator, make_config, executor):
        report = make_orchestrator(make_config("ror:gt->ge", "ror:gt->lt"), executor).run()

        assert verdicts(report) == {
            ("calc.py::is_positive", "ror:gt->ge"): Verdict.SURVIVED,
            ("calc.py::is_positive", "ror:gt->lt"): Verdict.KILLED,
        }
        assert report.score == 0.5
        assert [r.site.operator_id for r in report.survivors()] == ["ror:gt->ge"]

    def test_mixed_run(self, make_orchestrator, make_config, executor):
        config = make_config("aor:add->sub", "aor:mul->div", "aor:sub->add", "ror:gt->ge")
        report = make_orchestrator(config, executor).run()

        assert report.counts["killed"] == 1
        assert report.counts["survived"] == 1
        assert report.counts["no-coverage"] == 1
        assert report.counts["provably-equivalent"] == 1
        assert report.score == 0.5
        assert report.files_scanned == 1
        assert report.candidates == 4
        assert [r.site.line for r in report.results] == sorted(r.site.line for r in report.results)

    def test_timeout(self, make_orchestrator, make_config, make_executor):
        executor = make_executor(hang={ADD})
        report = make_orchestrator(make_config("aor:add->sub"), executor).run()

        assert report.results[0].verdict is Verdict.TIMEOUT

    def test_reload_failure_is_an_error(self, make_orchestrator, make_config, executor, reloader):
        reloader.ok = False
        report = make_orchestrator(make_config("aor:add->sub"), executor).run()

        assert report.results[0].verdict is Verdict.ERROR
        assert executor.calls == []


class TestExecutionModes:
    def test_schemata_batch_reloads_twice(self, make_orchestrator, make_config, executor, reloader):
        config = make_config("ror:gt->ge", "ror:gt->lt", "aor:add->sub")
        make_orchestrator(config, executor).run()

        # one reload after installing the schema, one after restoring
        assert len(reloader.calls) == 2
        assert {mutant for _test, mutant in executor.calls} == {"1", "2", "3"}

    def test_single_mode_matches_schemata(self, make_orchestrator, make_config, make_executor):
        ops = ("aor:add->sub", "ror:gt->ge", "ror:gt->lt")
        schemata = make_orchestrator(make_config(*ops), make_executor()).run()
        single_executor = make_executor()
        single = make_orchestrator(make_config(*ops, execution__schemata=False), single_executor).run(full=True)

        assert verdicts(single) == verdicts(schemata)
        assert all(mutant is None for _test, mutant in single_executor.calls)

    def test_statement_mutations_run_alone(
        self, make_orchestrator, make_config, executor, oracle, reloader, tmp_project: Path
    ):
        path = tmp_project / "calc.py"
        path.write_text(path.read_text() + "\n\ndef bump(n):\n    n += 1\n    return n\n")
        executor.tests["tests/test_calc.py::test_bump"] = "assert bump(1) == 2"
        oracle.coverage["tests/test_calc.py::test_bump"] = ["calc.py::bump"]

        report = make_orchestrator(make_config("aor:add->sub", "asg:iadd->isub"), executor).run()

        assert verdicts(report) == {
            ("calc.py::add", "aor:add->sub"): Verdict.KILLED,
            ("calc.py::bump", "asg:iadd->isub"): Verdict.KILLED,
        }
        # two reloads for the schema, two for the applied edit
        assert len(reloader.calls) == 4
        assert ("tests/test_calc.py::test_bump", None) in executor.calls

    def test_return_none_survives_falsy_return(self, make_orchestrator, make_config, executor):
        report = make_orchestrator(make_config("ret:value->none"), executor).run()

        by_line = {r.site.line: r.verdict for r in report.results}
        assert by_line[5] is Verdict.KILLED
        assert by_line[13] is Verdict.NO_COVERAGE
        assert by_line[19] is Verdict.SURVIVED

    def test_clustering_propagates(self, make_orchestrator, make_config, executor):
        config = make_config(
            "ror:gt->ge", "ror:gt->lt",
            reduction__cluster_by="location",
            reduction__subsumption=False,
        )
        report = make_orchestrator(config, executor).run()

        assert report.executed == 1
        by_op = {r.site.operator_id: r for r in report.results}
        assert by_op["ror:gt->ge"].verdict is Verdict.SURVIVED
        assert by_op["ror:gt->lt"].verdict is Verdict.SURVIVED
        assert by_op["ror:gt->lt"].propagated_from == by_op["ror:gt->ge"].site.id

    def test_subsumption_drops_dominated(self, make_orchestrator, make_config, executor):
        config = make_config("ror:gt->ge", "ror:gt->le")
        report = make_orchestrator(config, executor).run()

        assert report.candidates == 2
        assert report.subsumed == 1
        assert [r.site.operator_id for r in report.results] == ["ror:gt->ge"]

    def test_progress_callback(self, make_orchestrator, make_config, executor):
        seen = []
        orchestrator = make_orchestrator(
            make_config("aor:add->sub"),
            executor,
            progress_callback=lambda file, current, total: seen.append((file, current, total)),
        )
        orchestrator.run()
        assert seen == [("calc.py", 1, 1)]


class TestIncremental:
    def test_rerun_without_changes(self, make_orchestrator, make_config, make_executor, oracle):
        config = make_config("aor:add->sub", "ror:gt->ge")
        first = make_orchestrator(config, make_executor()).run()
        traced = len(oracle.traced)

        executor = make_executor()
        second = make_orchestrator(config, executor).run()

        assert second.forms_changed == 0
        assert second.candidates == 0
        assert executor.calls == []
        assert len(oracle.traced) == traced
        assert verdicts(second) == verdicts(first)
        assert all(r.reused for r in second.results)

    def test_edit_reruns_only_that_form(self, make_orchestrator, make_config, make_executor, tmp_project: Path):
        config = make_config("aor:add->sub", "aor:sub->add")
        make_orchestrator(config, make_executor()).run()

        path = tmp_project / "calc.py"
        path.write_text(path.read_text().replace("n - 1", "n - 2"))
        report = make_orchestrator(config, make_executor()).run()

        assert report.forms_changed == 1
        assert report.candidates == 1
        reused = {r.site.form_id: r.reused for r in report.results}
        assert reused == {"calc.py::add": True, "calc.py::untested": False}

    def test_reused_results_follow_moved_forms(
        self, make_orchestrator, make_config, make_executor, tmp_project: Path
    ):
        config = make_config("aor:add->sub", "ror:gt->ge")
        first = make_orchestrator(config, make_executor()).run()
        assert [r.site.line for r in first.results] == [5, 17]

        path = tmp_project / "calc.py"
        path.write_text(path.read_text().replace(
            '"""Tiny calculator used as a mutation target."""',
            '"""Tiny calculator.\n\nUsed as a mutation target.\n"""',
        ))
        second = make_orchestrator(config, make_executor()).run()

        assert all(r.reused for r in second.results)
        assert [r.site.line for r in second.results] == [8, 20]

        third = make_orchestrator(config, make_executor()).run()
        assert [r.site.line for r in third.results] == [8, 20]

    def test_full_flag(self, make_orchestrator, make_config, make_executor, calc_module):
        config = make_config("aor:add->sub")
        make_orchestrator(config, make_executor()).run()
        report = make_orchestrator(config, make_executor()).run(full=True)

        assert report.forms_changed == len(calc_module.forms)
        assert report.forms_reused == 0

    def test_config_change_forces_full_run(self, make_orchestrator, make_config, make_executor, calc_module):
        make_orchestrator(make_config("aor:add->sub"), make_executor()).run()
        report = make_orchestrator(make_config("aor:add->sub", "ror:gt->ge"), make_executor()).run()

        assert report.forms_changed == len(calc_module.forms)
        assert {r.site.operator_id for r in report.results} == {"aor:add->sub", "ror:gt->ge"}

    def test_stored_state(self, make_orchestrator, make_config, executor):
        orchestrator = make_orchestrator(make_config("aor:add->sub"), executor)
        orchestrator.run()

        assert orchestrator.store.verdict_counts() == {"killed": 1}
        assert orchestrator.store.get_metadata("last_run")["score"] == 1.0
        assert "tests/test_calc.py" in orchestrator.store.load_units()


class TestRecovery:
    def test_restores_backups_before_running(self, make_orchestrator, make_config, executor, tmp_project: Path):
        path = tmp_project / "calc.py"
        original = path.read_bytes()
        backups = tmp_project / MUTAGRAPH_DIR / BACKUP_DIR
        backups.mkdir(parents=True)
        (backups / "calc.py.orig").write_bytes(original)
        path.write_text("def add(a, b):\n    return a * b\n")

        report = make_orchestrator(make_config("aor:add->sub"), executor).run()

        assert path.read_bytes() == original
        assert report.results[0].verdict is Verdict.KILLED

    def test_revert_failure_aborts(self, make_orchestrator, make_config, executor, monkeypatch):
        def fail(self, handle):
            raise RevertFailure(f"Could not restore {handle.file}")

        monkeypatch.setattr(MutationApplier, "revert", fail)
        with pytest.raises(RevertFailure):
            make_orchestrator(make_config("aor:add->sub"), executor).run()


LOOP_SOURCE = "def countdown(n):\n    while n > 0:\n        n -= 1\n    return n\n"
LOOP_TEST = "from loop import countdown\n\n\ndef test_countdown():\n    assert countdown(3) == 0\n"


class TestPytestExecution:
    def test_infinite_loop_times_out(self, tmp_path: Path, make_config):
        (tmp_path / MUTAGRAPH_DIR).mkdir()
        (tmp_path / "loop.py").write_text(LOOP_SOURCE)
        (tmp_path / "tests").mkdir()
        (tmp_path / "tests" / "test_loop.py").write_text(LOOP_TEST)
        before = sha(tmp_path / "loop.py")

        config = make_config(
            "ror:gt->true",
            reduction__subsumption=False,
            coverage__mode="exhaustive",
            execution__timeout_ms=2000,
        )
        executor = PytestExecutor(tmp_path, extra_args=config.execution.pytest_args)
        orchestrator = Orchestrator(tmp_path, config, executor)
        try:
            report = orchestrator.run()
        finally:
            orchestrator.store.close()

        assert [r.verdict for r in report.results] == [Verdict.TIMEOUT]
        assert report.results[0].tests == ["tests/test_loop.py::test_countdown"]
        assert sha(tmp_path / "loop.py") == before
        assert not any((tmp_path / MUTAGRAPH_DIR / BACKUP_DIR).rglob("*.orig"))
