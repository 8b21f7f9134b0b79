"""Sequences the mutation pipeline and tallies verdicts.

source -> CAST -> scanner -> equivalence filter -> subsumption reducer ->
cluster selector -> {applier | schemata} -> targeted tests -> verdicts.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

from mutagraph.cast.address import cursor_at
from mutagraph.cast.models import ParsedModule
from mutagraph.config import BACKUP_DIR, STATE_DB_FILE, ProjectConfig, get_mutagraph_dir
from mutagraph.coverage.index import CoverageIndex, CoverageRefresher, changed_test_units
from mutagraph.coverage.store import StateStore
from mutagraph.coverage.trace import (
    ExhaustiveTraceOracle,
    FormLocationBridge,
    RecordedTraceOracle,
    TraceOracle,
)
from mutagraph.exceptions import MutationApplyFailure, TestError, TestTimeout
from mutagraph.mutation.applier import MutationApplier, recover_backups
from mutagraph.mutation.models import MutationSite, RunReport, SiteResult, Verdict
from mutagraph.mutation.scanner import scan_modules
from mutagraph.mutation.schemata import SchemaBundle, SchemataCompiler
from mutagraph.operators.catalog import select_operators
from mutagraph.pipeline.changes import ChangeDetector
from mutagraph.pipeline.clustering import ClusterSelector
from mutagraph.pipeline.equivalence import EquivalenceFilter
from mutagraph.pipeline.subsumption import SubsumptionReducer
from mutagraph.runner.base import BytecodeReloader, Executor, Reloader, RunOutcome
from mutagraph.sources import collect_files, load_modules

logger = logging.getLogger("mutagraph.orchestrator")

FINGERPRINT_KEY = "config_fingerprint"
LAST_RUN_KEY = "last_run"


class Orchestrator:
    """Runs one mutation-testing pass over a project.

    Mutated files are handled one at a time. Within a file, "apply, run
    tests, revert" (or "select mutant, run tests") is a single section under
    that file's lock, so at most one mutated state per file ever exists.
    A RevertFailure is never caught here and aborts the run.
    """

    def __init__(
        self,
        root: str | Path,
        config: ProjectConfig,
        executor: Executor,
        oracle: TraceOracle | None = None,
        bridge: FormLocationBridge | None = None,
        store: StateStore | None = None,
        reloader: Reloader | None = None,
        progress_callback: callable | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.config = config
        self.executor = executor
        self.oracle = oracle
        self.bridge = bridge
        mg_dir = get_mutagraph_dir(self.root)
        self.store = store or StateStore(mg_dir / STATE_DB_FILE)
        self.backup_dir = mg_dir / BACKUP_DIR
        self.reloader = reloader or BytecodeReloader()
        self.progress_callback = progress_callback
        self.operators = select_operators(config.scan.preset, config.scan.operators or None)
        self._file_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def run(self, full: bool = False) -> RunReport:
        """Execute the pipeline; unchanged forms reuse their previous verdicts."""
        started = time.perf_counter()
        recover_backups(self.root, self.backup_dir)

        files = collect_files(self.root, self.config.scan)
        modules, skipped = load_modules(self.root, files)
        report = RunReport(files_scanned=len(modules), files_skipped=skipped)

        # Coverage
        previous_units = self.store.load_units()
        previous_index = CoverageIndex.from_units(previous_units.values())
        oracle = self.oracle or self._default_oracle(modules)
        bridge = self.bridge or oracle
        refresher = CoverageRefresher(self.root, oracle, bridge, self.config.coverage.refresh_workers)
        tests = self.executor.discover(self.config.coverage.test_paths)
        units, stale = refresher.refresh(previous_units, tests)
        index = CoverageIndex.from_units(units.values())
        logger.info(f"Coverage: {len(tests)} tests in {len(units)} units, {len(stale)} recomputed")

        # Change detection
        fingerprint = self.config.fingerprint()
        stored_fingerprint = self.store.get_metadata(FINGERPRINT_KEY)
        if stored_fingerprint is not None and stored_fingerprint != fingerprint:
            logger.info("Mutation settings changed since the last run; running everything")
            full = True
        detector = ChangeDetector({} if full else self.store.load_digests())
        changes = detector.detect(
            modules.values(),
            previous_index,
            index,
            changed_test_units(previous_units, units),
            full=full,
        )
        report.forms_changed = len(changes.changed)
        report.forms_reused = len(changes.unchanged)

        # Candidates
        sites = scan_modules(list(modules.values()), self.operators, changes.changed, self.config.scan.pragma)
        report.candidates = len(sites)
        results: list[SiteResult] = []
        if self.config.reduction.equivalence:
            sites, equivalent = EquivalenceFilter(modules, {op.id: op for op in self.operators}).split(sites)
            results.extend(equivalent)
        if self.config.reduction.subsumption:
            reduced = SubsumptionReducer(self.operators).reduce_sites(sites)
            report.subsumed = len(sites) - len(reduced)
            sites = reduced

        # Execution
        selector = ClusterSelector(self.config.reduction.cluster_by, self.config.reduction.cluster_prefix_trim)
        clusters = selector.group(sites)
        representatives = [c.representative for c in clusters]
        executed = self.execute(representatives, modules, index)
        report.executed = len(representatives)
        for cluster in clusters:
            rep_result = executed[cluster.representative.id]
            results.append(rep_result)
            results.extend(selector.propagate(cluster, rep_result))

        # Reuse and persist
        reused = self.store.load_results(changes.unchanged)
        self._rebase(reused, modules)
        report.results = sorted(reused + results, key=lambda r: (r.site.file, r.site.line, r.site.order))
        report.duration_ms = (time.perf_counter() - started) * 1000

        self.store.save_units(units)
        self.store.save_digests(changes.digests)
        self.store.save_results([r.model_copy(update={"reused": False}) for r in report.results])
        self.store.set_metadata(FINGERPRINT_KEY, fingerprint)
        self.store.set_metadata(LAST_RUN_KEY, {"counts": report.counts, "score": report.score})
        return report

    def _rebase(self, reused: list[SiteResult], modules: dict[str, ParsedModule]) -> None:
        """Mark stored results as reused and move their lines to where each form sits now."""
        forms = {form.id: form for module in modules.values() for form in module.forms}
        for result in reused:
            result.reused = True
            form = forms.get(result.site.form_id)
            if form is None:
                continue
            line = cursor_at(form.tree, result.site.coordinate, form.start_line).line
            if line != result.site.line:
                result.site = result.site.model_copy(update={"line": line})

    def _default_oracle(self, modules: dict[str, ParsedModule]):
        if self.config.coverage.mode == "exhaustive":
            return ExhaustiveTraceOracle(modules.values())
        return RecordedTraceOracle(self.root / self.config.coverage.trace_file)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(
        self,
        sites: list[MutationSite],
        modules: dict[str, ParsedModule],
        index: CoverageIndex,
    ) -> dict[str, SiteResult]:
        """Settle every site: select tests, then run mutants file by file."""
        results: dict[str, SiteResult] = {}
        by_file: dict[str, list[SiteResult]] = defaultdict(list)
        for site in sites:
            result = SiteResult(site=site, tests=sorted(index.tests_at(site.file, site.line, site.coordinate)))
            results[site.id] = result
            if site.replacement is None:
                result.settle(Verdict.ERROR, "replacement generator failed")
            elif not result.tests:
                result.settle(Verdict.NO_COVERAGE)
            else:
                by_file[site.file].append(result)

        applier = MutationApplier(self.root, modules, self.backup_dir)
        compiler = SchemataCompiler(modules)
        total = len(by_file)
        for i, (file, pending) in enumerate(by_file.items()):
            if self.progress_callback:
                self.progress_callback(file, i + 1, total)
            with self._file_locks[file]:
                self._execute_file(applier, compiler, file, pending)
        return results

    def _execute_file(
        self,
        applier: MutationApplier,
        compiler: SchemataCompiler,
        file: str,
        pending: list[SiteResult],
    ) -> None:
        by_id = {r.site.id: r for r in pending}
        sites = [r.site for r in pending]
        if self.config.execution.schemata:
            batches, single = compiler.partition(sites, self.config.execution.schemata_batch_size)
            for batch in batches:
                try:
                    bundle = compiler.compile(file, batch)
                except MutationApplyFailure as e:
                    logger.warning(f"Schema for {file} rejected ({e}); applying its mutants one at a time")
                    single.extend(batch)
                    continue
                self._run_bundle(applier, bundle, [by_id[s.id] for s in batch])
        else:
            single = sites
        for site in sorted(single, key=lambda s: s.order):
            self._run_single(applier, by_id[site.id])

    def _run_bundle(self, applier: MutationApplier, bundle: SchemaBundle, results: list[SiteResult]) -> None:
        """One install and one reload for the batch, one more after restore."""
        path = self.root / bundle.file
        with applier.installed(bundle.file, bundle.source, label=f"schema of {len(results)} mutants"):
            if self._reload(path):
                for result in results:
                    self._run_tests(result, active_mutant=bundle.selector_for(result.site))
            else:
                for result in results:
                    result.settle(Verdict.ERROR, "reload after installing schema failed")
        self._reload(path)

    def _run_single(self, applier: MutationApplier, result: SiteResult) -> None:
        path = self.root / result.site.file
        try:
            with applier.mutated(result.site):
                if self._reload(path):
                    self._run_tests(result)
                else:
                    result.settle(Verdict.ERROR, "reload after applying mutation failed")
        except MutationApplyFailure as e:
            result.settle(Verdict.ERROR, str(e))
            return
        self._reload(path)

    def _reload(self, path: Path) -> bool:
        if self.reloader.reload([path]):
            return True
        logger.warning(f"Reload of {path} failed")
        return False

    def _run_tests(self, result: SiteResult, active_mutant: str | None = None) -> None:
        """Run the site's covering tests and settle its verdict.

        The first failing, timed-out or broken test decides; tests not yet
        started are cancelled, running ones are awaited before returning.
        """
        timeout_s = self.config.execution.timeout_ms / 1000
        workers = max(1, self.config.execution.test_workers)
        verdict, reason = Verdict.SURVIVED, ""
        started = time.perf_counter()
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self.executor.run, test_id, timeout_s, active_mutant): test_id
                for test_id in result.tests
            }
            for future in as_completed(futures):
                test_id = futures[future]
                try:
                    outcome = future.result()
                except TestTimeout as e:
                    verdict, reason = Verdict.TIMEOUT, str(e)
                except TestError as e:
                    verdict, reason = Verdict.ERROR, str(e)
                else:
                    if outcome is RunOutcome.PASS:
                        continue
                    if outcome is RunOutcome.FAIL:
                        result.failed_tests.append(test_id)
                        verdict, reason = Verdict.KILLED, f"killed by {test_id}"
                    else:
                        verdict, reason = Verdict.ERROR, f"{test_id} could not run"
                for other in futures:
                    other.cancel()
                break
        result.duration_ms = (time.perf_counter() - started) * 1000
        result.settle(verdict, reason)
