"""Tests for the optimization pipeline: equivalence, clustering, change detection."""

from __future__ import annotations

import pytest

from mutagraph.cast import parse_module
from mutagraph.coverage import CoverageIndex, TraceEvent
from mutagraph.mutation.models import SiteResult, Verdict
from mutagraph.mutation.scanner import scan_modules
from mutagraph.operators import CATALOG, select_operators
from mutagraph.pipeline import ChangeDetector, ClusterSelector, EquivalenceFilter, SubsumptionReducer

ADD = "tests/test_calc.py::test_add"
SCALE = "tests/test_calc.py::test_scale"


def digests(module) -> dict[str, str]:
    return {f.id: f.digest for f in module.forms}


class TestEquivalenceFilter:
    def test_split(self, calc_module):
        ops = select_operators(ids=["aor:add->sub", "aor:mul->div", "aor:mul->add"])
        sites = scan_modules([calc_module], ops)
        kept, equivalent = EquivalenceFilter({"calc.py": calc_module}, {op.id: op for op in ops}).split(sites)
        assert [s.operator_id for s in kept] == ["aor:add->sub", "aor:mul->add"]
        assert len(equivalent) == 1
        result = equivalent[0]
        assert result.site.operator_id == "aor:mul->div"
        assert result.verdict is Verdict.EQUIVALENT
        assert result.reason.startswith("multiplicative-identity")
        assert result.tests == []

    def test_length_comparison(self):
        module = parse_module("def empty(s):\n    return len(s) > 0\n", "m.py")
        ops = select_operators(ids=["ror:gt->ge", "ror:gt->ne"])
        sites = scan_modules([module], ops)
        kept, equivalent = EquivalenceFilter({"m.py": module}, {op.id: op for op in ops}).split(sites)
        assert [s.operator_id for s in kept] == ["ror:gt->ge"]
        assert [r.site.operator_id for r in equivalent] == ["ror:gt->ne"]


class TestSiteSubsumption:
    def test_reduce_sites_per_location(self):
        module = parse_module("def f(a, b):\n    return a < b, b < a\n", "m.py")
        ops = [op for op in CATALOG if op.family == "ror:lt"]
        sites = scan_modules([module], ops)
        reduced = SubsumptionReducer(ops).reduce_sites(sites)
        assert len(sites) == 14
        assert [s.operator_id for s in reduced] == ["ror:lt->le", "ror:lt->ne", "ror:lt->false"] * 2
        assert len({s.location for s in reduced}) == 2


class TestClustering:
    @pytest.fixture
    def sites(self, calc_module):
        return scan_modules([calc_module], select_operators(ids=["ror:gt->lt", "ror:gt->ge", "aor:add->sub"]))

    def test_no_clustering(self, sites):
        clusters = ClusterSelector().group(sites)
        assert len(clusters) == len(sites)
        assert all(c.followers == [] for c in clusters)

    def test_by_location_picks_hardest(self, sites):
        clusters = ClusterSelector("location").group(sites)
        assert len(clusters) == 2
        comparison = next(c for c in clusters if len(c.members) == 2)
        assert comparison.representative.operator_id == "ror:gt->ge"
        assert [s.operator_id for s in comparison.followers] == ["ror:gt->lt"]

    def test_ties_go_to_scan_order(self, calc_module):
        sites = scan_modules([calc_module], select_operators(ids=["aor:add->sub", "aor:sub->add"]))
        cluster = ClusterSelector("shape").group(sites)[0]
        assert len(cluster.members) == 2
        assert cluster.representative is sites[0]

    def test_by_operator(self, sites):
        keys = [c.key for c in ClusterSelector("operator").group(sites)]
        assert keys == [("operator", "aor:add->sub"), ("operator", "ror:gt->lt"), ("operator", "ror:gt->ge")]

    def test_prefix_trim(self, calc_module):
        sites = scan_modules([calc_module], select_operators(ids=["aor:add->sub", "aor:mul->div"]))
        assert len(ClusterSelector("location").group(sites)) == 2
        trimmed = ClusterSelector("location", prefix_trim=10).group(sites)
        assert len(trimmed) == 2  # different forms never share a cluster

    def test_unknown_key(self):
        with pytest.raises(ValueError):
            ClusterSelector("colour")

    def test_propagate(self, sites):
        selector = ClusterSelector("location")
        cluster = next(c for c in selector.group(sites) if len(c.members) == 2)
        rep = SiteResult(site=cluster.representative, tests=[ADD]).settle(Verdict.SURVIVED)
        followers = selector.propagate(cluster, rep)
        assert len(followers) == 1
        assert followers[0].verdict is Verdict.SURVIVED
        assert followers[0].propagated_from == cluster.representative.id
        assert followers[0].tests == [ADD]


class TestChangeDetector:
    def test_first_run_everything_is_new(self, calc_module):
        changes = ChangeDetector({}).detect([calc_module])
        assert changes.changed == {f.id for f in calc_module.forms}
        assert set(changes.reasons.values()) == {"new"}

    def test_unchanged(self, calc_module):
        changes = ChangeDetector(digests(calc_module)).detect([calc_module])
        assert changes.changed == set()
        assert changes.unchanged == {f.id for f in calc_module.forms}

    def test_modified_form(self, calc_module, calc_source):
        edited = parse_module(calc_source.replace("n - 1", "n - 2"), "calc.py")
        changes = ChangeDetector(digests(calc_module)).detect([edited])
        assert changes.changed == {"calc.py::untested"}
        assert changes.reasons["calc.py::untested"] == "modified"
        assert changes.is_changed("calc.py::untested")
        assert not changes.is_changed("calc.py::add")

    def test_moving_a_form_is_not_a_change(self, calc_module, calc_source):
        shifted = parse_module("\n\n" + calc_source, "calc.py")
        changes = ChangeDetector(digests(calc_module)).detect([shifted])
        assert changes.changed == set()

    def test_removed_form(self, calc_module):
        previous = digests(calc_module)
        previous["calc.py::gone"] = "0" * 16
        changes = ChangeDetector(previous).detect([calc_module])
        assert changes.removed == {"calc.py::gone"}

    def test_full_run(self, calc_module):
        changes = ChangeDetector(digests(calc_module)).detect([calc_module], full=True)
        assert changes.unchanged == set()
        assert set(changes.reasons.values()) == {"full run"}

    def test_covering_tests_moved(self, calc_module):
        locations = {"calc.py::add": ("calc.py", 4)}
        before = CoverageIndex().fold([TraceEvent(ADD, "calc.py::add", (2, 0))])
        before.add_locations(locations)
        after = CoverageIndex().fold([TraceEvent(ADD, "calc.py::add", (2, 0)), TraceEvent(SCALE, "calc.py::add", (2, 0))])
        after.add_locations(locations)

        changes = ChangeDetector(digests(calc_module)).detect([calc_module], before, after)
        assert changes.changed == {"calc.py::add"}
        assert changes.reasons["calc.py::add"] == "covering tests changed"

    def test_covering_test_file_edited(self, calc_module):
        index = CoverageIndex().fold([TraceEvent(ADD, "calc.py::add", (2, 0))])
        index.add_locations({"calc.py::add": ("calc.py", 4)})
        changes = ChangeDetector(digests(calc_module)).detect(
            [calc_module], index, index, changed_units={"tests/test_calc.py"}
        )
        assert changes.changed == {"calc.py::add"}

        unrelated = ChangeDetector(digests(calc_module)).detect(
            [calc_module], index, index, changed_units={"tests/test_other.py"}
        )
        assert unrelated.changed == set()
