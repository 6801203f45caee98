"""Tests for drift detection and the sync score."""

import pytest

from flowsync.core.content import ContentHasher
from flowsync.core.drift import DriftDetector, compute_sync_score
from flowsync.core.mapping import MappingStore
from flowsync.core.units import ProjectUnit, SpecTreeEnumerator

SPEC = "specs/domains/orders/flows/create-order.yaml"
CODE = "src/orders/create-order.ts"
KEY = "orders/create-order"


def _recorded(project):
    store = MappingStore(project)
    store.record(KEY, SPEC, [CODE])
    return store


def _detect(project, units, store, **kwargs):
    ignored = kwargs.pop("ignored", ())
    detector = DriftDetector(ContentHasher(project), **kwargs)
    return detector.detect(units.units(), store.all(), ignored=ignored)


class TestDriftDetector:
    """Tests for DriftDetector."""

    def test_no_drift_right_after_record(self, sample_project, sample_units):
        store = _recorded(sample_project)

        result = _detect(sample_project, sample_units, store)

        assert result.items == ()

    def test_spec_change_is_forward_drift(self, sample_project, sample_units):
        store = _recorded(sample_project)
        previous = store.get(KEY).spec_hash
        (sample_project / SPEC).write_text("flow:\n  id: create-order\n  changed: true\n")

        result = _detect(sample_project, sample_units, store)

        assert len(result.items) == 1
        item = result.items[0]
        assert item.flow_key == KEY
        assert item.direction == "forward"
        assert item.previous_hash == previous
        assert item.current_hash == ContentHasher(sample_project).hash(SPEC)
        assert item.flow_name == "Create Order"
        assert item.changed_path == SPEC

    def test_forward_takes_precedence_over_reverse(self, sample_project, sample_units):
        store = _recorded(sample_project)
        (sample_project / SPEC).write_text("changed spec\n")
        (sample_project / CODE).write_text("changed code\n")

        result = _detect(sample_project, sample_units, store)

        assert [item.direction for item in result.items] == ["forward"]

    def test_reverse_precedence_is_configurable(self, sample_project, sample_units):
        store = _recorded(sample_project)
        (sample_project / SPEC).write_text("changed spec\n")
        (sample_project / CODE).write_text("changed code\n")

        result = _detect(sample_project, sample_units, store, precedence="reverse")

        assert [item.direction for item in result.items] == ["reverse"]

    def test_file_change_is_reverse_drift(self, sample_project, sample_units):
        store = _recorded(sample_project)
        (sample_project / CODE).write_text("export function createOrder() { return 42 }\n")

        result = _detect(sample_project, sample_units, store)

        assert len(result.items) == 1
        assert result.items[0].direction == "reverse"
        assert result.items[0].changed_path == CODE

    def test_deleted_spec_is_indeterminate(self, sample_project, sample_units):
        store = _recorded(sample_project)
        (sample_project / SPEC).unlink()

        result = _detect(sample_project, sample_units, store)

        assert result.items == ()

    def test_deleted_file_is_skipped(self, sample_project, sample_units):
        store = _recorded(sample_project)
        (sample_project / CODE).unlink()

        result = _detect(sample_project, sample_units, store)

        assert result.items == ()

    def test_ignored_keys_are_filtered(self, sample_project, sample_units):
        store = _recorded(sample_project)
        (sample_project / SPEC).write_text("changed spec\n")

        result = _detect(sample_project, sample_units, store, ignored={KEY})

        assert result.items == ()
        assert result.score.implemented == 1

    def test_score_is_published_with_items(self, sample_project, sample_units):
        store = _recorded(sample_project)
        (sample_project / SPEC).write_text("changed spec\n")

        result = _detect(sample_project, sample_units, store)

        assert result.stale_keys == {KEY}
        assert result.score.stale == 1
        assert result.score.implemented == 0
        assert result.score.pending == 2


class TestSyncScore:
    """Tests for compute_sync_score."""

    def test_mixed_population(self):
        score = compute_sync_score(["a/1", "a/2", "b/1", "b/2"], ["a/1", "a/2", "b/1"], ["a/2"])

        assert score.total == 4
        assert score.implemented == 2
        assert score.stale == 1
        assert score.pending == 1
        assert score.implemented + score.stale + score.pending == score.total
        assert score.score == 50

    @pytest.mark.parametrize(
        "units, mapped, stale",
        [
            ([], [], []),
            (["a/1", "a/2"], [], []),
            (["a/1", "a/2"], ["a/1", "a/2"], []),
            (["a/1", "a/2"], ["a/1", "a/2"], ["a/1", "a/2"]),
            (["a/1", "a/2", "b/1"], ["a/1", "gone/1"], ["b/1", "gone/1"]),
            (["a/1"], ["gone/1", "gone/2"], ["gone/1"]),
            (["a/1", "a/1", "a/2"], ["a/1", "a/1"], ["a/2", "a/2"]),
        ],
        ids=["empty", "all-pending", "all-implemented", "all-stale", "mixed-with-orphans", "only-orphans", "duplicates"],
    )
    def test_counts_add_up_to_total(self, units, mapped, stale):
        score = compute_sync_score(units, mapped, stale)

        assert score.total == len(set(units))
        assert min(score.implemented, score.stale, score.pending) >= 0
        assert score.implemented + score.stale + score.pending == score.total
        assert 0 <= score.score <= 100

    def test_mappings_for_unknown_flows_are_ignored(self):
        score = compute_sync_score(["a/1"], ["a/1", "gone/flow"], ["gone/flow"])

        assert score.total == 1
        assert score.implemented == 1
        assert score.stale == 0
        assert score.score == 100

    def test_empty_project_scores_zero(self):
        score = compute_sync_score([], [], [])

        assert score.total == 0
        assert score.score == 0

    def test_score_is_rounded(self):
        score = compute_sync_score(["a/1", "a/2", "a/3"], ["a/1", "a/2"], [])

        assert score.score == 67


def test_spec_tree_enumerator_lists_flows(sample_project):
    units = SpecTreeEnumerator(sample_project).units()

    assert units == [
        ProjectUnit("billing", "charge"),
        ProjectUnit("orders", "cancel-order"),
        ProjectUnit("orders", "create-order"),
    ]


def test_spec_tree_enumerator_keeps_yml_paths(sample_project):
    (sample_project / "specs/domains/orders/flows/ship.yml").write_text("name: Ship\n")

    units = {unit.key: unit for unit in SpecTreeEnumerator(sample_project).units()}

    assert units["orders/ship"].spec_path == "specs/domains/orders/flows/ship.yml"
    assert units["orders/create-order"].spec_path == SPEC


def test_spec_tree_enumerator_without_specs(temp_dir):
    assert SpecTreeEnumerator(temp_dir).units() == []
