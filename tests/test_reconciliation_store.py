"""Tests for reconciliation audit report storage."""

from datetime import datetime

import pytest

from flowsync.core.reconciliation import (
    ReconciliationEntry,
    ReconciliationReport,
    ReconciliationStore,
    ReportPersistenceError,
)


def _report(report_id: str, timestamp: datetime, before: int = 0, after: int = 100) -> ReconciliationReport:
    return ReconciliationReport(
        report_id=report_id,
        timestamp=timestamp,
        entries=(
            ReconciliationEntry(
                flow_key="orders/create-order",
                action="accept",
                previous_hash="old",
                new_hash="new",
                resolved_at=timestamp,
            ),
        ),
        sync_score_before=before,
        sync_score_after=after,
    )


class TestReconciliationStore:
    """Tests for ReconciliationStore."""

    def test_save_writes_timestamped_file(self, temp_dir):
        store = ReconciliationStore(temp_dir)

        path = store.save_report(_report("r1", datetime(2026, 3, 1, 9, 30, 0)))

        assert path.parent == temp_dir.resolve() / ".ddd" / "reconciliations"
        assert path.name.startswith("2026-03-01T09-30-00")
        assert path.suffix == ".json"

    def test_same_timestamp_never_overwrites(self, temp_dir):
        store = ReconciliationStore(temp_dir)
        moment = datetime(2026, 3, 1, 9, 30, 0)

        first = store.save_report(_report("r1", moment))
        second = store.save_report(_report("r2", moment))

        assert first != second
        assert {report.report_id for report in store.list_reports()} == {"r1", "r2"}

    def test_list_is_newest_first(self, temp_dir):
        store = ReconciliationStore(temp_dir)
        store.save_report(_report("old", datetime(2026, 1, 1, 8, 0, 0)))
        store.save_report(_report("new", datetime(2026, 2, 1, 8, 0, 0)))

        assert [report.report_id for report in store.list_reports()] == ["new", "old"]
        assert [report.report_id for report in store.list_reports(limit=1)] == ["new"]

    def test_round_trip_preserves_entries_and_scores(self, temp_dir):
        store = ReconciliationStore(temp_dir)
        original = _report("r1", datetime(2026, 3, 1, 9, 30, 0), before=33, after=67)
        store.save_report(original)

        loaded = store.load_report("r1")

        assert loaded == original

    def test_unreadable_reports_are_skipped(self, temp_dir):
        store = ReconciliationStore(temp_dir)
        store.save_report(_report("r1", datetime(2026, 3, 1, 9, 30, 0)))
        (store.reports_dir / "2026-12-31T00-00-00-000000.json").write_text("not json")

        assert [report.report_id for report in store.list_reports()] == ["r1"]

    def test_empty_store(self, temp_dir):
        store = ReconciliationStore(temp_dir)

        assert store.list_reports() == []
        assert store.load_report("missing") is None

    def test_write_failure_raises(self, temp_dir):
        (temp_dir / ".ddd").mkdir()
        (temp_dir / ".ddd" / "reconciliations").write_text("not a directory")
        store = ReconciliationStore(temp_dir)

        with pytest.raises(ReportPersistenceError):
            store.save_report(_report("r1", datetime(2026, 3, 1, 9, 30, 0)))


def test_create_assigns_id_and_timestamp():
    report = ReconciliationReport.create([], 10, 20)

    assert len(report.report_id) == 12
    assert report.sync_score_before == 10
    assert report.sync_score_after == 20
    assert report.entries == ()
