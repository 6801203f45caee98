"""Append-only audit reports for drift reconciliation decisions."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal

from ..utils import parse_iso, timestamp_slug
from .mapping import PersistenceError
from .runtime import project_state_dir

logger = logging.getLogger(__name__)

ReconciliationAction = Literal["accept", "reimplement", "ignore"]
RECONCILIATION_ACTIONS: tuple[str, ...] = ("accept", "reimplement", "ignore")
# Only these actions resolve a drift entry and leave an audit record.
AUDITED_ACTIONS: tuple[str, ...] = ("accept", "ignore")

REPORTS_DIRNAME = "reconciliations"


class ReportPersistenceError(PersistenceError):
    """An audit report could not be written."""


@dataclass(frozen=True)
class ReconciliationEntry:
    """One resolved drift entry."""

    flow_key: str
    action: ReconciliationAction
    previous_hash: str
    new_hash: str
    resolved_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "flow_key": self.flow_key,
            "action": self.action,
            "previous_hash": self.previous_hash,
            "new_hash": self.new_hash,
            "resolved_at": self.resolved_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ReconciliationEntry:
        return cls(
            flow_key=str(data.get("flow_key", "")),
            action=data.get("action", "accept"),
            previous_hash=str(data.get("previous_hash", "")),
            new_hash=str(data.get("new_hash", "")),
            resolved_at=parse_iso(data.get("resolved_at")) or datetime.now(),
        )


@dataclass(frozen=True)
class ReconciliationReport:
    """One batch of resolutions with the sync score around it."""

    report_id: str
    timestamp: datetime
    entries: tuple[ReconciliationEntry, ...]
    sync_score_before: int
    sync_score_after: int

    @classmethod
    def create(
        cls,
        entries: list[ReconciliationEntry],
        sync_score_before: int,
        sync_score_after: int,
    ) -> ReconciliationReport:
        return cls(
            report_id=uuid.uuid4().hex[:12],
            timestamp=datetime.now(),
            entries=tuple(entries),
            sync_score_before=sync_score_before,
            sync_score_after=sync_score_after,
        )

    def to_dict(self) -> dict:
        return {
            "report_id": self.report_id,
            "timestamp": self.timestamp.isoformat(),
            "entries": [entry.to_dict() for entry in self.entries],
            "sync_score_before": self.sync_score_before,
            "sync_score_after": self.sync_score_after,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ReconciliationReport:
        timestamp = parse_iso(data.get("timestamp")) or datetime.now()
        return cls(
            report_id=str(data.get("report_id", "")),
            timestamp=timestamp,
            entries=tuple(
                ReconciliationEntry.from_dict(item) for item in data.get("entries", []) if isinstance(item, dict)
            ),
            sync_score_before=int(data.get("sync_score_before", 0) or 0),
            sync_score_after=int(data.get("sync_score_after", 0) or 0),
        )


class ReconciliationStore:
    """Write each report to its own timestamp-named file; never overwrite."""

    def __init__(self, project_path: Path):
        self.reports_dir = project_state_dir(project_path, create=False) / REPORTS_DIRNAME

    def save_report(self, report: ReconciliationReport) -> Path:
        slug = timestamp_slug(report.timestamp)
        try:
            self.reports_dir.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(report.to_dict(), indent=2)
            for attempt in range(100):
                name = f"{slug}.json" if attempt == 0 else f"{slug}_{attempt:02d}.json"
                report_path = self.reports_dir / name
                try:
                    with open(report_path, "x", encoding="utf-8") as f:
                        f.write(payload)
                except FileExistsError:
                    continue
                return report_path
        except OSError as e:
            raise ReportPersistenceError(f"Failed to save reconciliation report {report.report_id}: {e}") from e
        raise ReportPersistenceError(f"No free report filename for {slug}")

    def list_reports(self, limit: int = 50) -> list[ReconciliationReport]:
        """Most recent first."""
        if not self.reports_dir.exists():
            return []
        reports: list[ReconciliationReport] = []
        for path in sorted(self.reports_dir.glob("*.json"), reverse=True)[:limit]:
            try:
                reports.append(ReconciliationReport.from_dict(json.loads(path.read_text())))
            except (json.JSONDecodeError, OSError) as e:
                logger.warning("Skipping unreadable reconciliation report %s: %s", path, e)
        return reports

    def load_report(self, report_id: str) -> ReconciliationReport | None:
        for report in self.list_reports(limit=10_000):
            if report.report_id == report_id:
                return report
        return None
