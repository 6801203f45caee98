"""Drift detection between recorded hashes and current file contents.

Forward drift: the spec changed after the flow was implemented.
Reverse drift: an implementation file was edited after it was recorded.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from .content import ContentHasher, ContentUnavailableError
from .mapping import FlowMapping
from .settings import DriftPrecedence
from .units import ProjectUnit

logger = logging.getLogger(__name__)

DriftDirection = Literal["forward", "reverse"]


@dataclass(frozen=True)
class DriftInfo:
    """One flow whose recorded hash no longer matches its content."""

    flow_key: str
    flow_name: str
    domain_id: str
    spec_path: str
    previous_hash: str
    current_hash: str
    implemented_at: datetime
    detected_at: datetime
    direction: DriftDirection
    changed_path: str

    def to_dict(self) -> dict:
        return {
            "flow_key": self.flow_key,
            "flow_name": self.flow_name,
            "domain_id": self.domain_id,
            "spec_path": self.spec_path,
            "previous_hash": self.previous_hash,
            "current_hash": self.current_hash,
            "implemented_at": self.implemented_at.isoformat(),
            "detected_at": self.detected_at.isoformat(),
            "direction": self.direction,
            "changed_path": self.changed_path,
        }


@dataclass(frozen=True)
class SyncScore:
    """How many of the project's flows match their recorded content."""

    total: int = 0
    implemented: int = 0
    stale: int = 0
    pending: int = 0
    score: int = 0

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "implemented": self.implemented,
            "stale": self.stale,
            "pending": self.pending,
            "score": self.score,
        }


@dataclass(frozen=True)
class DriftResult:
    """A drift list and the score computed from that same list."""

    items: tuple[DriftInfo, ...] = ()
    score: SyncScore = field(default_factory=SyncScore)

    def find(self, key: str) -> DriftInfo | None:
        return next((item for item in self.items if item.flow_key == key), None)

    @property
    def stale_keys(self) -> set[str]:
        return {item.flow_key for item in self.items}


def compute_sync_score(
    unit_keys: Iterable[str],
    mapped_keys: Iterable[str],
    stale_keys: Iterable[str],
) -> SyncScore:
    """Score = implemented / total, counting only flows the project knows about."""
    units = set(unit_keys)
    stale = set(stale_keys) & units
    implemented = len((set(mapped_keys) & units) - stale)
    total = len(units)
    pending = total - implemented - len(stale)
    score = round(implemented / total * 100) if total else 0
    return SyncScore(
        total=total,
        implemented=implemented,
        stale=len(stale),
        pending=pending,
        score=score,
    )


class DriftDetector:
    """Compare recorded hashes against current content for every project flow."""

    def __init__(
        self,
        hasher: ContentHasher,
        precedence: DriftPrecedence = "forward",
        max_workers: int = 8,
    ):
        self.hasher = hasher
        self.precedence = precedence
        self.max_workers = max_workers

    def detect(
        self,
        units: list[ProjectUnit],
        mappings: Mapping[str, FlowMapping],
        ignored: Iterable[str] = (),
    ) -> DriftResult:
        detected_at = datetime.now()
        candidates = [(unit, mappings[unit.key]) for unit in units if unit.key in mappings]

        found: list[DriftInfo | None] = []
        if candidates:
            workers = max(1, min(self.max_workers, len(candidates)))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                found = list(pool.map(lambda pair: self._examine(pair[0], pair[1], detected_at), candidates))

        suppressed = set(ignored)
        items = tuple(item for item in found if item is not None and item.flow_key not in suppressed)
        score = compute_sync_score(
            (unit.key for unit in units),
            mappings.keys(),
            (item.flow_key for item in items),
        )
        return DriftResult(items=items, score=score)

    def _examine(self, unit: ProjectUnit, mapping: FlowMapping, detected_at: datetime) -> DriftInfo | None:
        try:
            current_spec_hash = self.hasher.hash(mapping.spec)
        except ContentUnavailableError as e:
            logger.debug("Drift for %s is indeterminate: %s", unit.key, e)
            return None

        forward = None
        if current_spec_hash != mapping.spec_hash:
            forward = self._drift(unit, mapping, detected_at, "forward", mapping.spec_hash, current_spec_hash, mapping.spec)

        if self.precedence == "forward" and forward is not None:
            return forward
        reverse = self._first_changed_file(unit, mapping, detected_at)
        return reverse or forward

    def _first_changed_file(self, unit: ProjectUnit, mapping: FlowMapping, detected_at: datetime) -> DriftInfo | None:
        for file, stored_hash in mapping.file_hashes.items():
            current = self.hasher.try_hash(file)
            if current is None:
                continue
            if current != stored_hash:
                return self._drift(unit, mapping, detected_at, "reverse", stored_hash, current, file)
        return None

    def _drift(
        self,
        unit: ProjectUnit,
        mapping: FlowMapping,
        detected_at: datetime,
        direction: DriftDirection,
        previous_hash: str,
        current_hash: str,
        changed_path: str,
    ) -> DriftInfo:
        return DriftInfo(
            flow_key=unit.key,
            flow_name=unit.display_name,
            domain_id=unit.domain_id,
            spec_path=mapping.spec,
            previous_hash=previous_hash,
            current_hash=current_hash,
            implemented_at=mapping.implemented_at,
            detected_at=detected_at,
            direction=direction,
            changed_path=changed_path,
        )
