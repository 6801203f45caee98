"""Persisted correspondence between flows, their spec files and generated files."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Literal

from ..utils import parse_iso
from .content import ContentHasher, ContentUnavailableError
from .runtime import project_state_dir
from .test_output import TestSummary

logger = logging.getLogger(__name__)

MappingMode = Literal["new", "update"]

MAPPING_FILENAME = "mapping.json"
SPEC_ROOT = "specs/domains"


def flow_key(domain_id: str, flow_id: str) -> str:
    """Key identifying a flow within a project."""
    return f"{domain_id}/{flow_id}"


def split_flow_key(key: str) -> tuple[str, str]:
    domain_id, _, flow_id = key.partition("/")
    if not domain_id or not flow_id:
        raise ValueError(f"Invalid flow key: {key!r}")
    return domain_id, flow_id


def default_spec_path(domain_id: str, flow_id: str) -> str:
    return f"{SPEC_ROOT}/{domain_id}/flows/{flow_id}.yaml"


class PersistenceError(OSError):
    """A persisted document could not be written; in-memory state is still valid."""


class MappingPersistenceError(PersistenceError):
    """The mapping document could not be saved."""


@dataclass
class FlowMapping:
    """Correspondence record for one flow."""

    spec: str
    spec_hash: str
    files: list[str] = field(default_factory=list)
    file_hashes: dict[str, str] = field(default_factory=dict)
    implemented_at: datetime = field(default_factory=datetime.now)
    mode: MappingMode = "new"
    test_results: TestSummary | None = None

    def to_dict(self) -> dict:
        return {
            "spec": self.spec,
            "spec_hash": self.spec_hash,
            "files": list(self.files),
            "file_hashes": dict(self.file_hashes),
            "implemented_at": self.implemented_at.isoformat(),
            "mode": self.mode,
            "test_results": self.test_results.to_dict() if self.test_results else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> FlowMapping:
        raw_hashes = data.get("file_hashes") or {}
        raw_tests = data.get("test_results")
        return cls(
            spec=str(data.get("spec", "")),
            spec_hash=str(data.get("spec_hash", "")),
            files=[str(item) for item in data.get("files", [])],
            file_hashes={str(k): str(v) for k, v in raw_hashes.items()} if isinstance(raw_hashes, dict) else {},
            implemented_at=parse_iso(data.get("implemented_at")) or datetime.now(),
            mode="update" if data.get("mode") == "update" else "new",
            test_results=TestSummary.from_dict(raw_tests) if isinstance(raw_tests, dict) else None,
        )


class MappingStore:
    """In-memory flow mappings backed by ``.ddd/mapping.json``.

    Every mutation replaces the in-memory entry before writing. A failed write
    raises MappingPersistenceError but leaves the in-memory change in place;
    the next successful save persists it.
    """

    def __init__(self, project_path: Path, hasher: ContentHasher | None = None):
        self.project_path = project_path.resolve()
        self.hasher = hasher or ContentHasher(self.project_path)
        self.path = project_state_dir(self.project_path, create=False) / MAPPING_FILENAME
        self._mappings: dict[str, FlowMapping] = {}

    def load(self) -> dict[str, FlowMapping]:
        self._mappings = {}
        if not self.path.exists():
            return self.all()
        try:
            raw = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load flow mappings from %s: %s", self.path, e)
            return self.all()

        flows = raw.get("flows", {}) if isinstance(raw, dict) else {}
        if not isinstance(flows, dict):
            return self.all()
        for key, item in flows.items():
            if isinstance(item, dict):
                self._mappings[str(key)] = FlowMapping.from_dict(item)
        return self.all()

    def save(self) -> None:
        payload = {"flows": {key: mapping.to_dict() for key, mapping in self._mappings.items()}}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2))
        except OSError as e:
            raise MappingPersistenceError(f"Failed to save flow mappings to {self.path}: {e}") from e

    def get(self, key: str) -> FlowMapping | None:
        return self._mappings.get(key)

    def all(self) -> dict[str, FlowMapping]:
        return dict(self._mappings)

    def put(self, key: str, mapping: FlowMapping) -> None:
        self._mappings[key] = mapping
        self.save()

    def record(
        self,
        key: str,
        spec_path: str,
        files: list[str],
        test_results: TestSummary | None = None,
    ) -> FlowMapping:
        """Record a successful implementation run for ``key``."""
        try:
            spec_hash = self.hasher.hash(spec_path)
        except ContentUnavailableError as e:
            logger.warning("Recording %s without a spec hash: %s", key, e)
            spec_hash = ""

        ordered_files = list(dict.fromkeys(files))
        file_hashes: dict[str, str] = {}
        for file in ordered_files:
            digest = self.hasher.try_hash(file)
            if digest:
                file_hashes[file] = digest

        mapping = FlowMapping(
            spec=spec_path,
            spec_hash=spec_hash,
            files=ordered_files,
            file_hashes=file_hashes,
            implemented_at=datetime.now(),
            mode="update" if key in self._mappings else "new",
            test_results=test_results,
        )
        self._mappings[key] = mapping
        self.save()
        return mapping

    def update_spec_hash(self, key: str, new_hash: str) -> FlowMapping:
        """Mark a spec change as accepted without touching the file hashes."""
        mapping = self._require(key)
        updated = replace(mapping, spec_hash=new_hash)
        self._mappings[key] = updated
        self.save()
        return updated

    def refresh_file_hashes(self, key: str) -> FlowMapping:
        """Accept out-of-band edits by re-hashing every file of ``key``."""
        mapping = self._require(key)
        file_hashes = dict(mapping.file_hashes)
        for file in mapping.files:
            digest = self.hasher.try_hash(file)
            if digest:
                file_hashes[file] = digest
        updated = replace(mapping, file_hashes=file_hashes)
        self._mappings[key] = updated
        self.save()
        return updated

    def attach_test_results(self, key: str, summary: TestSummary) -> FlowMapping | None:
        mapping = self._mappings.get(key)
        if mapping is None:
            return None
        updated = replace(mapping, test_results=summary)
        self._mappings[key] = updated
        self.save()
        return updated

    def _require(self, key: str) -> FlowMapping:
        mapping = self._mappings.get(key)
        if mapping is None:
            raise KeyError(f"No mapping recorded for {key}")
        return mapping
