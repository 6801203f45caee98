"""Core mapping, drift and reconciliation logic for Flowsync."""

from .content import ContentHasher, ContentUnavailableError, FileContentProvider, LocalFileProvider
from .drift import DriftDetector, DriftInfo, DriftResult, SyncScore, compute_sync_score
from .mapping import (
    FlowMapping,
    MappingPersistenceError,
    MappingStore,
    PersistenceError,
    default_spec_path,
    flow_key,
    split_flow_key,
)
from .reconciliation import (
    ReconciliationEntry,
    ReconciliationReport,
    ReconciliationStore,
    ReportPersistenceError,
)
from .runtime import project_id_for_path, project_state_dir, resolve_runtime_home
from .settings import ImplementationSettings, SettingsStore
from .test_output import TestCase, TestOutputParser, TestSummary, parse_test_output
from .units import ProjectUnit, SpecTreeEnumerator, StaticUnitEnumerator, UnitEnumerator

__all__ = [
    "ContentHasher",
    "ContentUnavailableError",
    "FileContentProvider",
    "LocalFileProvider",
    "DriftDetector",
    "DriftInfo",
    "DriftResult",
    "SyncScore",
    "compute_sync_score",
    "FlowMapping",
    "MappingStore",
    "PersistenceError",
    "MappingPersistenceError",
    "flow_key",
    "split_flow_key",
    "default_spec_path",
    "ReconciliationEntry",
    "ReconciliationReport",
    "ReconciliationStore",
    "ReportPersistenceError",
    "project_id_for_path",
    "project_state_dir",
    "resolve_runtime_home",
    "ImplementationSettings",
    "SettingsStore",
    "TestCase",
    "TestSummary",
    "TestOutputParser",
    "parse_test_output",
    "ProjectUnit",
    "UnitEnumerator",
    "StaticUnitEnumerator",
    "SpecTreeEnumerator",
]
