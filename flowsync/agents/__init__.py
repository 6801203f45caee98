"""Coding-agent process runs and the reconciliation controller."""

from .controller import (
    BuiltPrompt,
    ImplementationSession,
    InvalidTransitionError,
    PromptSource,
    ReconciliationController,
)
from .file_paths import ManifestPathExtractor, OutputPathExtractor, PathExtractor
from .process_runner import ProcessResult, ProcessRunner

__all__ = [
    "ReconciliationController",
    "ImplementationSession",
    "BuiltPrompt",
    "PromptSource",
    "InvalidTransitionError",
    "ProcessRunner",
    "ProcessResult",
    "OutputPathExtractor",
    "ManifestPathExtractor",
    "PathExtractor",
]
