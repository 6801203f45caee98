"""Shared utilities for flowsync."""

from .datetime_utils import parse_iso, timestamp_slug


# Lazy import for SpecWatcher to avoid the watchdog dependency at import time
def __getattr__(name):
    if name == "SpecWatcher":
        from .file_watcher import SpecWatcher
        return SpecWatcher
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    "SpecWatcher",
    "parse_iso",
    "timestamp_slug",
]
