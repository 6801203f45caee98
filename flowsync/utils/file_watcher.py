"""Debounced watching of flow spec files."""

from __future__ import annotations

import fnmatch
import logging
import threading
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

SPEC_PATTERNS = ("*.yaml", "*.yml")


class _DebouncedSpecHandler(FileSystemEventHandler):
    """Collect spec file events and deliver them in one batch after a quiet period."""

    def __init__(
        self,
        on_change: Callable[[list[Path]], None],
        patterns: tuple[str, ...],
        debounce_ms: int,
    ):
        super().__init__()
        self.on_change = on_change
        self.patterns = patterns
        self.debounce_ms = debounce_ms
        self._timer: threading.Timer | None = None
        self._pending: dict[str, None] = {}
        self._lock = threading.Lock()

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in {"created", "modified", "deleted", "moved"}:
            return
        paths = [event.src_path]
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.append(dest)

        matched = [p for p in paths if self._matches(Path(p))]
        if not matched:
            return

        with self._lock:
            for path in matched:
                self._pending[str(path)] = None
            if self._timer:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce_ms / 1000.0, self._flush)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()

    def _matches(self, path: Path) -> bool:
        return any(fnmatch.fnmatch(path.name, pattern) for pattern in self.patterns)

    def _flush(self) -> None:
        with self._lock:
            changed = [Path(p) for p in self._pending]
            self._pending.clear()
            self._timer = None
        if not changed:
            return
        try:
            self.on_change(changed)
        except Exception:
            logger.exception("Spec change callback failed for %d file(s)", len(changed))


class SpecWatcher:
    """Watch a project's spec tree and report changed spec files.

    Usage:
        watcher = SpecWatcher(project_path, on_change=lambda paths: controller.detect_drift())
        watcher.start()
        # ... later
        watcher.stop()
    """

    def __init__(
        self,
        project_path: Path,
        on_change: Callable[[list[Path]], None],
        spec_dir: str = "specs",
        patterns: tuple[str, ...] = SPEC_PATTERNS,
        debounce_ms: int = 750,
    ):
        self.root = project_path.resolve() / spec_dir
        self._handler = _DebouncedSpecHandler(on_change, patterns, debounce_ms)
        self._observer: Observer | None = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> bool:
        """Start watching. Returns False when the spec directory does not exist."""
        if self._observer is not None:
            return True
        if not self.root.is_dir():
            logger.info("Spec directory %s not found; not watching", self.root)
            return False
        observer = Observer()
        observer.schedule(self._handler, str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        return True

    def stop(self) -> None:
        if self._observer is None:
            return
        self._handler.cancel()
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._observer = None

    def __enter__(self) -> SpecWatcher:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
