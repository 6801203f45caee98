"""Shared runtime identity and storage helpers."""

from __future__ import annotations

import hashlib
import os
import tempfile
import uuid
from pathlib import Path

# Per-project state lives next to the specs so it travels with the repository.
STATE_DIR_NAME = ".ddd"


def _is_writable_dir(path: Path) -> bool:
    """Return whether path exists and accepts create/write/delete operations."""
    try:
        path.mkdir(parents=True, exist_ok=True)
        probe = path / f".fs-write-probe-{uuid.uuid4().hex}"
        probe.write_text("ok")
        probe.unlink(missing_ok=True)
        return True
    except OSError:
        return False


def resolve_runtime_home() -> Path:
    """Resolve the per-user runtime home with a writable fallback for restricted envs."""
    configured = os.environ.get("FLOWSYNC_HOME")
    if configured:
        path = Path(configured).expanduser()
        if _is_writable_dir(path):
            return path

    preferred = Path.home() / ".flowsync"
    if _is_writable_dir(preferred):
        return preferred

    fallback = Path(tempfile.gettempdir()) / "flowsync-runtime"
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def project_id_for_path(project_path: Path) -> str:
    """Return a stable project id derived from the absolute path."""
    return hashlib.md5(str(project_path.resolve()).encode("utf-8")).hexdigest()[:16]


def project_state_dir(project_path: Path, create: bool = True) -> Path:
    """Return (and by default create) the ``.ddd`` state directory of a project."""
    target = project_path.resolve() / STATE_DIR_NAME
    if create:
        target.mkdir(parents=True, exist_ok=True)
    return target
