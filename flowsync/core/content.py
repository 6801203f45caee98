"""Content hashing and local file access for change detection.

Digests are SHA-256 over the raw file bytes. They detect change; they are not
an integrity guarantee.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024


class ContentUnavailableError(OSError):
    """A file could not be read, so no digest exists for it.

    Missing files raise this rather than hashing as empty content: callers must
    be able to tell "vanished" apart from "now empty".
    """

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Cannot read {path}: {reason}")
        self.path = path
        self.reason = reason


class FileContentProvider(Protocol):
    """File operations the core expects from its host environment."""

    def read(self, path: str | Path) -> bytes: ...

    def write(self, path: str | Path, content: str | bytes) -> None: ...

    def delete(self, path: str | Path) -> None: ...

    def exists(self, path: str | Path) -> bool: ...

    def hash(self, path: str | Path) -> str: ...


class ContentHasher:
    """Compute content digests for paths relative to a project root."""

    def __init__(self, root: Path | None = None):
        self.root = root.resolve() if root else None

    def resolve(self, path: str | Path) -> Path:
        candidate = Path(path)
        if candidate.is_absolute() or self.root is None:
            return candidate
        return self.root / candidate

    def hash(self, path: str | Path) -> str:
        target = self.resolve(path)
        digest = hashlib.sha256()
        try:
            with open(target, "rb") as f:
                for chunk in iter(lambda: f.read(_READ_CHUNK), b""):
                    digest.update(chunk)
        except FileNotFoundError as exc:
            raise ContentUnavailableError(target, "file not found") from exc
        except OSError as exc:
            raise ContentUnavailableError(target, exc.strerror or str(exc)) from exc
        return digest.hexdigest()

    def try_hash(self, path: str | Path) -> str | None:
        """Best-effort variant: None when the file cannot be read."""
        try:
            return self.hash(path)
        except ContentUnavailableError as exc:
            logger.debug("Skipping hash: %s", exc)
            return None


class LocalFileProvider:
    """FileContentProvider backed by the local filesystem."""

    def __init__(self, root: Path):
        self.hasher = ContentHasher(root)

    def read(self, path: str | Path) -> bytes:
        target = self.hasher.resolve(path)
        try:
            return target.read_bytes()
        except OSError as exc:
            raise ContentUnavailableError(target, exc.strerror or str(exc)) from exc

    def write(self, path: str | Path, content: str | bytes) -> None:
        target = self.hasher.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding="utf-8")

    def delete(self, path: str | Path) -> None:
        self.hasher.resolve(path).unlink(missing_ok=True)

    def exists(self, path: str | Path) -> bool:
        return self.hasher.resolve(path).exists()

    def hash(self, path: str | Path) -> str:
        return self.hasher.hash(path)
