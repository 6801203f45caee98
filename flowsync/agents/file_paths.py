"""Strategies for finding which files an implementation run touched.

Agent output is unstructured, so OutputPathExtractor is a heuristic: missed
files only reduce reverse-drift coverage for that flow. A run that writes a
JSON manifest can be read exactly with ManifestPathExtractor.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = (
    "ts", "tsx", "js", "jsx", "py", "rs", "go", "java", "rb", "css", "scss",
    "html", "json", "yaml", "yml", "sql", "graphql", "proto", "md",
)
EXCLUDED_PREFIXES = ("specs/", ".ddd/")

_EXT_RE = re.compile(r"\.(?:" + "|".join(SOURCE_EXTENSIONS) + r")$")
_VERB_RE = re.compile(
    r"(?:creat|modif|writ|wrote|updat|add|edit|generat)\w*\s+(?:to\s+)?[`\"']?([^\s`\"']+\.\w+)[`\"']?",
    re.IGNORECASE,
)
_BULLET_RE = re.compile(r"^\s*[-+*>●]\s+[`\"']?([^\s`\"']+\.\w+)")


class PathExtractor(Protocol):
    """text -> ordered, de-duplicated candidate paths relative to the project root."""

    def extract(self, text: str) -> list[str]: ...


def _clean(candidate: str) -> str:
    candidate = candidate.strip().rstrip(".,;:)")
    if candidate.startswith("./"):
        candidate = candidate[2:]
    return candidate


def _keep(path: str) -> bool:
    return bool(_EXT_RE.search(path)) and not path.startswith(EXCLUDED_PREFIXES)


class OutputPathExtractor:
    """Pick file paths out of free-form agent output."""

    def __init__(self, project_path: Path | None = None):
        self._abs_re: re.Pattern[str] | None = None
        if project_path is not None:
            root = re.escape(str(project_path.resolve()))
            self._abs_re = re.compile(root + r"/([^\s`\"']+\.[A-Za-z]+)")

    def extract(self, text: str) -> list[str]:
        found: dict[str, None] = {}
        for line in text.splitlines():
            for candidate in self._candidates(line):
                path = _clean(candidate)
                if _keep(path):
                    found.setdefault(path, None)
                    break
        return list(found)

    def _candidates(self, line: str) -> list[str]:
        candidates: list[str] = []
        if self._abs_re is not None:
            match = self._abs_re.search(line)
            if match:
                candidates.append(match.group(1))
        verb = _VERB_RE.search(line)
        if verb:
            candidates.append(verb.group(1))
        bullet = _BULLET_RE.match(line)
        if bullet:
            candidates.append(bullet.group(1))
        return candidates


class ManifestPathExtractor:
    """Read paths from a manifest the run wrote, falling back to another strategy."""

    def __init__(self, manifest_path: Path, fallback: PathExtractor | None = None):
        self.manifest_path = manifest_path
        self.fallback = fallback

    def extract(self, text: str) -> list[str]:
        paths = self._read_manifest()
        if paths is None:
            return self.fallback.extract(text) if self.fallback else []
        return paths

    def _read_manifest(self) -> list[str] | None:
        if not self.manifest_path.exists():
            return None
        try:
            raw = json.loads(self.manifest_path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable file manifest %s: %s", self.manifest_path, e)
            return None
        finally:
            self.manifest_path.unlink(missing_ok=True)

        items = raw.get("files") if isinstance(raw, dict) else raw
        if not isinstance(items, list):
            logger.warning("File manifest %s has no file list", self.manifest_path)
            return None
        paths = [_clean(str(item)) for item in items if isinstance(item, str)]
        return list(dict.fromkeys(p for p in paths if p and not p.startswith(EXCLUDED_PREFIXES)))
