"""Enumeration of the flows (logical units) known to a project."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .mapping import SPEC_ROOT, default_spec_path, flow_key

SPEC_SUFFIXES = (".yaml", ".yml")


@dataclass(frozen=True)
class ProjectUnit:
    """One flow of one domain."""

    domain_id: str
    flow_id: str
    name: str = ""
    # Project-relative spec file as found on disk; empty means the conventional path.
    spec_file: str = field(default="", compare=False)

    @property
    def key(self) -> str:
        return flow_key(self.domain_id, self.flow_id)

    @property
    def display_name(self) -> str:
        return self.name or self.flow_id

    @property
    def spec_path(self) -> str:
        return self.spec_file or default_spec_path(self.domain_id, self.flow_id)


class UnitEnumerator(Protocol):
    """Source of the full set of flows in the current project."""

    def units(self) -> list[ProjectUnit]: ...


class StaticUnitEnumerator:
    """Units supplied up front by the host (e.g. from already-parsed domain configs)."""

    def __init__(self, units: list[ProjectUnit]):
        self._units = list(units)

    def units(self) -> list[ProjectUnit]:
        return list(self._units)


class SpecTreeEnumerator:
    """List flows from the ``specs/domains/<domain>/flows/<flow>.yaml`` layout.

    Only file names are used; spec contents are never parsed.
    """

    def __init__(self, project_path: Path, spec_root: str = SPEC_ROOT):
        self.project_path = project_path.resolve()
        self.root = self.project_path / spec_root

    def units(self) -> list[ProjectUnit]:
        if not self.root.is_dir():
            return []
        found: list[ProjectUnit] = []
        for domain_dir in sorted(p for p in self.root.iterdir() if p.is_dir()):
            flows_dir = domain_dir / "flows"
            if not flows_dir.is_dir():
                continue
            for spec in sorted(flows_dir.iterdir()):
                if spec.is_file() and spec.suffix in SPEC_SUFFIXES:
                    found.append(
                        ProjectUnit(
                            domain_id=domain_dir.name,
                            flow_id=spec.stem,
                            spec_file=spec.relative_to(self.project_path).as_posix(),
                        )
                    )
        return found
