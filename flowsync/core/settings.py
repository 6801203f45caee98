"""User settings for implementation runs and test commands."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .runtime import resolve_runtime_home

logger = logging.getLogger(__name__)

DriftPrecedence = Literal["forward", "reverse"]


@dataclass
class ImplementationSettings:
    """Commands and post-run behaviour for the implementation panel."""

    agent_command: str = "claude"
    agent_args: list[str] = field(default_factory=lambda: ["--print", "--dangerously-skip-permissions"])
    test_command: str = "npm"
    test_args: list[str] = field(default_factory=lambda: ["test"])
    run_tests_after_implement: bool = False
    prompt_file: str = ".ddd/.impl-prompt.md"
    drift_precedence: DriftPrecedence = "forward"

    @classmethod
    def from_dict(cls, data: dict) -> ImplementationSettings:
        defaults = cls()
        agent = data.get("agent", {}) if isinstance(data.get("agent"), dict) else {}
        testing = data.get("testing", {}) if isinstance(data.get("testing"), dict) else {}

        def _args(raw, fallback: list[str]) -> list[str]:
            if not isinstance(raw, list):
                return list(fallback)
            return [str(item) for item in raw]

        precedence = data.get("drift_precedence", defaults.drift_precedence)
        if precedence not in ("forward", "reverse"):
            logger.warning("Unknown drift_precedence %r, using 'forward'", precedence)
            precedence = "forward"

        return cls(
            agent_command=str(agent.get("command") or defaults.agent_command),
            agent_args=_args(agent.get("args"), defaults.agent_args),
            test_command=str(testing.get("command") or defaults.test_command),
            test_args=_args(testing.get("args"), defaults.test_args),
            run_tests_after_implement=bool(agent.get("run_tests_after_implement", False)),
            prompt_file=str(data.get("prompt_file") or defaults.prompt_file),
            drift_precedence=precedence,
        )

    def to_dict(self) -> dict:
        return {
            "agent": {
                "command": self.agent_command,
                "args": list(self.agent_args),
                "run_tests_after_implement": self.run_tests_after_implement,
            },
            "testing": {
                "command": self.test_command,
                "args": list(self.test_args),
            },
            "prompt_file": self.prompt_file,
            "drift_precedence": self.drift_precedence,
        }


class SettingsStore:
    """Load and save ``settings.json`` from the runtime home."""

    def __init__(self, path: Path | None = None):
        self.path = path or (resolve_runtime_home() / "settings.json")

    def load(self) -> ImplementationSettings:
        if not self.path.exists():
            return ImplementationSettings()
        try:
            data = json.loads(self.path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to load settings from %s: %s", self.path, exc)
            return ImplementationSettings()
        if not isinstance(data, dict):
            return ImplementationSettings()
        return ImplementationSettings.from_dict(data)

    def save(self, settings: ImplementationSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(settings.to_dict(), indent=2))
