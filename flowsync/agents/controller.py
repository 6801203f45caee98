"""Implementation runs and drift reconciliation for one open project.

The controller owns an explicit ImplementationSession: created by open(),
replaced by reset(), discarded by close(). Callers hold the controller (or the
session it hands out); nothing lives in module-level state.

Panel states::

    idle -> prompt_ready -> running -> done | failed
    done | failed -> idle           (implement_another)
    done | failed -> prompt_ready   (edit_and_retry)
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Literal, Protocol

from ..core.content import ContentHasher
from ..core.drift import DriftDetector, DriftInfo, DriftResult, compute_sync_score
from ..core.mapping import (
    FlowMapping,
    MappingStore,
    PersistenceError,
    default_spec_path,
    flow_key,
    split_flow_key,
)
from ..core.reconciliation import (
    AUDITED_ACTIONS,
    RECONCILIATION_ACTIONS,
    ReconciliationAction,
    ReconciliationEntry,
    ReconciliationReport,
    ReconciliationStore,
)
from ..core.settings import ImplementationSettings
from ..core.test_output import TestCase, TestSummary, parse_test_output
from ..core.units import ProjectUnit, UnitEnumerator
from .file_paths import OutputPathExtractor, PathExtractor
from .process_runner import SPAWN_FAILURE_EXIT_CODE, ProcessResult, ProcessRunner

logger = logging.getLogger(__name__)

PanelState = Literal["idle", "prompt_ready", "running", "done", "failed"]
RUNNABLE_STATES: tuple[str, ...] = ("prompt_ready", "failed")
FINISHED_STATES: tuple[str, ...] = ("done", "failed")


class InvalidTransitionError(RuntimeError):
    """The requested action is not allowed in the session's current state."""


@dataclass
class BuiltPrompt:
    """Instruction text for the coding agent, produced by an external prompt builder."""

    title: str
    content: str
    flow_id: str
    domain_id: str

    @property
    def key(self) -> str:
        return flow_key(self.domain_id, self.flow_id)


class PromptSource(Protocol):
    """Builds the prompt for (re)implementing a flow."""

    def build(self, unit: ProjectUnit, mapping: FlowMapping | None) -> BuiltPrompt: ...


@dataclass
class ImplementationSession:
    """Live, in-memory state of the implementation panel for one project."""

    session_id: str = field(default_factory=lambda: f"session-{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=datetime.now)
    state: PanelState = "idle"
    prompt: BuiltPrompt | None = None
    output: str = ""
    running: bool = False
    exit_code: int | None = None
    error: str | None = None
    test_results: TestSummary | None = None
    drift: DriftResult = field(default_factory=DriftResult)
    ignored: set[str] = field(default_factory=set)
    report_ids: list[str] = field(default_factory=list)

    def append_output(self, chunk: str) -> None:
        self.output += chunk


RunnerFactory = Callable[..., ProcessRunner]


class ReconciliationController:
    """Drive implementation runs, record mappings and resolve drift for a project."""

    def __init__(
        self,
        project_path: Path,
        units: UnitEnumerator,
        settings: ImplementationSettings | None = None,
        hasher: ContentHasher | None = None,
        path_extractor: PathExtractor | None = None,
        prompt_source: PromptSource | None = None,
        runner_factory: RunnerFactory = ProcessRunner,
    ):
        self.project_path = project_path.resolve()
        self.units = units
        self.settings = settings or ImplementationSettings()
        self.hasher = hasher or ContentHasher(self.project_path)
        self.mappings = MappingStore(self.project_path, self.hasher)
        self.reports = ReconciliationStore(self.project_path)
        self.detector = DriftDetector(self.hasher, precedence=self.settings.drift_precedence)
        self.path_extractor = path_extractor or OutputPathExtractor(self.project_path)
        self.prompt_source = prompt_source
        self._runner_factory = runner_factory
        self._session: ImplementationSession | None = None
        self._runner: ProcessRunner | None = None
        self._watcher = None
        self._lock = threading.RLock()

    # -- session lifecycle -------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._session is not None

    @property
    def session(self) -> ImplementationSession:
        if self._session is None:
            raise InvalidTransitionError("Project is not open")
        return self._session

    def open(self) -> ImplementationSession:
        """Load mappings, start a session and run an initial drift check."""
        if self._session is not None:
            return self._session
        self.mappings.load()
        self._session = ImplementationSession()
        self.detect_drift()
        return self._session

    def reset(self) -> ImplementationSession:
        """Replace the session; session-scoped ignores are forgotten."""
        if self._session is None:
            return self.open()
        self._cancel_active_runner()
        self._session = ImplementationSession()
        self.detect_drift()
        return self._session

    def close(self) -> None:
        self.stop_watching()
        self._cancel_active_runner()
        self._session = None

    # -- prompt handling ---------------------------------------------------

    def set_prompt(self, prompt: BuiltPrompt) -> ImplementationSession:
        session = self.session
        if session.state == "running":
            raise InvalidTransitionError("Cannot change the prompt while a run is in progress")
        session.prompt = prompt
        session.state = "prompt_ready"
        session.output = ""
        session.exit_code = None
        session.error = None
        session.test_results = None
        return session

    def update_prompt_content(self, content: str) -> BuiltPrompt:
        session = self.session
        if session.prompt is None:
            raise InvalidTransitionError("No prompt to edit")
        if session.state == "running":
            raise InvalidTransitionError("Cannot edit the prompt while a run is in progress")
        session.prompt = replace(session.prompt, content=content)
        return session.prompt

    def implement_another(self) -> ImplementationSession:
        session = self._require_state(FINISHED_STATES, "implement another flow")
        session.state = "idle"
        session.prompt = None
        session.output = ""
        session.exit_code = None
        session.error = None
        session.test_results = None
        return session

    def edit_and_retry(self) -> ImplementationSession:
        session = self._require_state(FINISHED_STATES, "edit and retry")
        if session.prompt is None:
            raise InvalidTransitionError("No prompt to retry")
        session.state = "prompt_ready"
        return session

    def fix_failing_test(self, case: TestCase) -> BuiltPrompt:
        """Prompt the agent to fix one failing test of the current flow."""
        prompt = self._require_prompt()
        content = "\n".join(
            [
                f"# Fix Failing Test: {case.name}",
                "",
                "Test error:",
                "```",
                case.error or "Unknown error",
                "```",
                "",
                f'Fix this failing test. The test is part of the implementation for flow "{prompt.flow_id}" '
                f'in domain "{prompt.domain_id}".',
                "",
                "Do not change the test expectations unless the spec has changed. "
                "Fix the implementation to match the test.",
            ]
        )
        fix = replace(prompt, title=f"Fix: {case.name}", content=content)
        self.set_prompt(fix)
        return fix

    def fix_runtime_error(self, description: str) -> BuiltPrompt:
        """Prompt the agent to repair a runtime error in the current flow."""
        prompt = self._require_prompt()
        content = "\n".join(
            [
                "# Fix Runtime Error",
                "",
                f'Flow: "{prompt.flow_id}" in domain "{prompt.domain_id}"',
                "",
                "## Error",
                "```",
                description,
                "```",
                "",
                "## Instructions",
                "The implementation for this flow has a runtime error. "
                "Read the existing code, identify the root cause, and fix it.",
                "- Do NOT rewrite from scratch; fix the existing implementation",
                "- Make sure the fix handles edge cases",
                "- Run the existing tests after fixing to ensure nothing breaks",
            ]
        )
        fix = replace(prompt, title=f"Fix runtime error: {prompt.flow_id}", content=content)
        self.set_prompt(fix)
        return fix

    # -- runs --------------------------------------------------------------

    def check_can_run(self) -> ImplementationSession:
        """Raise InvalidTransitionError unless an implementation run may start now."""
        session = self._require_state(RUNNABLE_STATES, "start a run")
        if session.prompt is None:
            raise InvalidTransitionError("No prompt to run")
        if not session.prompt.content.strip():
            raise InvalidTransitionError("Prompt is empty; provide prompt content before running")
        if self._runner is not None and self._runner.is_running:
            raise InvalidTransitionError("Another process is already running")
        return session

    async def run_implementation(self) -> ProcessResult:
        """Run the coding agent on the current prompt and record the result."""
        session = self.check_can_run()
        prompt = session.prompt

        session.state = "running"
        session.running = True
        session.output = ""
        session.exit_code = None
        session.error = None

        runner = self._runner_factory(
            command=self.settings.agent_command,
            args=self.settings.agent_args,
            working_dir=self.project_path,
            sink=session.append_output,
            input_text=prompt.content,
            input_file=self.settings.prompt_file,
        )
        self._runner = runner
        try:
            result = await runner.run()
        except asyncio.CancelledError:
            session.state = "failed"
            session.error = "Implementation cancelled"
            raise
        finally:
            session.running = False
            if self._runner is runner:
                self._runner = None

        session.exit_code = result.exit_code
        if not result.success:
            session.state = "failed"
            session.error = result.error_message
            logger.info("Implementation of %s ended with status %s", prompt.key, result.status)
            return result

        session.state = "done"
        self._record_run(session, prompt)
        if self.settings.run_tests_after_implement:
            await self.run_tests()
        return result

    def cancel_implementation(self) -> bool:
        """Ask the active process to stop. No-op when nothing is running."""
        runner = self._runner
        if runner is None:
            return False
        return runner.cancel()

    async def run_tests(self) -> TestSummary:
        """Run the configured test command and parse its output."""
        session = self.session
        if session.state == "running" or (self._runner is not None and self._runner.is_running):
            raise InvalidTransitionError("Another process is already running")

        session.append_output("\n--- Running tests ---\n")
        runner = self._runner_factory(
            command=self.settings.test_command,
            args=self.settings.test_args,
            working_dir=self.project_path,
            sink=session.append_output,
        )
        self._runner = runner
        try:
            result = await runner.run()
        finally:
            if self._runner is runner:
                self._runner = None

        if result.exit_code == SPAWN_FAILURE_EXIT_CODE:
            session.append_output(f"\nTest execution failed: {result.error_message}\n")

        summary = parse_test_output(result.output)
        session.test_results = summary
        if session.prompt is not None:
            try:
                self.mappings.attach_test_results(session.prompt.key, summary)
            except PersistenceError as e:
                self._note_persistence_failure(session, e)
        return summary

    # -- mappings ----------------------------------------------------------

    def get_mapping(self, key: str) -> FlowMapping | None:
        return self.mappings.get(key)

    def put_mapping(self, key: str, mapping: FlowMapping) -> FlowMapping:
        split_flow_key(key)
        try:
            self.mappings.put(key, mapping)
        except PersistenceError as e:
            self._note_persistence_failure(self.session, e)
        return mapping

    def _spec_path_for(self, prompt: BuiltPrompt) -> str:
        """Spec file for a flow: as enumerated, else as previously recorded, else conventional."""
        unit = next((item for item in self.units.units() if item.key == prompt.key), None)
        if unit is not None and unit.spec_file:
            return unit.spec_file
        existing = self.mappings.get(prompt.key)
        if existing is not None and existing.spec:
            return existing.spec
        return default_spec_path(prompt.domain_id, prompt.flow_id)

    def _record_run(self, session: ImplementationSession, prompt: BuiltPrompt) -> None:
        spec_path = self._spec_path_for(prompt)
        files = self.path_extractor.extract(session.output)
        try:
            self.mappings.record(prompt.key, spec_path, files)
        except PersistenceError as e:
            self._note_persistence_failure(session, e)
        logger.info("Recorded %s with %d implementation file(s)", prompt.key, len(files))
        self.detect_drift()

    # -- drift & reconciliation -------------------------------------------

    def detect_drift(self) -> DriftResult:
        """Recompute drift for every project flow and publish list and score together."""
        with self._lock:
            session = self.session
            result = self.detector.detect(self.units.units(), self.mappings.all(), ignored=session.ignored)
            session.drift = result
            return result

    def resolve(self, key: str, action: ReconciliationAction) -> ReconciliationReport | None:
        """Resolve one drift entry. Returns the audit report for accept/ignore."""
        if action not in RECONCILIATION_ACTIONS:
            raise ValueError(f"Unknown reconciliation action: {action!r}")
        with self._lock:
            session = self.session
            drift = session.drift.find(key)
            if drift is None:
                return None

            if action == "reimplement":
                self._prepare_reimplementation(drift)
                session.drift = self._rescore(session.drift.items)
                return None

            score_before = session.drift.score.score
            entry = self._apply(session, drift, action)
            remaining = [item for item in session.drift.items if item.flow_key != key]
            session.drift = self._rescore(remaining)
            return self._write_report(session, [entry], score_before, session.drift.score.score)

    def resolve_all(self, action: ReconciliationAction) -> ReconciliationReport | None:
        """Accept or ignore every listed drift entry as one audited batch."""
        if action not in AUDITED_ACTIONS:
            raise ValueError(f"resolve_all supports only {', '.join(AUDITED_ACTIONS)}, got {action!r}")
        with self._lock:
            session = self.session
            items = list(session.drift.items)
            if not items:
                return None
            score_before = session.drift.score.score
            entries = [self._apply(session, drift, action) for drift in items]
            session.drift = self._rescore([])
            return self._write_report(session, entries, score_before, session.drift.score.score)

    def list_reports(self, limit: int = 50) -> list[ReconciliationReport]:
        return self.reports.list_reports(limit=limit)

    def _apply(self, session: ImplementationSession, drift: DriftInfo, action: str) -> ReconciliationEntry:
        if action == "accept":
            try:
                if drift.direction == "forward":
                    self.mappings.update_spec_hash(drift.flow_key, drift.current_hash)
                else:
                    self.mappings.refresh_file_hashes(drift.flow_key)
            except PersistenceError as e:
                self._note_persistence_failure(session, e)
        else:
            session.ignored.add(drift.flow_key)
        return ReconciliationEntry(
            flow_key=drift.flow_key,
            action=action,
            previous_hash=drift.previous_hash,
            new_hash=drift.current_hash,
        )

    def _prepare_reimplementation(self, drift: DriftInfo) -> None:
        domain_id, flow_id = split_flow_key(drift.flow_key)
        unit = next(
            (item for item in self.units.units() if item.key == drift.flow_key),
            ProjectUnit(domain_id=domain_id, flow_id=flow_id, name=drift.flow_name),
        )
        if self.prompt_source is not None:
            prompt = self.prompt_source.build(unit, self.mappings.get(drift.flow_key))
        else:
            prompt = BuiltPrompt(
                title=f"Reimplement {unit.display_name}",
                content="",
                flow_id=flow_id,
                domain_id=domain_id,
            )
        self.set_prompt(prompt)

    def _rescore(self, items) -> DriftResult:
        items = tuple(items)
        score = compute_sync_score(
            (unit.key for unit in self.units.units()),
            self.mappings.all().keys(),
            (item.flow_key for item in items),
        )
        return DriftResult(items=items, score=score)

    def _write_report(
        self,
        session: ImplementationSession,
        entries: list[ReconciliationEntry],
        score_before: int,
        score_after: int,
    ) -> ReconciliationReport:
        report = ReconciliationReport.create(entries, score_before, score_after)
        try:
            self.reports.save_report(report)
        except PersistenceError as e:
            self._note_persistence_failure(session, e)
        session.report_ids.append(report.report_id)
        return report

    # -- spec watching -----------------------------------------------------

    def watch_specs(self, debounce_ms: int = 750) -> bool:
        """Re-run drift detection whenever a spec file changes."""
        if self._watcher is None:
            from ..utils.file_watcher import SpecWatcher

            self._watcher = SpecWatcher(self.project_path, on_change=self._on_specs_changed, debounce_ms=debounce_ms)
        return self._watcher.start()

    @property
    def is_watching(self) -> bool:
        return self._watcher is not None and self._watcher.is_running

    def stop_watching(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    def _on_specs_changed(self, paths: list[Path]) -> None:
        if self._session is None:
            return
        logger.info("%d spec file(s) changed; re-running drift detection", len(paths))
        self.detect_drift()

    # -- helpers -----------------------------------------------------------

    def _require_state(self, allowed: tuple[str, ...], action: str) -> ImplementationSession:
        session = self.session
        if session.state not in allowed:
            raise InvalidTransitionError(f"Cannot {action} from state '{session.state}'")
        return session

    def _require_prompt(self) -> BuiltPrompt:
        prompt = self.session.prompt
        if prompt is None:
            raise InvalidTransitionError("No current flow prompt")
        return prompt

    def _cancel_active_runner(self) -> None:
        if self._runner is not None:
            self._runner.cancel()
            self._runner = None

    @staticmethod
    def _note_persistence_failure(session: ImplementationSession, error: PersistenceError) -> None:
        logger.warning("%s", error)
        session.error = str(error)
