"""Best-effort parsing of test-runner output.

The parser does not know which runner produced the text. Each line is matched
against an ordered list of recognizer rules (first match wins) covering TAP,
Go, cargo, pytest, mocha/jest/vitest glyphs and plain PASS/FAIL wording.
Parsing never raises: unrecognised output yields an empty summary.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal

CaseStatus = Literal["passed", "failed"]

# Error text collected after a failing case is cut off after this many lines.
MAX_ERROR_LINES = 30

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]|\x1b\([A-Za-z]|\x1b\][^\x07]*\x07|\x1b[=>]")
_DURATION_SUFFIX_RE = re.compile(r"\s*\((?P<value>\d+(?:\.\d+)?)\s*(?P<unit>ms|s)\)\s*$")
_SUMMARY_COUNT_RE = re.compile(r"(\d+)\s+(passing|passed|failing|failed)\b", re.IGNORECASE)
_TOTAL_DURATION_RE = re.compile(r"\b(?:Time|Duration):?\s*(\d+(?:\.\d+)?)\s*(ms|s)\b", re.IGNORECASE)
_PYTEST_ELAPSED_RE = re.compile(r"\bin\s+(\d+(?:\.\d+)?)s\b")
_PASS_WORDS = {"ok", "pass", "passed"}


def _strip_ansi(text: str) -> str:
    """Strip ANSI escape codes from terminal output."""
    return _ANSI_RE.sub("", text)


@dataclass
class TestCase:
    """One test as reported by the runner."""

    __test__ = False

    name: str
    status: CaseStatus
    duration: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "status": self.status,
            "duration": self.duration,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> TestCase:
        status = data.get("status", "failed")
        return cls(
            name=str(data.get("name", "")),
            status="passed" if status == "passed" else "failed",
            duration=float(data.get("duration", 0.0) or 0.0),
            error=data.get("error"),
        )


@dataclass
class TestSummary:
    """Aggregated outcome of one test run."""

    __test__ = False

    total: int = 0
    passed: int = 0
    failed: int = 0
    duration: float = 0.0
    cases: list[TestCase] = field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        return self.total > 0 and self.failed == 0

    @property
    def failing_cases(self) -> list[TestCase]:
        return [case for case in self.cases if case.status == "failed"]

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "duration": self.duration,
            "cases": [case.to_dict() for case in self.cases],
        }

    @classmethod
    def from_dict(cls, data: dict) -> TestSummary:
        return cls(
            total=int(data.get("total", 0) or 0),
            passed=int(data.get("passed", 0) or 0),
            failed=int(data.get("failed", 0) or 0),
            duration=float(data.get("duration", 0.0) or 0.0),
            cases=[TestCase.from_dict(item) for item in data.get("cases", []) if isinstance(item, dict)],
        )


@dataclass(frozen=True)
class _MarkerRule:
    """A recognizer for one per-test line convention.

    ``status`` is fixed for single-outcome rules; otherwise the ``result``
    group decides.
    """

    name: str
    pattern: re.Pattern[str]
    status: CaseStatus | None = None

    def status_for(self, match: re.Match[str]) -> CaseStatus:
        if self.status is not None:
            return self.status
        return "passed" if match.group("result").lower() in _PASS_WORDS else "failed"


# Anchored conventions; tried before summary detection.
_MARKER_RULES: tuple[_MarkerRule, ...] = (
    _MarkerRule("tap-not-ok", re.compile(r"^\s*not ok\s+\d+\b(?:\s*-)?\s*(?P<name>.*)$", re.IGNORECASE), "failed"),
    _MarkerRule("tap-ok", re.compile(r"^\s*ok\s+\d+\b(?:\s*-)?\s*(?P<name>.*)$", re.IGNORECASE), "passed"),
    _MarkerRule("go", re.compile(r"^\s*--- (?P<result>PASS|FAIL):\s*(?P<name>.+)$")),
    _MarkerRule("cargo", re.compile(r"^\s*test\s+(?P<name>\S+)\s+\.\.\.\s+(?P<result>ok|FAILED)\s*$")),
    _MarkerRule("pytest", re.compile(r"^\s*(?P<name>\S+::\S+)\s+(?P<result>PASSED|FAILED)\b")),
    _MarkerRule("check-glyph", re.compile(r"^\s*[✓✔√]\s*(?P<name>.*)$"), "passed"),
    _MarkerRule("cross-glyph", re.compile(r"^\s*[✗✘✕×]\s*(?P<name>.*)$"), "failed"),
    _MarkerRule("jest-file", re.compile(r"^\s*(?P<result>PASS|FAIL)\s+(?P<name>\S.*)$")),
)

# Loose convention; tried after summary detection so "3 passed" is not a test.
_TRAILING_WORD_RULE = _MarkerRule(
    "trailing-word",
    re.compile(r"^\s*(?P<name>\S.*?)\s*(?::|\s-|\.{2,})\s*(?P<result>passed|failed)\s*$", re.IGNORECASE),
)


class _ErrorBuffer:
    """Error lines being attributed to the most recent failing case."""

    def __init__(self):
        self.case: TestCase | None = None
        self.rule: _MarkerRule | None = None
        self.lines: list[str] = []

    @property
    def active(self) -> bool:
        return self.case is not None

    def start(self, case: TestCase, rule: _MarkerRule) -> None:
        self.case = case
        self.rule = rule
        self.lines = []

    def flush(self) -> None:
        if self.case is not None and self.lines:
            self.case.error = "\n".join(self.lines).rstrip()
        self.case = None
        self.rule = None
        self.lines = []

    @property
    def allows_loose_markers(self) -> bool:
        """Inside an error block only the failing case's own convention may start a new case."""
        return self.case is None or self.rule is _TRAILING_WORD_RULE


class TestOutputParser:
    """Convert unstructured test-runner output into a TestSummary."""

    __test__ = False

    def parse(self, text: str | None) -> TestSummary:
        if not text:
            return TestSummary()

        lines = _strip_ansi(text).splitlines()
        cases: list[TestCase] = []
        buffer = _ErrorBuffer()
        summary_passed = 0
        summary_failed = 0
        total_duration: float | None = None

        for index, line in enumerate(lines):
            loose = buffer.allows_loose_markers
            kind, rule, match = self._classify(line, loose=loose)

            if kind == "marker":
                buffer.flush()
                case = self._make_case(rule, match)
                if case is None:
                    continue
                cases.append(case)
                if case.status == "failed":
                    buffer.start(case, rule)
                continue

            if buffer.active:
                if not line.strip():
                    if buffer.lines and self._blank_line_ends_error(lines, index, loose=loose):
                        buffer.flush()
                        continue
                    if buffer.lines:
                        buffer.lines.append(line)
                else:
                    buffer.lines.append(line)
                if len(buffer.lines) >= MAX_ERROR_LINES:
                    buffer.flush()
                continue

            if kind == "summary":
                for count, word in _SUMMARY_COUNT_RE.findall(line):
                    if word.lower() in ("passing", "passed"):
                        summary_passed = int(count)
                    else:
                        summary_failed = int(count)
                elapsed = _PYTEST_ELAPSED_RE.search(line)
                if elapsed and total_duration is None:
                    total_duration = _to_seconds(elapsed.group(1), "s")

            duration_match = _TOTAL_DURATION_RE.search(line)
            if duration_match:
                parsed = _to_seconds(duration_match.group(1), duration_match.group(2))
                if parsed is not None:
                    total_duration = parsed

        buffer.flush()

        if cases:
            passed = sum(1 for case in cases if case.status == "passed")
            failed = len(cases) - passed
        else:
            passed, failed = summary_passed, summary_failed

        if total_duration is None:
            total_duration = round(sum((case.duration for case in cases), 0.0), 3)

        return TestSummary(
            total=passed + failed,
            passed=passed,
            failed=failed,
            duration=total_duration,
            cases=cases,
        )

    def _classify(self, line: str, loose: bool = True) -> tuple[str | None, _MarkerRule | None, re.Match[str] | None]:
        for rule in _MARKER_RULES:
            match = rule.pattern.match(line)
            if match:
                return "marker", rule, match
        if _SUMMARY_COUNT_RE.search(line):
            return "summary", None, None
        match = _TRAILING_WORD_RULE.pattern.match(line) if loose else None
        if match:
            return "marker", _TRAILING_WORD_RULE, match
        return None, None, None

    def _blank_line_ends_error(self, lines: list[str], index: int, loose: bool = True) -> bool:
        """A blank line closes an error block when the next text is a new test or a summary."""
        for following in lines[index + 1:]:
            if following.strip():
                kind, _, _ = self._classify(following, loose=loose)
                return kind is not None
        return False

    def _make_case(self, rule: _MarkerRule, match: re.Match[str]) -> TestCase | None:
        raw_name = match.group("name").strip()
        duration = 0.0
        suffix = _DURATION_SUFFIX_RE.search(raw_name)
        if suffix:
            duration = _to_seconds(suffix.group("value"), suffix.group("unit")) or 0.0
            raw_name = raw_name[: suffix.start()].strip()
        if not raw_name:
            return None
        return TestCase(name=raw_name, status=rule.status_for(match), duration=duration)


def _to_seconds(value: str, unit: str) -> float | None:
    try:
        number = float(value)
    except ValueError:
        return None
    return number / 1000 if unit.lower() == "ms" else number


def parse_test_output(text: str | None) -> TestSummary:
    """Parse test-runner output with the default rule set."""
    return TestOutputParser().parse(text)
