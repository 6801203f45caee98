"""Async subprocess runner with live output streaming and cancellation.

Uses asyncio.create_subprocess_exec, so arguments are never interpreted by a
shell. Long inputs (implementation prompts) go through a transient file fed to
the child's stdin instead of the command line.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal

from ..core.content import LocalFileProvider

logger = logging.getLogger(__name__)

RunStatus = Literal["pending", "running", "succeeded", "failed", "cancelled"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"succeeded", "failed", "cancelled"})

# Exit code reported when the process could not be started at all.
SPAWN_FAILURE_EXIT_CODE = -1
# Seconds between SIGTERM and SIGKILL after a cancel.
CANCEL_GRACE_SECONDS = 5.0
_READ_CHUNK = 4096


@dataclass
class ProcessResult:
    """Terminal outcome of one process run."""

    status: RunStatus
    exit_code: int | None = None
    output: str = ""
    error_message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return self.status == "succeeded"

    @property
    def cancelled(self) -> bool:
        return self.status == "cancelled"


class ProcessRunner:
    """Run one external command and stream its combined output to a sink.

    The terminal status is assigned exactly once. Whichever of cancel() and the
    natural exit gets there first wins; the other is a no-op.
    """

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        working_dir: Path | None = None,
        sink: Callable[[str], None] | None = None,
        input_text: str | None = None,
        input_file: str | Path | None = None,
        provider: LocalFileProvider | None = None,
    ):
        self.command = command
        self.args = list(args or [])
        self.working_dir = (working_dir or Path.cwd()).resolve()
        self.sink = sink
        self.input_text = input_text
        self.input_file = Path(input_file) if input_file else Path(".ddd") / ".impl-prompt.md"
        self.provider = provider or LocalFileProvider(self.working_dir)

        self._status: RunStatus = "pending"
        self._proc: asyncio.subprocess.Process | None = None
        self._chunks: list[str] = []
        self._exit_code: int | None = None
        self._error: str | None = None
        self._started_at: datetime | None = None
        self._finished_at: datetime | None = None
        self._kill_handle: asyncio.TimerHandle | None = None

    @property
    def status(self) -> RunStatus:
        return self._status

    @property
    def is_running(self) -> bool:
        return self._status == "running"

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def output(self) -> str:
        return "".join(self._chunks)

    @property
    def result(self) -> ProcessResult | None:
        if self._status not in TERMINAL_STATUSES:
            return None
        return ProcessResult(
            status=self._status,
            exit_code=self._exit_code,
            output=self.output,
            error_message=self._error,
            started_at=self._started_at,
            finished_at=self._finished_at,
        )

    async def run(self) -> ProcessResult:
        """Start the process and wait for it to finish, streaming output as it arrives."""
        if self._status != "pending":
            raise RuntimeError("Process runner already started")
        self._status = "running"
        self._started_at = datetime.now()

        stdin_handle = None
        wrote_input = False
        try:
            if self.input_text is not None:
                self.provider.write(self.input_file, self.input_text)
                wrote_input = True
                stdin_handle = open(self.provider.hasher.resolve(self.input_file), "rb")

            try:
                self._proc = await asyncio.create_subprocess_exec(
                    self.command,
                    *self.args,
                    cwd=self.working_dir,
                    stdin=stdin_handle if stdin_handle is not None else asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.STDOUT,
                )
            except OSError as exc:
                self._exit_code = SPAWN_FAILURE_EXIT_CODE
                self._finish("failed", f"Failed to spawn process '{self.command}': {exc}")
                return self.result

            if self._status == "cancelled":
                # cancel() arrived while the process was being spawned
                self._terminate()

            await self._pump_output()
            self._exit_code = await self._proc.wait()
            if self._exit_code == 0:
                self._finish("succeeded")
            else:
                self._finish("failed", f"Process exited with code {self._exit_code}")

        except asyncio.CancelledError:
            self.cancel()
            if self._proc is not None and self._proc.returncode is None:
                self._proc.kill()
                await self._proc.wait()
            raise
        except OSError as exc:
            logger.warning("Process run failed: %s", exc)
            self._finish("failed", f"Process error: {exc}")
        finally:
            if self._kill_handle is not None:
                self._kill_handle.cancel()
            if stdin_handle is not None:
                stdin_handle.close()
            if wrote_input:
                try:
                    self.provider.delete(self.input_file)
                except OSError as exc:
                    logger.warning("Failed to remove input file %s: %s", self.input_file, exc)

        return self.result

    def cancel(self) -> bool:
        """Request termination. Returns False when there was nothing to cancel."""
        if not self._finish("cancelled", "Run cancelled"):
            return False
        self._terminate()
        return True

    def _finish(self, status: RunStatus, error: str | None = None) -> bool:
        if self._status != "running":
            return False
        self._status = status
        self._error = error
        self._finished_at = datetime.now()
        return True

    def _terminate(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._kill_handle = loop.call_later(CANCEL_GRACE_SECONDS, self._kill_if_alive)

    def _kill_if_alive(self) -> None:
        proc = self._proc
        if proc is not None and proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass

    async def _pump_output(self) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        assert self._proc is not None and self._proc.stdout is not None
        while True:
            data = await self._proc.stdout.read(_READ_CHUNK)
            if not data:
                tail = decoder.decode(b"", final=True)
                if tail:
                    self._deliver(tail)
                return
            text = decoder.decode(data)
            if text:
                self._deliver(text)

    def _deliver(self, chunk: str) -> None:
        self._chunks.append(chunk)
        if self.sink is None:
            return
        try:
            self.sink(chunk)
        except Exception:
            logger.exception("Output sink failed; continuing run")
