"""Invoker: run one process and stream its stdout as lines.

llm-stream-mcp runtime module v0.1.0

Invoker.run() spawns exactly one process, optionally writes an input
payload, feeds stdout through a LineSplitter and resolves to exactly one
ExitOutcome:

    invoker = Invoker()
    outcome = await invoker.run(
        "ollama", ["run", "llama3"], "Why is the sky blue?",
        on_line=print,
    )
    if not outcome.success:
        print(outcome.error_message)

Ordering guarantees:
- Lines reach on_line in stdout order, synchronously as each chunk is
  processed.
- The trailing unterminated line is flushed after stdout EOF.
- The outcome is produced only after stdout and stderr are both drained.

Stderr never reaches on_line. It is kept in a bounded buffer (oldest data
dropped first), forwarded to on_stderr, and attached to the outcome.

There is no timeout and no retry. A caller that wants to stop a process
cancels the awaiting task; the child process group is then terminated and
CancelledError propagates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import anyio

from .process_runner import (
    DEFAULT_READ_SIZE,
    AsyncioProcessBackend,
    ProcessBackend,
    ProcessHandle,
    ProcessSpec,
)
from .splitter import LineCallback, LineSplitter, StreamDecoder
from .types import ExitOutcome, StderrCallback

__all__ = [
    "Invoker",
    "collect_lines",
    "DEFAULT_STDERR_MAX_BYTES",
]

logger = logging.getLogger(__name__)

# Upper bound on retained stderr (4MB)
DEFAULT_STDERR_MAX_BYTES = 4 * 1024 * 1024


class _StderrBuffer:
    """Ring buffer of raw stderr chunks."""

    def __init__(self, max_bytes: int) -> None:
        self._max_bytes = max_bytes
        self._chunks: deque[bytes] = deque()
        self._size = 0
        self.dropped = 0

    def append(self, chunk: bytes) -> None:
        self._chunks.append(chunk)
        self._size += len(chunk)
        while self._size > self._max_bytes and len(self._chunks) > 1:
            removed = self._chunks.popleft()
            self._size -= len(removed)
            self.dropped += len(removed)

    def text(self, encoding: str) -> str:
        return b"".join(self._chunks).decode(encoding, errors="replace")


def _encode_payload(payload: str | None, encoding: str) -> bytes | None:
    """Encode the input payload, terminated by exactly one newline."""
    if payload is None:
        return None
    if not payload.endswith("\n"):
        payload += "\n"
    return payload.encode(encoding)


@dataclass
class Invoker:
    """Runs a process and delivers its stdout line by line.

    Instances hold configuration only; every run() owns its own process,
    splitter and buffers, so one Invoker can serve concurrent runs.

    Attributes:
        backend: Process execution backend
        logger: Logger for lifecycle diagnostics
        stderr_max_bytes: Upper bound on retained stderr
        encoding: Encoding for stdin payload and stdout/stderr decoding
        read_size: Maximum bytes per pipe read
    """

    backend: ProcessBackend = field(default_factory=AsyncioProcessBackend)
    logger: logging.Logger = logger
    stderr_max_bytes: int = DEFAULT_STDERR_MAX_BYTES
    encoding: str = "utf-8"
    read_size: int = DEFAULT_READ_SIZE

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        input_payload: str | None = None,
        *,
        on_line: LineCallback,
        on_stderr: StderrCallback | None = None,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ExitOutcome:
        """Run command and stream its stdout lines to on_line.

        Args:
            command: Executable name or path
            args: Arguments, in order
            input_payload: Text written to stdin (newline-terminated) before
                stdin is closed; None closes stdin immediately
            on_line: Called once per completed line, terminator stripped
            on_stderr: Optional callback for decoded stderr chunks
            cwd: Working directory
            env: Environment (None = inherit)

        Returns:
            The terminal outcome. Spawn failures are returned as an
            outcome of kind SPAWN_ERROR; on_line is never called for them.
        """
        spec = ProcessSpec(
            argv=[command, *args],
            cwd=Path(cwd) if cwd is not None else None,
            env=env,
            stdin_bytes=_encode_payload(input_payload, self.encoding),
        )
        start_time = time.monotonic()

        self.logger.debug(
            f"[SUBPROCESS] Preparing to execute: {' '.join(spec.argv)} "
            f"(payload={len(input_payload) if input_payload is not None else 'none'} chars)"
        )

        try:
            handle = await self.backend.spawn(spec)
        except OSError as e:
            self.logger.warning(f"Failed to start {command}: {e}")
            return ExitOutcome.spawn_failed(
                command,
                str(e),
                duration_sec=time.monotonic() - start_time,
            )

        splitter = LineSplitter(on_line)
        decoder = StreamDecoder(self.encoding)
        stderr_buffer = _StderrBuffer(self.stderr_max_bytes)
        stdin_task: asyncio.Task[None] | None = None
        stderr_task: asyncio.Task[None] | None = None

        try:
            # stdin write runs alongside the stdout read loop
            if spec.stdin_bytes is not None:
                stdin_task = asyncio.create_task(
                    self._write_input(handle, spec.stdin_bytes)
                )
            stderr_task = asyncio.create_task(
                self._drain_stderr(handle, stderr_buffer, on_stderr)
            )

            async for chunk in handle.read_output_chunks(self.read_size):
                splitter.feed(decoder.decode(chunk))

            splitter.feed(decoder.finish())
            splitter.flush()

            if stdin_task is not None:
                await stdin_task
            await stderr_task
            exit_code = await handle.wait()

        finally:
            await self._safe_cleanup(handle, stdin_task, stderr_task)

        if stderr_buffer.dropped:
            self.logger.debug(
                f"[SUBPROCESS] Dropped {stderr_buffer.dropped} bytes of stderr "
                f"(limit {self.stderr_max_bytes})"
            )

        outcome = ExitOutcome.exited(
            command,
            exit_code,
            stderr=stderr_buffer.text(self.encoding),
            line_count=splitter.line_count,
            duration_sec=time.monotonic() - start_time,
        )

        if outcome.success:
            self.logger.debug(
                f"[SUBPROCESS] Exit: pid={handle.pid} code=0 "
                f"lines={outcome.line_count}"
            )
        else:
            self.logger.warning(outcome.error_message)
        return outcome

    async def _write_input(self, handle: ProcessHandle, data: bytes) -> None:
        """Write the payload; a child that exits without reading is not an error here."""
        try:
            await handle.write_input(data)
        except (BrokenPipeError, ConnectionResetError) as e:
            self.logger.debug(f"stdin closed by pid={handle.pid} before payload was written: {e}")

    async def _drain_stderr(
        self,
        handle: ProcessHandle,
        buffer: _StderrBuffer,
        on_stderr: StderrCallback | None,
    ) -> None:
        """Drain stderr so the child never blocks on a full pipe."""
        decoder = StreamDecoder(self.encoding)
        async for chunk in handle.read_error_chunks(self.read_size):
            buffer.append(chunk)
            if on_stderr:
                text = decoder.decode(chunk)
                if text:
                    on_stderr(text)
        if on_stderr:
            text = decoder.finish()
            if text:
                on_stderr(text)

    async def _safe_cleanup(
        self,
        handle: ProcessHandle,
        stdin_task: asyncio.Task[None] | None,
        stderr_task: asyncio.Task[None] | None,
    ) -> None:
        """Cancel helper tasks and stop the child, shielded from cancellation.

        Cancellation received while cleaning up is re-raised only after the
        cleanup task has finished, so the child is gone when the caller
        regains control. Enclosing anyio cancel scopes are shielded out
        while the cleanup runs.
        """
        task = asyncio.create_task(self._do_cleanup(handle, stdin_task, stderr_task))
        cancelled: asyncio.CancelledError | None = None
        with anyio.CancelScope(shield=True):
            while not task.done():
                try:
                    await asyncio.shield(task)
                except asyncio.CancelledError as e:
                    cancelled = e
        if cancelled is not None:
            self.logger.debug(f"Cleanup finished for pid={handle.pid}, re-raising cancellation")
            raise cancelled

    async def _do_cleanup(
        self,
        handle: ProcessHandle,
        stdin_task: asyncio.Task[None] | None,
        stderr_task: asyncio.Task[None] | None,
    ) -> None:
        for task in (stdin_task, stderr_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        if handle.returncode is None:
            self.logger.debug(f"Terminating subprocess pid={handle.pid}")
            await handle.terminate()


async def collect_lines(
    command: str,
    args: Sequence[str] = (),
    input_payload: str | None = None,
    *,
    invoker: Invoker | None = None,
    **kwargs,
) -> tuple[list[str], ExitOutcome]:
    """Run a process and collect its stdout lines.

    Convenience wrapper for cases where streaming is not needed.

    Returns:
        Tuple of (lines, outcome)
    """
    lines: list[str] = []
    outcome = await (invoker or Invoker()).run(
        command,
        args,
        input_payload,
        on_line=lines.append,
        **kwargs,
    )
    return lines, outcome
