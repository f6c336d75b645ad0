"""Process execution backend with subprocess isolation and reliable termination.

llm-stream-mcp runtime module v0.1.0

This module provides the small process-execution interface the invoker is
written against:

- ProcessBackend.spawn(spec) -> ProcessHandle
- ProcessHandle.write_input / read_output_chunks / read_error_chunks / wait
- ProcessHandle.terminate for cleanup when the caller gives up on a process

AsyncioProcessBackend is the real implementation. Tests substitute an
in-memory backend that replays scripted chunks.

Key design points:
- POSIX: start_new_session=True to create new process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- Termination targets the process group, not just the main process
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

__all__ = [
    "IS_WINDOWS",
    "ProcessSpec",
    "ProcessHandle",
    "ProcessBackend",
    "AsyncioProcessBackend",
    "AsyncioProcessHandle",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL

DEFAULT_READ_SIZE = 4096


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a subprocess to run.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = inherit)
        env: Environment variables (None = inherit parent)
        stdin_bytes: Optional bytes to write to stdin. When None, stdin is
            attached to the null device so the child sees EOF immediately.
    """

    argv: list[str]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    stdin_bytes: bytes | None = None

    @property
    def executable(self) -> str:
        return self.argv[0] if self.argv else ""


class ProcessHandle(Protocol):
    """A running child process and its stdio channels."""

    @property
    def pid(self) -> int | None: ...

    @property
    def returncode(self) -> int | None: ...

    async def write_input(self, data: bytes) -> None:
        """Write data to stdin, then close it."""
        ...

    def read_output_chunks(self, size: int = DEFAULT_READ_SIZE) -> AsyncIterator[bytes]:
        """Yield stdout chunks until EOF."""
        ...

    def read_error_chunks(self, size: int = DEFAULT_READ_SIZE) -> AsyncIterator[bytes]:
        """Yield stderr chunks until EOF."""
        ...

    async def wait(self) -> int:
        """Wait for exit and return the exit status."""
        ...

    async def terminate(self) -> None:
        """Stop the process if it is still running."""
        ...


class ProcessBackend(Protocol):
    """Factory for ProcessHandle instances.

    spawn() raises OSError (FileNotFoundError, PermissionError, ...) when
    the executable cannot be launched.
    """

    async def spawn(self, spec: ProcessSpec) -> ProcessHandle: ...


class AsyncioProcessHandle:
    """ProcessHandle over asyncio.subprocess.Process.

    Termination strategy:
    1. Send SIGTERM to the process group (CTRL_BREAK_EVENT on Windows)
    2. Wait up to term_timeout for graceful exit
    3. Send SIGKILL to the process group (kill() on Windows)
    4. Wait up to kill_timeout for forced exit
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    ) -> None:
        self._process = process
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def write_input(self, data: bytes) -> None:
        stdin = self._process.stdin
        if stdin is None:
            return
        try:
            stdin.write(data)
            await stdin.drain()
        finally:
            stdin.close()
            try:
                await stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                pass

    async def read_output_chunks(self, size: int = DEFAULT_READ_SIZE) -> AsyncIterator[bytes]:
        if self._process.stdout is None:
            return
        while True:
            chunk = await self._process.stdout.read(size)
            if not chunk:
                break
            yield chunk

    async def read_error_chunks(self, size: int = DEFAULT_READ_SIZE) -> AsyncIterator[bytes]:
        if self._process.stderr is None:
            return
        while True:
            chunk = await self._process.stderr.read(size)
            if not chunk:
                break
            yield chunk

    async def wait(self) -> int:
        return await self._process.wait()

    async def terminate(self) -> None:
        """Terminate the process group gracefully, then forcefully if needed."""
        process = self._process
        if process.returncode is not None:
            return

        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            # Step 1: Graceful termination
            if IS_WINDOWS:
                self._windows_terminate()
            else:
                self._posix_signal(signal.SIGTERM)

            # Step 2: Wait for graceful exit
            try:
                await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            # Step 3: Force kill
            logger.debug(f"Force killing subprocess pid={pid}")
            if IS_WINDOWS:
                process.kill()
            else:
                self._posix_signal(signal.SIGKILL)

            # Step 4: Wait for forced exit
            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except Exception as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    def _posix_signal(self, sig: signal.Signals) -> None:
        """Send a signal to the process group, falling back to the process."""
        try:
            # Process group ID equals pid due to start_new_session
            pgid = os.getpgid(self._process.pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent {sig.name} to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to direct signal: {e}")
            self._process.send_signal(sig)

    def _windows_terminate(self) -> None:
        try:
            # Works because the child got CREATE_NEW_PROCESS_GROUP
            os.kill(self._process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={self._process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            self._process.terminate()


@dataclass
class AsyncioProcessBackend:
    """Spawns isolated subprocesses with asyncio.create_subprocess_exec.

    Example:
        backend = AsyncioProcessBackend()
        handle = await backend.spawn(ProcessSpec(argv=["ollama", "run", "llama3"]))
        async for chunk in handle.read_output_chunks():
            ...
        code = await handle.wait()
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT

    async def spawn(self, spec: ProcessSpec) -> AsyncioProcessHandle:
        kwargs = self._build_subprocess_kwargs(spec)

        # No input: stdin is DEVNULL, never the parent's MCP stdio channel
        process = await asyncio.create_subprocess_exec(
            *spec.argv,
            stdin=asyncio.subprocess.PIPE if spec.stdin_bytes is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=spec.cwd,
            **kwargs,
        )

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={spec.executable} cwd={spec.cwd}"
        )
        return AsyncioProcessHandle(
            process,
            term_timeout=self.term_timeout,
            kill_timeout=self.kill_timeout,
        )

    def _build_subprocess_kwargs(self, spec: ProcessSpec) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs.

        Args:
            spec: Process specification

        Returns:
            Dict of kwargs for asyncio.create_subprocess_exec
        """
        kwargs: dict[str, Any] = {}

        if spec.env is not None:
            kwargs["env"] = dict(spec.env)

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            # POSIX: start_new_session (equivalent to setsid)
            kwargs["start_new_session"] = True

        return kwargs
