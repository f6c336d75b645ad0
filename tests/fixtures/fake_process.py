"""In-memory process backend for tests.

Replays scripted stdout/stderr chunks through the ProcessBackend interface so
the invoker and splitter can be tested without spawning real processes.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from llm_stream_mcp.runtime import ProcessSpec

__all__ = ["Script", "FakeProcessHandle", "FakeProcessBackend"]

FAKE_PID = 4242
TERMINATED_CODE = -15


def _to_bytes(chunk: bytes | str) -> bytes:
    return chunk.encode("utf-8") if isinstance(chunk, str) else chunk


@dataclass
class Script:
    """What the fake process does.

    Attributes:
        stdout: Chunks yielded from stdout, in order
        stderr: Chunks yielded from stderr, in order
        exit_code: Status reported by wait()
        hang: Keep stdout open after the scripted chunks until terminate()
        spawn_error: Raised by spawn() instead of starting
        stdin_error: Raised by write_input()
    """

    stdout: list[bytes | str] = field(default_factory=list)
    stderr: list[bytes | str] = field(default_factory=list)
    exit_code: int = 0
    hang: bool = False
    spawn_error: OSError | None = None
    stdin_error: Exception | None = None


class FakeProcessHandle:
    def __init__(self, spec: ProcessSpec, script: Script) -> None:
        self.spec = spec
        self.script = script
        self.stdin_data: bytes | None = None
        self.stdin_closed = False
        self.terminated = False
        self._returncode: int | None = None
        self._stopped = asyncio.Event()

    @property
    def pid(self) -> int | None:
        return FAKE_PID

    @property
    def returncode(self) -> int | None:
        return self._returncode

    async def write_input(self, data: bytes) -> None:
        await asyncio.sleep(0)
        if self.script.stdin_error is not None:
            raise self.script.stdin_error
        self.stdin_data = data
        self.stdin_closed = True

    async def read_output_chunks(self, size: int = 4096) -> AsyncIterator[bytes]:
        for chunk in self.script.stdout:
            await asyncio.sleep(0)
            yield _to_bytes(chunk)
        if self.script.hang:
            await self._stopped.wait()

    async def read_error_chunks(self, size: int = 4096) -> AsyncIterator[bytes]:
        for chunk in self.script.stderr:
            await asyncio.sleep(0)
            yield _to_bytes(chunk)

    async def wait(self) -> int:
        if self._returncode is None:
            self._returncode = self.script.exit_code
        return self._returncode

    async def terminate(self) -> None:
        self.terminated = True
        if self._returncode is None:
            self._returncode = TERMINATED_CODE
        self._stopped.set()


class FakeProcessBackend:
    """Backend returning FakeProcessHandle instances for one script."""

    def __init__(self, script: Script | None = None) -> None:
        self.script = script or Script()
        self.specs: list[ProcessSpec] = []
        self.handles: list[FakeProcessHandle] = []

    async def spawn(self, spec: ProcessSpec) -> FakeProcessHandle:
        self.specs.append(spec)
        if self.script.spawn_error is not None:
            raise self.script.spawn_error
        handle = FakeProcessHandle(spec, self.script)
        self.handles.append(handle)
        return handle

    @property
    def last_handle(self) -> FakeProcessHandle:
        return self.handles[-1]
