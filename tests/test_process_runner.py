"""AsyncioProcessBackend and end-to-end Invoker tests with real processes.

Test coverage:
- Basic process execution (stdout reading, exit status)
- Stdin writing and the null-device stdin when no payload is given
- Process isolation (new session/process group)
- Termination of the process group
- Spawn failures surfacing as OSError / SPAWN_ERROR outcomes
- Invoker line delivery through real pipes
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
import time
from pathlib import Path

import anyio
import pytest

from llm_stream_mcp.runtime import (
    AsyncioProcessBackend,
    Invoker,
    OutcomeKind,
    ProcessSpec,
    collect_lines,
)
from llm_stream_mcp.runtime.process_runner import IS_WINDOWS


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create temporary workspace directory."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def backend() -> AsyncioProcessBackend:
    """Create backend with short timeouts for testing."""
    return AsyncioProcessBackend(term_timeout=0.5, kill_timeout=0.3)


@pytest.fixture
def invoker(backend: AsyncioProcessBackend) -> Invoker:
    return Invoker(backend=backend)


async def read_all(handle) -> bytes:
    chunks = [chunk async for chunk in handle.read_output_chunks()]
    return b"".join(chunks)


def python_command(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def record_spawns(backend: AsyncioProcessBackend) -> list:
    """Wrap backend.spawn so tests can inspect the handles it returns."""
    handles = []
    original_spawn = backend.spawn

    async def recording_spawn(spec):
        handle = await original_spawn(spec)
        handles.append(handle)
        return handle

    backend.spawn = recording_spawn
    return handles


# =============================================================================
# Backend Tests
# =============================================================================


class TestBackend:
    """Test AsyncioProcessBackend directly."""

    @pytest.mark.asyncio
    async def test_simple_command(self, temp_workspace: Path, backend: AsyncioProcessBackend):
        handle = await backend.spawn(
            ProcessSpec(argv=python_command("print('hello')"), cwd=temp_workspace)
        )
        output = await read_all(handle)
        assert await handle.wait() == 0
        assert output.decode().strip() == "hello"

    @pytest.mark.asyncio
    async def test_exit_code(self, backend: AsyncioProcessBackend):
        handle = await backend.spawn(ProcessSpec(argv=python_command("import sys; sys.exit(3)")))
        await read_all(handle)
        assert await handle.wait() == 3
        assert handle.returncode == 3

    @pytest.mark.asyncio
    async def test_working_directory(self, temp_workspace: Path, backend: AsyncioProcessBackend):
        handle = await backend.spawn(
            ProcessSpec(argv=python_command("import os; print(os.getcwd())"), cwd=temp_workspace)
        )
        output = (await read_all(handle)).decode().strip()
        await handle.wait()
        assert Path(output).resolve() == temp_workspace.resolve()

    @pytest.mark.asyncio
    async def test_environment(self, backend: AsyncioProcessBackend):
        env = {**os.environ, "LSM_TEST_VALUE": "from-env"}
        handle = await backend.spawn(
            ProcessSpec(
                argv=python_command("import os; print(os.environ['LSM_TEST_VALUE'])"),
                env=env,
            )
        )
        output = await read_all(handle)
        await handle.wait()
        assert output.decode().strip() == "from-env"

    @pytest.mark.asyncio
    async def test_stdin_write(self, backend: AsyncioProcessBackend):
        handle = await backend.spawn(
            ProcessSpec(
                argv=python_command("import sys; sys.stdout.write(sys.stdin.read().upper())"),
                stdin_bytes=b"hello from stdin\n",
            )
        )
        writer = asyncio.create_task(handle.write_input(b"hello from stdin\n"))
        output = await read_all(handle)
        await writer
        await handle.wait()
        assert output == b"HELLO FROM STDIN\n"

    @pytest.mark.asyncio
    async def test_no_payload_stdin_is_null_device(self, backend: AsyncioProcessBackend):
        """Without a payload the child sees EOF immediately instead of blocking."""
        handle = await backend.spawn(
            ProcessSpec(argv=python_command("import sys; print(repr(sys.stdin.read()))"))
        )
        output = await asyncio.wait_for(read_all(handle), timeout=5.0)
        await handle.wait()
        assert output.decode().strip() == "''"

    @pytest.mark.asyncio
    async def test_stderr_is_separate(self, backend: AsyncioProcessBackend):
        handle = await backend.spawn(
            ProcessSpec(
                argv=python_command(
                    "import sys; print('out'); sys.stderr.write('err\\n')"
                )
            )
        )
        stderr = b"".join([chunk async for chunk in handle.read_error_chunks()])
        stdout = await read_all(handle)
        await handle.wait()
        assert stdout.decode().strip() == "out"
        assert stderr.decode().strip() == "err"

    @pytest.mark.asyncio
    async def test_missing_executable_raises_oserror(self, backend: AsyncioProcessBackend):
        with pytest.raises(OSError):
            await backend.spawn(ProcessSpec(argv=["definitely-not-a-real-cli-binary-xyz"]))

    @pytest.mark.asyncio
    async def test_bad_working_directory_raises_oserror(
        self, tmp_path: Path, backend: AsyncioProcessBackend
    ):
        with pytest.raises(OSError):
            await backend.spawn(
                ProcessSpec(argv=python_command("pass"), cwd=tmp_path / "missing")
            )


# =============================================================================
# Process Isolation Tests
# =============================================================================


class TestProcessIsolation:
    """Test process isolation (new session/process group)."""

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_new_session_posix(self, backend: AsyncioProcessBackend):
        """Child runs in its own session and leads its process group."""
        handle = await backend.spawn(
            ProcessSpec(
                argv=python_command(
                    "import os; print(os.getsid(0), os.getpgid(0), os.getpid())"
                )
            )
        )
        output = (await read_all(handle)).decode().split()
        await handle.wait()

        child_sid, child_pgid, child_pid = output
        assert child_sid != str(os.getsid(os.getpid()))
        assert child_pgid == child_pid


# =============================================================================
# Termination Tests
# =============================================================================


class TestTermination:
    """Test process termination."""

    @pytest.mark.asyncio
    async def test_terminate_long_running_process(self, backend: AsyncioProcessBackend):
        handle = await backend.spawn(
            ProcessSpec(argv=python_command("import time; time.sleep(100)"))
        )
        assert handle.returncode is None

        await handle.terminate()

        assert handle.returncode is not None

    @pytest.mark.asyncio
    async def test_terminate_after_exit_is_noop(self, backend: AsyncioProcessBackend):
        handle = await backend.spawn(ProcessSpec(argv=python_command("pass")))
        await read_all(handle)
        await handle.wait()
        await handle.terminate()
        assert handle.returncode == 0

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_sigterm_ignored_escalates_to_kill(self, backend: AsyncioProcessBackend):
        handle = await backend.spawn(
            ProcessSpec(
                argv=python_command(
                    "import signal, sys, time\n"
                    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
                    "print('ready', flush=True)\n"
                    "time.sleep(100)\n"
                )
            )
        )
        # Wait until the handler is installed
        async for chunk in handle.read_output_chunks():
            if b"ready" in chunk:
                break

        await handle.terminate()

        assert handle.returncode == -9


# =============================================================================
# Invoker End-to-End Tests
# =============================================================================


class TestInvokerWithRealProcess:
    """Invoker over real pipes, driven by tests/fixtures/fake_cli.py."""

    @pytest.mark.asyncio
    async def test_chunks_reassembled_into_lines(self, invoker: Invoker, fake_cli: list[str]):
        lines, outcome = await collect_lines(
            fake_cli[0],
            [fake_cli[1], "--chunk", "Thinking", "--chunk", ".\\n", "--chunk", "Answer: 42\\n",
             "--delay", "0.05"],
            invoker=invoker,
        )
        assert lines == ["Thinking.", "Answer: 42"]
        assert outcome.success

    @pytest.mark.asyncio
    async def test_crlf_and_trailing_partial(self, invoker: Invoker, fake_cli: list[str]):
        lines, outcome = await collect_lines(
            fake_cli[0],
            [fake_cli[1], "--chunk", "abc\\r", "--chunk", "\\ndef", "--delay", "0.05"],
            invoker=invoker,
        )
        assert lines == ["abc", "def"]
        assert outcome.success

    @pytest.mark.asyncio
    async def test_payload_reaches_stdin(self, invoker: Invoker, fake_cli: list[str]):
        lines, outcome = await collect_lines(
            fake_cli[0],
            [fake_cli[1], "--echo-stdin"],
            "hello",
            invoker=invoker,
        )
        assert lines == ["got: hello"]
        assert outcome.success

    @pytest.mark.asyncio
    async def test_exit_code_with_partial_output(self, invoker: Invoker, fake_cli: list[str]):
        lines, outcome = await collect_lines(
            fake_cli[0],
            [fake_cli[1], "--chunk", "partial", "--stderr", "model failed\\n", "--exit-code", "1"],
            invoker=invoker,
        )
        assert lines == ["partial"]
        assert outcome.kind == OutcomeKind.EXIT_ERROR
        assert outcome.exit_code == 1
        assert "model failed" in outcome.stderr

    @pytest.mark.asyncio
    async def test_stderr_kept_out_of_lines(self, invoker: Invoker, fake_cli: list[str]):
        diagnostics: list[str] = []
        lines: list[str] = []
        outcome = await invoker.run(
            fake_cli[0],
            [fake_cli[1], "--stderr", "pulling manifest\\n", "--chunk", "answer\\n"],
            on_line=lines.append,
            on_stderr=diagnostics.append,
        )
        assert lines == ["answer"]
        assert "".join(diagnostics) == "pulling manifest\n"
        assert outcome.success

    @pytest.mark.asyncio
    async def test_nonexistent_executable(self, invoker: Invoker):
        called: list[str] = []
        outcome = await invoker.run(
            "definitely-not-a-real-cli-binary-xyz",
            ["run", "model"],
            "hello",
            on_line=called.append,
        )
        assert called == []
        assert outcome.kind == OutcomeKind.SPAWN_ERROR
        assert outcome.error_message.startswith(
            "failed to start definitely-not-a-real-cli-binary-xyz"
        )

    @pytest.mark.asyncio
    async def test_cancellation_terminates_process(self, invoker: Invoker, fake_cli: list[str]):
        handles = record_spawns(invoker.backend)
        first_line = asyncio.Event()

        task = asyncio.create_task(
            invoker.run(
                fake_cli[0],
                [fake_cli[1], "--chunk", "started\\n", "--sleep", "100"],
                on_line=lambda _: first_line.set(),
            )
        )
        await asyncio.wait_for(first_line.wait(), timeout=10.0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(handles) == 1
        assert handles[0].returncode is not None

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_anyio_deadline_waits_for_kill_without_busy_loop(self, fake_cli: list[str]):
        """A child ignoring SIGTERM is killed after term_timeout; the wait is idle."""
        backend = AsyncioProcessBackend(term_timeout=1.0, kill_timeout=1.0)
        invoker = Invoker(backend=backend)
        handles = record_spawns(backend)
        lines: list[str] = []

        with anyio.CancelScope() as scope:

            def on_line(line: str) -> None:
                lines.append(line)
                scope.deadline = anyio.current_time() + 0.1

            wall_start = time.monotonic()
            cpu_start = time.process_time()
            await invoker.run(
                fake_cli[0],
                [fake_cli[1], "--ignore-term", "--chunk", "start\\n", "--sleep", "30"],
                on_line=on_line,
            )

        wall = time.monotonic() - wall_start
        cpu = time.process_time() - cpu_start

        assert scope.cancelled_caught
        assert lines == ["start"]
        assert len(handles) == 1
        assert handles[0].returncode == -signal.SIGKILL
        assert 1.0 <= wall < 10.0
        assert cpu < 0.5
