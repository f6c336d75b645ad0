"""Runtime exceptions.

Spawn failures and abnormal exits are reported as ExitOutcome values by
the invoker; these exceptions are raised only when a caller opts in via
ExitOutcome.raise_for_status(), or on splitter misuse.
"""

from __future__ import annotations

__all__ = [
    "InvocationError",
    "SpawnError",
    "ProcessExitError",
    "SplitterClosedError",
]


class InvocationError(Exception):
    """Base class for invocation failures."""
    pass


class SpawnError(InvocationError):
    """The process could not be started.

    Attributes:
        command: Executable that failed to launch
        reason: OS-level error description
    """

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"failed to start {command}: {reason}")


class ProcessExitError(InvocationError):
    """The process started but exited with a non-zero status.

    Attributes:
        command: Executable that was run
        exit_code: Process exit status
        stderr: Tail of the captured stderr output
    """

    def __init__(self, command: str, exit_code: int, stderr: str = "") -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        message = f"{command} exited with code {exit_code}"
        if stderr:
            message += f":\n{stderr}"
        super().__init__(message)


class SplitterClosedError(RuntimeError):
    """feed() or flush() called on a splitter that was already flushed."""
    pass
