"""Runtime result types.

ExitOutcome is the single terminal result of one invocation: the process
either succeeded, exited with a non-zero status, or never started.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import ProcessExitError, SpawnError

__all__ = [
    "OutcomeKind",
    "ExitOutcome",
    "StderrCallback",
]

StderrCallback = Callable[[str], None]

# Number of trailing stderr lines quoted in error messages
STDERR_TAIL_LINES = 5


class OutcomeKind(str, Enum):
    """How an invocation ended."""

    SUCCESS = "success"
    EXIT_ERROR = "exit_error"
    SPAWN_ERROR = "spawn_error"


@dataclass(frozen=True)
class ExitOutcome:
    """Terminal outcome of one invocation.

    Produced exactly once, after stdout and stderr are drained and the
    trailing partial line has been flushed.

    Attributes:
        kind: Outcome tag
        command: Executable that was (or failed to be) launched
        exit_code: Process exit status (None for spawn errors)
        spawn_error: Launch failure description (spawn errors only)
        stderr: Captured stderr text (bounded, oldest data dropped first)
        line_count: Number of lines delivered to the line callback
        duration_sec: Wall time from spawn to outcome
    """

    kind: OutcomeKind
    command: str
    exit_code: int | None = None
    spawn_error: str | None = None
    stderr: str = ""
    line_count: int = 0
    duration_sec: float = 0.0

    @classmethod
    def succeeded(cls, command: str, **kwargs: Any) -> "ExitOutcome":
        return cls(kind=OutcomeKind.SUCCESS, command=command, exit_code=0, **kwargs)

    @classmethod
    def exited(cls, command: str, exit_code: int, **kwargs: Any) -> "ExitOutcome":
        """Outcome for a finished process, tagged by its exit status."""
        kind = OutcomeKind.SUCCESS if exit_code == 0 else OutcomeKind.EXIT_ERROR
        return cls(kind=kind, command=command, exit_code=exit_code, **kwargs)

    @classmethod
    def spawn_failed(cls, command: str, reason: str, **kwargs: Any) -> "ExitOutcome":
        return cls(
            kind=OutcomeKind.SPAWN_ERROR,
            command=command,
            spawn_error=reason,
            **kwargs,
        )

    @property
    def success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def stderr_tail(self) -> str:
        """Last few stderr lines, where API and runtime errors usually show up."""
        lines = self.stderr.strip().splitlines()
        return "\n".join(lines[-STDERR_TAIL_LINES:])

    @property
    def error_message(self) -> str | None:
        """Human-readable failure description, None on success."""
        if self.kind == OutcomeKind.SPAWN_ERROR:
            return f"failed to start {self.command}: {self.spawn_error}"
        if self.kind == OutcomeKind.EXIT_ERROR:
            message = f"{self.command} exited with code {self.exit_code}"
            tail = self.stderr_tail
            if tail:
                message += f":\n{tail}"
            return message
        return None

    def raise_for_status(self) -> None:
        """Raise SpawnError or ProcessExitError unless the outcome is a success."""
        if self.kind == OutcomeKind.SPAWN_ERROR:
            raise SpawnError(self.command, self.spawn_error or "unknown error")
        if self.kind == OutcomeKind.EXIT_ERROR:
            raise ProcessExitError(self.command, self.exit_code or -1, self.stderr_tail)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "kind": self.kind.value,
            "command": self.command,
            "line_count": self.line_count,
            "duration_sec": round(self.duration_sec, 3),
        }
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        if self.spawn_error:
            result["spawn_error"] = self.spawn_error
        if self.error_message:
            result["error"] = self.error_message
        return result
