"""Runtime module for subprocess execution and line streaming.

This module provides isolated process execution, reassembly of chunked
stdout into lines, and a single terminal outcome per invocation.
"""

from __future__ import annotations

from .errors import InvocationError, ProcessExitError, SpawnError, SplitterClosedError
from .invoker import Invoker, collect_lines
from .process_runner import (
    AsyncioProcessBackend,
    ProcessBackend,
    ProcessHandle,
    ProcessSpec,
)
from .splitter import LineCallback, LineSplitter, StreamDecoder
from .types import ExitOutcome, OutcomeKind, StderrCallback

__all__ = [
    "AsyncioProcessBackend",
    "ExitOutcome",
    "InvocationError",
    "Invoker",
    "LineCallback",
    "LineSplitter",
    "OutcomeKind",
    "ProcessBackend",
    "ProcessExitError",
    "ProcessHandle",
    "ProcessSpec",
    "SpawnError",
    "SplitterClosedError",
    "StderrCallback",
    "StreamDecoder",
    "collect_lines",
]
