"""Line splitting for chunked process output.

Process pipes deliver output in chunks whose boundaries bear no relation to
line boundaries. LineSplitter reassembles those chunks into lines and hands
each completed line to a callback as soon as its terminator arrives:

    splitter = LineSplitter(on_line=print)
    splitter.feed("Think")
    splitter.feed("ing.\nAnswer")   # prints "Thinking."
    splitter.flush()                # prints "Answer"

Terminators are "\\n" and "\\r\\n". A "\\r" at the end of a chunk stays in
the buffer until the next chunk shows whether a "\\n" follows it.

StreamDecoder sits in front of the splitter when the source produces bytes,
so multi-byte characters cut in half by a chunk boundary are decoded
correctly.
"""

from __future__ import annotations

import codecs
from collections.abc import Callable

from .errors import SplitterClosedError

__all__ = [
    "LineCallback",
    "LineSplitter",
    "StreamDecoder",
]

LineCallback = Callable[[str], None]


class LineSplitter:
    """Reassembles an arbitrarily chunked text stream into lines.

    One instance serves exactly one stream. After flush() the instance is
    terminal and any further feed() or flush() raises SplitterClosedError.

    Invariant: ``buffer`` always holds exactly the text received after the
    last terminator.
    """

    def __init__(self, on_line: LineCallback) -> None:
        self._on_line = on_line
        self._parts: list[str] = []
        self._line_count = 0
        self._closed = False

    @property
    def buffer(self) -> str:
        """Pending text not yet terminated."""
        return "".join(self._parts)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def line_count(self) -> int:
        """Number of lines emitted so far."""
        return self._line_count

    def feed(self, chunk: str) -> int:
        """Append a chunk and emit every line it completes.

        Args:
            chunk: Next piece of the stream (may be empty)

        Returns:
            Number of lines emitted by this call

        Raises:
            SplitterClosedError: If flush() was already called
        """
        if self._closed:
            raise SplitterClosedError("feed() called after flush()")
        if not chunk:
            return 0

        # Only the new chunk is scanned; a "\r" held from the previous chunk
        # is stripped when the joined line is emitted.
        emitted = 0
        start = 0
        while True:
            end = chunk.find("\n", start)
            if end < 0:
                break
            self._parts.append(chunk[start:end])
            line = "".join(self._parts)
            self._parts = []
            if line.endswith("\r"):
                line = line[:-1]
            self._emit(line)
            emitted += 1
            start = end + 1

        if start < len(chunk):
            self._parts.append(chunk[start:])
        return emitted

    def flush(self) -> str | None:
        """Emit the unterminated remainder as the final line.

        A lone trailing "\\r" is a terminator artifact and is dropped. An
        empty remainder emits nothing.

        Returns:
            The emitted final line, or None

        Raises:
            SplitterClosedError: If flush() was already called
        """
        if self._closed:
            raise SplitterClosedError("flush() called twice")
        self._closed = True

        remainder = "".join(self._parts)
        self._parts = []
        if remainder.endswith("\r"):
            remainder = remainder[:-1]
        if not remainder:
            return None

        self._emit(remainder)
        return remainder

    def _emit(self, line: str) -> None:
        self._line_count += 1
        self._on_line(line)


class StreamDecoder:
    """Incremental bytes-to-text decoder for pipe chunks.

    Undecodable bytes are replaced rather than raising, matching how the
    rest of the runtime treats subprocess output.
    """

    def __init__(self, encoding: str = "utf-8", errors: str = "replace") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors=errors)

    def decode(self, chunk: bytes) -> str:
        return self._decoder.decode(chunk)

    def finish(self) -> str:
        """Decode whatever is left at end of stream."""
        return self._decoder.decode(b"", final=True)
