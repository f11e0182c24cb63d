"""Line splitting writers used for stderr tails and progress decoding."""

import io
import re
from typing import Callable

_LINE_END = re.compile(rb"[\r\n]")


class LineBuffer:
    """Writable that calls ``callback`` for each line written.

    Lines end at ``\\n`` or ``\\r`` and are passed on decoded, terminator
    included. Whatever follows the last terminator is kept until the next
    write, or handed over without terminator by :meth:`close`.
    """

    def __init__(self, callback: Callable[[str], None]):
        self._callback = callback
        self._pending = b""

    def write(self, data: bytes | str) -> int:
        if isinstance(data, str):
            data = data.encode()
        buf = self._pending + bytes(data)
        pos = 0
        while True:
            match = _LINE_END.search(buf, pos)
            if match is None:
                break
            end = match.end()
            self._callback(buf[pos:end].decode("utf-8", errors="replace"))
            pos = end
        self._pending = buf[pos:]
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        """Deliver any unterminated remainder as a final line."""
        if self._pending:
            pending, self._pending = self._pending, b""
            self._callback(pending.decode("utf-8", errors="replace"))


class LastLines(LineBuffer):
    """Ring buffer keeping the last ``limit`` lines written."""

    def __init__(self, limit: int = 100):
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        super().__init__(self._add_line)
        self._current = 0
        self._lines = [""] * limit

    def _add_line(self, line: str) -> None:
        self._lines[self._current] = line
        self._current = (self._current + 1) % len(self._lines)

    def render(self) -> str:
        """Return the buffered lines oldest first."""
        size = len(self._lines)
        return "".join(self._lines[(self._current + i) % size] for i in range(size))

    def __str__(self) -> str:
        return self.render()


class MultiWriter:
    """Duplicate every write to each of ``writers``, like ``tee``.

    Text streams (``sys.stderr`` and friends) receive decoded text, all
    other writers receive the bytes unchanged.
    """

    def __init__(self, *writers):
        self.writers = list(writers)

    def write(self, data: bytes) -> int:
        for writer in self.writers:
            if isinstance(writer, io.TextIOBase):
                writer.write(bytes(data).decode("utf-8", errors="replace"))
            else:
                writer.write(data)
        return len(data)

    def flush(self) -> None:
        for writer in self.writers:
            flush = getattr(writer, "flush", None)
            if flush is not None:
                flush()
