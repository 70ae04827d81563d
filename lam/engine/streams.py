"""
In-memory byte streams backing a script's io.* calls.

InputCursor is consumed sequentially by read()/read_unicode(); running out of
data is not an error and yields None (nil in Lua).  OutputSink collects the
bytes a script prints, one sink per stream.
"""

import logging
from typing import Optional, Union

from lam.exceptions import ReadFormatError

__all__ = ["InputCursor", "OutputSink"]

logger = logging.getLogger(__name__)

_ALL    = (b"*a", b"*all", "*a", "*all")
_LINE   = (b"*l", b"*line", "*l", "*line")
_NUMBER = (b"*n", b"*number", "*n", "*number")

ReadResult = Union[bytes, int, float, None]


def _as_count(fmt: object) -> Optional[int]:
    """Return fmt as a byte/char count, or None if it is not a count."""
    if isinstance(fmt, bool):
        return None
    if isinstance(fmt, int):
        return fmt if fmt >= 0 else None
    if isinstance(fmt, float) and fmt.is_integer() and fmt >= 0:
        return int(fmt)
    return None


class InputCursor:
    """
    Sequential reader over a fixed byte string.

    Formats understood by read()
    ────────────────────────────
    "*a" / "*all"     — everything left
    "*l" / "*line"    — next line, without its line terminator
    "*n" / "*number"  — everything left, parsed as a number (None if it isn't one)
    n (int ≥ 0)       — up to n bytes; may split a multi-byte character
    """

    def __init__(self, data: bytes = b"") -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._data = bytes(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def _take(self, n: int) -> bytes:
        chunk = self._data[self._pos:self._pos + n]
        self._pos += len(chunk)
        return chunk

    def _take_line(self) -> bytes:
        end = self._data.find(b"\n", self._pos)
        end = len(self._data) if end < 0 else end + 1
        return self._take(end - self._pos)

    @staticmethod
    def _strip_eol(line: bytes) -> bytes:
        if line.endswith(b"\n"):
            line = line[:-1]
            if line.endswith(b"\r"):
                line = line[:-1]
        return line

    # ── Public API ────────────────────────────────────────────────────────

    def read(self, fmt: object = b"*l") -> ReadResult:
        """
        Consume input according to *fmt*.

        Returns:
            bytes (or a number for "*n"), or None once the input is exhausted.

        Raises:
            ReadFormatError: *fmt* is not one of the formats above.
        """
        if fmt is None:
            fmt = b"*l"
        if fmt in _ALL:
            chunk = self._take(self.remaining)
            return chunk or None
        if fmt in _LINE:
            line = self._take_line()
            return self._strip_eol(line) if line else None
        if fmt in _NUMBER:
            text = self._take(self.remaining)
            if not text:
                return None
            return _parse_number(text)
        count = _as_count(fmt)
        if count is not None:
            chunk = self._take(count)
            return chunk or None
        raise ReadFormatError(f"unexpected format {_describe(fmt)}")

    def read_unicode(self, fmt: object = None) -> Optional[bytes]:
        """
        Consume *fmt* code points (not bytes), so characters are never split.

        "*a" and "*l" behave as in read().  An invalid UTF-8 sequence
        consumes the rest of the input and yields None.
        """
        if fmt in _ALL or fmt in _LINE:
            return self.read(fmt)
        count = _as_count(fmt) if fmt is not None else 0
        if count is None:
            raise ReadFormatError(f"unexpected format {_describe(fmt)}")

        out = bytearray()
        pending = bytearray()
        while count > 0 and self.remaining:
            pending += self._take(1)
            try:
                pending.decode("utf-8")
            except UnicodeDecodeError:
                if len(pending) >= 4:
                    self._take(self.remaining)
                    return None
                continue
            out += pending
            pending.clear()
            count -= 1
        if pending:
            return None
        return bytes(out) or None


def _parse_number(text: bytes) -> Union[int, float, None]:
    text = text.strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return None


def _describe(fmt: object) -> str:
    if isinstance(fmt, bytes):
        return fmt.decode("utf-8", "replace")
    return str(fmt)


class OutputSink:
    """Append-only byte buffer for one output stream (stdout or stderr)."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def write(self, data: Union[bytes, str]) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._buf += data

    def getvalue(self) -> bytes:
        return bytes(self._buf)

    def __len__(self) -> int:
        return len(self._buf)
