# Incremental decimal parser for the merged output stream of a measured binary
import math
from enum import Enum
from typing import Iterable, Iterator, Optional

_NEWLINE = ord("\n")
_SEPARATORS = (ord("."), ord(","))
_ZERO = ord("0")
_NINE = ord("9")
# Digits past this mantissa are below double precision: integer digits only
# raise the power of ten, fraction digits are dropped.
_MANTISSA_LIMIT = 10 ** 18


class State(Enum):
    NORMAL = "normal"
    FRACTION = "fraction"
    POISONED = "poisoned"


class StreamingNumberParser:
    """Suspendable parser turning a fragmented byte stream into one value per line.

    Each line holds a decimal number with an optional ``.`` or ``,``
    separator.  Chunks may split a line anywhere, including in the middle of
    the digits or right on the separator; all progress is kept between calls
    to :meth:`push`.  A line containing anything else (a second separator,
    a sign, whitespace, text) is *poisoned*: its remaining bytes are skipped
    and :meth:`reset` reports ``None`` for it instead of a number.

    Typical loop::

        pos = parser.push(chunk)
        while pos:
            handle(parser.reset())
            if pos >= len(chunk):
                break
            pos = parser.push(chunk, pos)
    """

    def __init__(self) -> None:
        self.state = State.NORMAL
        self._mantissa = 0
        self._fraction_digits: Optional[int] = None
        self._scale = 0

    def push(self, chunk: bytes, start: int = 0) -> int:
        """Consume ``chunk[start:]`` up to and including the next newline.

        Returns the index in ``chunk`` right after that newline, which may be
        ``len(chunk)``; ``0`` means no newline was found and the line
        continues in a later chunk.
        """
        if self.state is State.POISONED:
            return self._skip_line(chunk, start)
        for i in range(start, len(chunk)):
            byte = chunk[i]
            if byte == _NEWLINE:
                return i + 1
            if _ZERO <= byte <= _NINE:
                self._on_digit(byte - _ZERO)
            elif byte in _SEPARATORS:
                self._on_separator()
            else:
                self.state = State.POISONED
            if self.state is State.POISONED:
                return self._skip_line(chunk, i + 1)
        return 0

    def reset(self) -> Optional[float]:
        """Return the value of the line just terminated and start a new one."""
        if self.state is State.POISONED:
            value = None
        else:
            value = self._value()
        self.state = State.NORMAL
        self._mantissa = 0
        self._fraction_digits = None
        self._scale = 0
        return value

    def _value(self) -> float:
        # too large for a double reads as inf
        try:
            if self._fraction_digits:
                value = self._mantissa / 10 ** self._fraction_digits
            else:
                value = float(self._mantissa)
            if self._scale:
                value *= 10.0 ** self._scale
        except OverflowError:
            return math.inf
        return value

    def _on_digit(self, digit: int) -> None:
        if self._mantissa >= _MANTISSA_LIMIT:
            if self.state is State.NORMAL:
                self._scale += 1
            return
        self._mantissa = self._mantissa * 10 + digit
        if self.state is State.FRACTION:
            self._fraction_digits += 1

    def _on_separator(self) -> None:
        if self.state is State.FRACTION:
            self.state = State.POISONED
            return
        self.state = State.FRACTION
        self._fraction_digits = 0

    def _skip_line(self, chunk: bytes, start: int) -> int:
        end = chunk.find(b"\n", start)
        return 0 if end < 0 else end + 1


def iter_values(chunks: Iterable[bytes]) -> Iterator[Optional[float]]:
    """Yield the value of every terminated line found in ``chunks``.

    A trailing line without its newline is not reported.
    """
    parser = StreamingNumberParser()
    for chunk in chunks:
        pos = parser.push(chunk)
        while pos:
            yield parser.reset()
            if pos >= len(chunk):
                break
            pos = parser.push(chunk, pos)
