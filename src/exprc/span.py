"""
Source Spans
============

Position tracking shared by the lexer, parser, code generator and
diagnostics. A span is a half-open ``[start, end)`` range of character
offsets into the source string being compiled.

One span value is reserved: ``Span.EOF`` marks "end of input" and has no
valid range. Errors raised because the input ran out carry it, and the
diagnostic reporter points its caret at the final character instead.

Example:
    >>> a = Span(0, 1)
    >>> b = Span(2, 5)
    >>> a + b
    Span(start=0, end=5)
    >>> (a + Span.EOF) == a
    True
"""

from dataclasses import dataclass
from typing import ClassVar, Generic, Optional, TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class Span:
    """
    Half-open range of offsets into the source text.

    Attributes:
        start: Offset of the first character covered
        end: Offset one past the last character covered
    """
    start: int
    end: int

    EOF: ClassVar["Span"]

    @property
    def is_eof(self) -> bool:
        """Return True if this is the end-of-input sentinel."""
        return self.start < 0

    def range(self) -> Optional[slice]:
        """Return a slice selecting the spanned text, or None for EOF."""
        if self.is_eof:
            return None
        return slice(self.start, self.end)

    def text(self, source: str) -> Optional[str]:
        """Return the spanned text of ``source``, or None for EOF."""
        selection = self.range()
        if selection is None:
            return None
        return source[selection]

    def __add__(self, other: "Span") -> "Span":
        """Union of two spans; the EOF sentinel is the identity."""
        if not isinstance(other, Span):
            return NotImplemented
        if self.is_eof:
            return other
        if other.is_eof:
            return self
        return Span(min(self.start, other.start), max(self.end, other.end))

    def __str__(self) -> str:
        if self.is_eof:
            return "EOF"
        return f"{self.start}..{self.end}"


Span.EOF = Span(-1, -1)


@dataclass(frozen=True)
class Spanned(Generic[T]):
    """A value paired with the span of the text that produced it."""
    value: T
    span: Span
