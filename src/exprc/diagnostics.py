"""
Diagnostic Reporter
===================

Uniform rendering of compile errors from every stage. The reporter owns
the source text; errors only carry a message and a span.

Format
------
    [error]: expected expression, found '+'
    +
    ^

The first line is the message. The second is the source text, copied
verbatim. The third holds as many spaces as the error span's start offset,
followed by a caret. Errors spanning ``Span.EOF`` point at the last
character of the source.

Rendering is a pure function of (source, error): reporting the same error
twice writes the same text twice.
"""

import sys
from typing import Optional, TextIO

from exprc.span import Span
from exprc.errors import CompileError


class ErrorReporter:
    """
    Writes diagnostics for compile errors against one source text.

    Example:
        reporter = ErrorReporter(source)
        try:
            compile_expr(source)
        except CompileError as e:
            reporter.report(e)

    Attributes:
        source: The source text errors refer to
        stream: Where ``report`` writes (default: sys.stderr)
    """

    PREFIX = "[error]: "

    def __init__(self, source: str, stream: Optional[TextIO] = None):
        self.source = source
        self.stream = stream

    def caret_offset(self, span: Span) -> int:
        """Column of the caret for ``span``."""
        if span.is_eof:
            return max(len(self.source) - 1, 0)
        return span.start

    def render(self, error: CompileError) -> str:
        """Return the full diagnostic for ``error`` as a string."""
        padding = " " * self.caret_offset(error.span)
        return f"{self.PREFIX}{error.message}\n{self.source}\n{padding}^\n"

    def report(self, error: CompileError) -> None:
        """Write the diagnostic for ``error`` to the stream."""
        stream = self.stream if self.stream is not None else sys.stderr
        stream.write(self.render(error))


def format_diagnostic(source: str, error: CompileError) -> str:
    """Render ``error`` against ``source`` without creating a reporter."""
    return ErrorReporter(source).render(error)
