"""
exprc Error Hierarchy
=====================

This module defines the exception hierarchy for the whole compiler.
All exceptions inherit from ExprcError, allowing callers to catch every
compiler-related error with a single except clause.

Exception Hierarchy
-------------------
ExprcError (base)
├── CompileError (carries a Span, rendered by ErrorReporter)
│   ├── UnexpectedEofError - input ended where more text was required
│   ├── LexError - lexical errors
│   │   ├── InvalidCharacterError - character that starts no token
│   │   ├── UnterminatedStringError - string literal never closed
│   │   └── IntegerOverflowError - literal wider than the accumulator
│   ├── ParseError - syntactic errors
│   │   ├── ExpectedExpressionError - no expression where one must start
│   │   ├── ExpectedOperatorError - token where an operator or end belongs
│   │   ├── MissingOperandError - input ended inside an expression
│   │   ├── UnterminatedExpressionError - statement without ';'
│   │   └── UnclosedGroupError - '(' closed by something other than ')'
│   └── CodegenError - errors lowering the tree to assembly
│       ├── ExpectedIdentifierError - assignment target is not a variable
│       ├── ExpectedIntExprError - string where an integer is required
│       ├── InvalidOperatorError - operator the generator cannot lower
│       └── TooManyArgumentsError - call exceeds the argument registers
├── ToolchainError - assembler or linker invocation failed
└── EmulatorError - generated code faulted while being executed

Each stage raises its own error type and aborts on the first error.
Lexical errors surface through the parser unchanged: same object, same
span. UnterminatedStringError and MissingOperandError both derive from
UnexpectedEofError so callers can treat "ran out of input" uniformly.
"""

from typing import Optional, Sequence

from exprc.span import Span


# =============================================================================
# Base Exception Class
# =============================================================================

class ExprcError(Exception):
    """
    Base exception for all exprc errors.

        try:
            compile_expr(source)
        except ExprcError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Compilation Errors
# =============================================================================

class CompileError(ExprcError):
    """
    Error in the program being compiled.

    Every compile error points at the source text that caused it. The
    message deliberately carries no location: the ErrorReporter owns the
    source text and draws the caret.

    Attributes:
        message: The error description
        span: Where in the source the error occurred
    """

    def __init__(self, message: str, span: Span = Span.EOF):
        self.message = message
        self.span = span
        super().__init__(message)


class UnexpectedEofError(CompileError):
    """The input ended where more text was required."""

    def __init__(self, expected: str, span: Span = Span.EOF):
        self.expected = expected
        super().__init__(f"expected {expected}, found end of input", span)


# =============================================================================
# Lexical Errors
# =============================================================================

class LexError(CompileError):
    """Error turning source text into tokens."""
    pass


class InvalidCharacterError(LexError):
    """
    Character that cannot start any token.

    Example:
        1 # 2;     # '#' is not part of the language
    """

    def __init__(self, char: str, span: Span):
        self.char = char
        super().__init__(f"invalid character '{char}'", span)


class UnterminatedStringError(LexError, UnexpectedEofError):
    """
    String literal reaches the end of input without a closing quote.

    The span starts at the opening quote.
    """

    def __init__(self, span: Span):
        UnexpectedEofError.__init__(self, "closing '\"' of string literal", span)


class IntegerOverflowError(LexError):
    """Integer literal does not fit in the 32-bit signed accumulator."""

    def __init__(self, literal: str, limit: int, span: Span):
        self.literal = literal
        self.limit = limit
        super().__init__(
            f"integer literal {literal} is too large (maximum is {limit})",
            span,
        )


# =============================================================================
# Syntax Errors
# =============================================================================

class ParseError(CompileError):
    """Error building the expression tree from tokens."""
    pass


class ExpectedExpressionError(ParseError):
    """A token appeared where an expression had to start."""

    def __init__(self, found: str, span: Span):
        self.found = found
        super().__init__(f"expected expression, found {found}", span)


class ExpectedOperatorError(ParseError):
    """A token appeared where a binary operator or the end of the expression belonged."""

    def __init__(self, found: str, span: Span):
        self.found = found
        super().__init__(f"expected binary operator, found {found}", span)


class MissingOperandError(ParseError, UnexpectedEofError):
    """Input ended where an operand, argument or ')' was required."""

    def __init__(self, expected: str = "expression", span: Span = Span.EOF):
        UnexpectedEofError.__init__(self, expected, span)


class UnterminatedExpressionError(ParseError):
    """Statement reaches the end of input without its terminating ';'."""

    def __init__(self, span: Span = Span.EOF):
        super().__init__("unterminated expression, expected ';'", span)


class UnclosedGroupError(ParseError):
    """
    Parenthesis closed by something other than ')'.

    Example:
        (1 + 2;      # ';' found where ')' was required
    """

    def __init__(self, found: str, span: Span):
        self.found = found
        super().__init__(f"expected ')', found {found}", span)


# =============================================================================
# Code Generation Errors
# =============================================================================

class CodegenError(CompileError):
    """Error lowering a well-formed tree to assembly."""
    pass


class ExpectedIdentifierError(CodegenError):
    """
    Assignment target is not a plain variable.

    Examples of invalid targets:
        1 = x;
        (a + b) = x;
    """

    def __init__(self, span: Span):
        super().__init__("expected identifier as assignment target", span)


class ExpectedIntExprError(CodegenError):
    """A string literal was used where an integer value is required."""

    def __init__(self, span: Span):
        super().__init__("expected integer expression", span)


class InvalidOperatorError(CodegenError):
    """Operator that the code generator does not know how to lower."""

    def __init__(self, operator: str, span: Span):
        self.operator = operator
        super().__init__(f"invalid operator '{operator}'", span)


class TooManyArgumentsError(CodegenError):
    """Call passes more arguments than there are argument registers."""

    def __init__(self, name: str, count: int, limit: int, span: Span):
        self.name = name
        self.count = count
        self.limit = limit
        super().__init__(
            f"call to '{name}' passes {count} arguments, at most {limit} are supported",
            span,
        )


# =============================================================================
# Driver Errors
# =============================================================================

class ToolchainError(ExprcError):
    """
    External assembler or linker failed.

    Attributes:
        command: The command line that was run
        returncode: Process exit status (None if it never ran)
        stderr: Captured standard error of the tool
    """

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        self.command = list(command or [])
        self.returncode = returncode
        self.stderr = stderr
        self.message = message
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.command:
            parts.append(f"command: {' '.join(self.command)}")
        if self.stderr:
            parts.append(self.stderr.rstrip())
        return "\n".join(parts)


class EmulatorError(ExprcError):
    """
    Generated code could not be executed by the emulator.

    Raised for faults the real machine would also hit (division by zero,
    quotient overflow) and for code outside the emulated subset.
    """

    def __init__(self, message: str, line: Optional[int] = None):
        self.message = message
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)
