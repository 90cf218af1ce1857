"""
exprc - Arithmetic Expression Compiler for x86-64
=================================================

This package implements a minimal ahead-of-time compiler. Programs are
sequences of arithmetic expressions over 32-bit integers; the compiler
turns them into x86-64 assembly in AT&T syntax for the GNU assembler.

    a = 6;
    b = a + 1;
    a * b;          # exit status 42

Pipeline
--------
    Source → Lexer → TokenBuffer → Parser → Program → CodeGenerator → Assembly

The assembly can then be assembled and linked with the system toolchain
(``exprc.toolchain``) or executed directly by the pure-Python emulator
(``exprc.emulator``).

Main Components
---------------
- **span**: Source offset ranges shared by every stage
- **lexer**: Lazy tokenizer and the one-token lookahead buffer
- **parser**: Precedence-climbing parser producing the AST
- **codegen**: Accumulator-based x86-64 code generator
- **diagnostics**: Renders any compile error with a caret under the source
- **toolchain**: Runs ``as`` and ``ld``
- **emulator**: Executes the generated assembly subset

Usage
-----
>>> from exprc import compile_expr
>>> asm = compile_expr("2 + 3 * 4;")

Or use the command-line tool:
    $ exprc "2 + 3 * 4;" -o out && ./out; echo $?
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from exprc.span import Span, Spanned
from exprc.errors import (
    ExprcError,
    CompileError,
    UnexpectedEofError,
    LexError,
    InvalidCharacterError,
    UnterminatedStringError,
    IntegerOverflowError,
    ParseError,
    ExpectedExpressionError,
    ExpectedOperatorError,
    MissingOperandError,
    UnterminatedExpressionError,
    UnclosedGroupError,
    CodegenError,
    ExpectedIdentifierError,
    ExpectedIntExprError,
    InvalidOperatorError,
    TooManyArgumentsError,
    ToolchainError,
    EmulatorError,
)
from exprc.lexer import Lexer, Token, TokenBuffer, TokenType
from exprc.parser import Parser, parse_source
from exprc.codegen import CodeGenerator
from exprc.compiler import Compiler, CompilerOptions, CompilerResult, compile_expr
from exprc.diagnostics import ErrorReporter, format_diagnostic

__all__ = [
    # Version
    "__version__",
    # Main API
    "Compiler",
    "CompilerOptions",
    "CompilerResult",
    "compile_expr",
    "parse_source",
    # Stages
    "Lexer",
    "Token",
    "TokenBuffer",
    "TokenType",
    "Parser",
    "CodeGenerator",
    "ErrorReporter",
    "format_diagnostic",
    "Span",
    "Spanned",
    # Errors
    "ExprcError",
    "CompileError",
    "UnexpectedEofError",
    "LexError",
    "InvalidCharacterError",
    "UnterminatedStringError",
    "IntegerOverflowError",
    "ParseError",
    "ExpectedExpressionError",
    "ExpectedOperatorError",
    "MissingOperandError",
    "UnterminatedExpressionError",
    "UnclosedGroupError",
    "CodegenError",
    "ExpectedIdentifierError",
    "ExpectedIntExprError",
    "InvalidOperatorError",
    "TooManyArgumentsError",
    "ToolchainError",
    "EmulatorError",
]
