"""
exprc Compiler Main Module
==========================

This module provides the main compiler interface. It runs the complete
compilation pipeline:

    Source → Lex → Parse → Generate → Assembly

Usage
-----
Command line:
    $ exprc "a = 6; a * 7;" -S

Programmatic:
    >>> from exprc import compile_expr
    >>> asm = compile_expr("2 + 3 * 4;")

Compilation Pipeline
--------------------
1. **Lexical Analysis**: Source text to tokens, pulled lazily by the parser
2. **Parsing**: Tokens to a Program (statements plus variable table)
3. **Code Generation**: Program to x86-64 AT&T assembly

Error Handling
--------------
Every stage stops at its first error. The error is raised unchanged to the
caller; render it with ``exprc.diagnostics.ErrorReporter``.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from exprc.ast import Program
from exprc.codegen import CodeGenerator
from exprc.lexer import Lexer
from exprc.parser import Parser


logger = logging.getLogger(__name__)


@dataclass
class CompilerOptions:
    """
    Compiler configuration options.

    Attributes:
        emit_comments: Include each statement as a comment in the assembly
        freestanding: Exit through the exit system call (True) or through
                      the C library's ``exit()`` (False). None chooses
                      freestanding unless the program calls external routines,
                      which need the C library anyway.
    """
    emit_comments: bool = False
    freestanding: Optional[bool] = None


@dataclass
class CompilerResult:
    """
    Result of a compilation.

    Attributes:
        source: The compiled source text
        success: True if compilation succeeded
        assembly: Generated assembly code
        program: The parsed Program
        token_count: Number of non-whitespace tokens consumed
        external_symbols: Routines the program calls, in first-call order
    """
    source: str = ""
    success: bool = False
    assembly: str = ""
    program: Optional[Program] = None
    token_count: int = 0
    external_symbols: tuple[str, ...] = field(default_factory=tuple)

    @property
    def needs_libc(self) -> bool:
        """True if the program must be linked against the C library."""
        return bool(self.external_symbols)


class Compiler:
    """
    Expression-language compiler for x86-64.

    Example:
        compiler = Compiler()
        result = compiler.compile_source("a = 1; a + 2;")
        print(result.assembly)

    Attributes:
        options: Compiler configuration options
    """

    def __init__(self, options: Optional[CompilerOptions] = None):
        """
        Initialize the compiler.

        Args:
            options: Compiler configuration (uses defaults if None)
        """
        self.options = options or CompilerOptions()

    def compile_source(self, source: str) -> CompilerResult:
        """
        Compile source text to assembly.

        Args:
            source: Program text

        Returns:
            CompilerResult containing the assembly and the parsed program

        Raises:
            CompileError: At the first lexical, syntax or code generation error
        """
        result = CompilerResult(source=source)

        # Stages 1 and 2: the parser pulls tokens from the lexer on demand
        parser = Parser(Lexer(source))
        result.program = parser.parse()
        result.token_count = parser.tokens_consumed

        # Stage 3: code generation
        generator = CodeGenerator(
            emit_comments=self.options.emit_comments,
            freestanding=self.options.freestanding,
        )
        result.assembly = generator.generate(result.program)
        result.external_symbols = generator.external_symbols
        result.success = True

        logger.debug(
            f"Compiled {len(source)} characters: {result.token_count} tokens, "
            f"{len(result.program.statements)} statements"
        )
        return result


# =============================================================================
# Convenience Functions
# =============================================================================

def compile_expr(source: str, options: Optional[CompilerOptions] = None) -> str:
    """
    Compile source text to x86-64 assembly.

    This is the primary high-level interface of the compiler.

    Args:
        source: Program text
        options: Compiler configuration (uses defaults if None)

    Returns:
        Generated assembly code

    Raises:
        CompileError: If compilation fails

    Example:
        >>> asm = compile_expr("a = 6; a * 7;")
        >>> "imul" in asm
        True
    """
    return Compiler(options).compile_source(source).assembly
