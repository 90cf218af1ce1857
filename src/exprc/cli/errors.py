"""
Unified CLI Error Handling
==========================

Provides consistent error handling and exit codes for the exprc command.
"""

import sys
import traceback
from enum import IntEnum
from typing import NoReturn, Optional

import click


class ExitCode(IntEnum):
    """Standard exit codes for the CLI."""
    SUCCESS = 0
    BUILD_ERROR = 1      # Compile, toolchain or runtime error
    INVALID_ARGS = 2     # Invalid arguments or unwritable output
    INTERNAL_ERROR = 3   # Unexpected internal error


def handle_cli_exception(
    error: Exception,
    source: Optional[str] = None,
    verbose: bool = False,
    error_type: str | None = None,
) -> NoReturn:
    """
    Unified exception handler for the CLI.

    Compile errors are rendered as diagnostics against ``source``; other
    errors get a one-line message. Internal errors print a traceback in
    verbose mode.

    Args:
        error: The exception that was raised
        source: Program text, needed to render compile errors
        verbose: If True, print full traceback for internal errors
        error_type: Optional prefix for the error message (e.g., "Toolchain")

    Raises:
        SystemExit: Always exits with an appropriate exit code
    """
    from exprc.diagnostics import format_diagnostic
    from exprc.errors import CompileError, ExprcError

    if isinstance(error, CompileError) and source is not None:
        # The diagnostic carries its own "[error]:" prefix
        click.echo(format_diagnostic(source, error), err=True, nl=False)
        sys.exit(ExitCode.BUILD_ERROR)

    elif isinstance(error, ExprcError):
        # Toolchain and emulator errors
        prefix = f"{error_type} error: " if error_type else "Error: "
        click.echo(f"{prefix}{error}", err=True)
        sys.exit(ExitCode.BUILD_ERROR)

    elif isinstance(error, click.BadParameter):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    elif isinstance(error, PermissionError):
        click.echo(f"Error: {error}", err=True)
        sys.exit(ExitCode.INVALID_ARGS)

    else:
        # Unexpected internal error, including RecursionError on deep nesting
        click.echo(f"Internal error: {error}", err=True)
        if verbose:
            traceback.print_exc()
        sys.exit(ExitCode.INTERNAL_ERROR)
