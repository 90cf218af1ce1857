"""
exprc - Expression Compiler Command-Line Interface
==================================================

This module implements the command-line interface for the expression
compiler. The program text is passed directly as the argument.

Usage Examples
--------------
Build an executable (default name: out):
    $ exprc "a = 6; a * 7;"
    $ ./out; echo $?
    42

Print the assembly instead of building:
    $ exprc -S "2 + 3 * 4;"

Run in the built-in emulator, no toolchain needed:
    $ exprc --run "10 - 3 - 2;"
    5

Verbose mode:
    $ exprc -v "1 + 2;" -o three
"""

import logging
from pathlib import Path

import click

from exprc import __version__
from exprc.ast import ASTPrinter
from exprc.cli.errors import handle_cli_exception
from exprc.compiler import Compiler, CompilerOptions
from exprc.emulator import Emulator, console_routines
from exprc.errors import CompileError, EmulatorError, ToolchainError
from exprc.toolchain import Toolchain, ToolchainConfig


# =============================================================================
# CLI Definition
# =============================================================================

@click.command()
@click.argument("source")
@click.option(
    "-o", "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("out"),
    show_default=True,
    help="Executable to produce",
)
@click.option(
    "-S", "--assembly",
    "assembly_only",
    is_flag=True,
    help="Print the assembly to stdout instead of building",
)
@click.option(
    "--ast",
    is_flag=True,
    help="Print AST and exit (for debugging)",
)
@click.option(
    "--run",
    "run_program",
    is_flag=True,
    help="Execute the program in the emulator and print its exit value",
)
@click.option(
    "--comments",
    is_flag=True,
    help="Annotate the assembly with each statement",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
@click.version_option(version=__version__, prog_name="exprc")
def main(
    source: str,
    output: Path,
    assembly_only: bool,
    ast: bool,
    run_program: bool,
    comments: bool,
    verbose: bool,
) -> None:
    """
    Compile an arithmetic expression program to x86-64.

    SOURCE is the program text: statements terminated by ';'. The value of
    the last statement becomes the process exit status.

    \b
    Examples:
        exprc "2 + 3 * 4;"              # Builds ./out
        exprc "a = 1; a + 2;" -o three  # Specify output file
        exprc -S "7 / 2;"               # Print assembly
        exprc --run "10 - 3 - 2;"       # Run in the emulator
        exprc --ast "a = b = 1;"        # Print the tree

    \b
    Language:
        - Integer and string literals
        - + - * / with the usual precedence, parentheses
        - Variables, assigned with =
        - Calls of C library routines: putchar(65);
    """
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s: %(message)s")

    options = CompilerOptions(emit_comments=comments)

    try:
        result = Compiler(options).compile_source(source)

        # AST dump mode
        if ast:
            click.echo(ASTPrinter().print(result.program))
            return

        # Assembly mode
        if assembly_only:
            click.echo(result.assembly, nl=False)
            return

        # Emulator mode
        if run_program:
            routines = console_routines(lambda text: click.echo(text, nl=False))
            execution = Emulator(result.assembly, externals=routines).run()
            click.echo(execution.value)
            if verbose:
                click.echo(f"Executed {execution.steps} instructions", err=True)
            return

        toolchain = Toolchain(ToolchainConfig.from_env())
        executable = toolchain.build(result, output)

        if verbose:
            click.echo(f"Tokenized: {result.token_count} tokens")
            click.echo(f"Parsed: {len(result.program.statements)} statements")
            if result.external_symbols:
                click.echo(f"Linked against libc for: {', '.join(result.external_symbols)}")

        click.echo(f"Compiled -> {executable}")

    except CompileError as e:
        handle_cli_exception(e, source=source, verbose=verbose)
    except ToolchainError as e:
        handle_cli_exception(e, verbose=verbose, error_type="Toolchain")
    except EmulatorError as e:
        handle_cli_exception(e, verbose=verbose, error_type="Runtime")
    except Exception as e:
        handle_cli_exception(e, verbose=verbose)


if __name__ == "__main__":
    main()
