"""
Assembler and Linker Driver
===========================

Turns generated assembly into a native executable by running the system
assembler and linker as subprocesses.

Build Steps
-----------
1. The assembly text is written to ``<target_dir>/<name>.s``
2. ``as -g -o <name>.o <name>.s`` produces an object file
3. ``ld -o <output> <name>.o`` produces the executable. Programs that
   call external routines are linked dynamically against the C library.

Artifact Naming
---------------
Each Toolchain owns an ArtifactNamer. Names combine the process id with a
counter, so two drivers in different processes sharing one target
directory never collide, and one driver never reuses a name.

Configuration
-------------
ToolchainConfig holds the tool names and paths. ``ToolchainConfig.from_env``
applies these optional overrides:

    EXPRC_AS              Assembler binary (default: as)
    EXPRC_LD              Linker binary (default: ld)
    EXPRC_TARGET_DIR      Working directory for artifacts (default: exprc-target)
    EXPRC_DYNAMIC_LINKER  Program interpreter for libc-linked executables
    EXPRC_TIMEOUT         Per-command timeout in seconds (default: 60)
"""

import itertools
import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence

from exprc.compiler import CompilerResult
from exprc.errors import ToolchainError


logger = logging.getLogger(__name__)


@dataclass
class ToolchainConfig:
    """
    Configuration for the assembler and linker.

    Attributes:
        assembler: Assembler binary
        linker: Linker binary
        target_dir: Directory receiving the .s and .o files
        assembler_flags: Extra assembler flags (default: debug info)
        dynamic_linker: Program interpreter used when linking libc
        libraries: Libraries linked when the program calls external routines
        timeout: Seconds each command may run
    """

    assembler: str = "as"
    linker: str = "ld"
    target_dir: Path = field(default_factory=lambda: Path("exprc-target"))
    assembler_flags: tuple[str, ...] = ("-g",)
    dynamic_linker: str = "/lib64/ld-linux-x86-64.so.2"
    libraries: tuple[str, ...] = ("c",)
    timeout: int = 60

    @classmethod
    def from_env(cls) -> "ToolchainConfig":
        """
        Create a ToolchainConfig from environment variables.

        Returns:
            ToolchainConfig with defaults overridden by the environment
        """
        config = cls()

        if assembler := os.environ.get("EXPRC_AS"):
            config.assembler = assembler

        if linker := os.environ.get("EXPRC_LD"):
            config.linker = linker

        if target_dir := os.environ.get("EXPRC_TARGET_DIR"):
            config.target_dir = Path(target_dir)

        if dynamic_linker := os.environ.get("EXPRC_DYNAMIC_LINKER"):
            config.dynamic_linker = dynamic_linker

        if timeout := os.environ.get("EXPRC_TIMEOUT"):
            try:
                config.timeout = int(timeout)
            except ValueError:
                logger.warning(f"Ignoring invalid EXPRC_TIMEOUT value: {timeout!r}")

        return config

    def ensure_target_dir(self) -> Path:
        """Create the target directory if needed and return it."""
        self.target_dir.mkdir(parents=True, exist_ok=True)
        return self.target_dir


class ArtifactNamer:
    """
    Produces unique artifact stems: ``<prefix>-<pid>-<n>``.

    Example:
        >>> namer = ArtifactNamer(pid=42)
        >>> namer.next_name(), namer.next_name()
        ('exprc-42-0', 'exprc-42-1')
    """

    def __init__(self, prefix: str = "exprc", pid: Optional[int] = None):
        self.prefix = prefix
        self.pid = pid if pid is not None else os.getpid()
        self._counter = itertools.count()

    def next_name(self) -> str:
        return f"{self.prefix}-{self.pid}-{next(self._counter)}"


# Signature of subprocess.run, replaceable for testing
Runner = Callable[..., subprocess.CompletedProcess]


class Toolchain:
    """
    Drives the external assembler and linker.

    Example:
        result = Compiler().compile_source("2 + 3;")
        executable = Toolchain().build(result, "out")

    Attributes:
        config: Tool names, paths and limits
        namer: Source of unique artifact names
    """

    def __init__(
        self,
        config: Optional[ToolchainConfig] = None,
        namer: Optional[ArtifactNamer] = None,
        runner: Runner = subprocess.run,
    ):
        self.config = config or ToolchainConfig()
        self.namer = namer or ArtifactNamer()
        self._runner = runner

    def write_assembly(self, assembly: str) -> Path:
        """Write ``assembly`` to a fresh ``.s`` file in the target directory."""
        target_dir = self.config.ensure_target_dir()
        path = target_dir / f"{self.namer.next_name()}.s"
        path.write_text(assembly, encoding="utf-8")
        logger.debug(f"Wrote {len(assembly)} characters of assembly to {path}")
        return path

    def assemble(self, assembly: str) -> Path:
        """
        Assemble ``assembly`` into an object file.

        Returns:
            Path to the object file

        Raises:
            ToolchainError: If the assembler is missing, times out or fails
        """
        source_path = self.write_assembly(assembly)
        object_path = source_path.with_suffix(".o")

        cmd = [
            self.config.assembler,
            *self.config.assembler_flags,
            "-o", str(object_path),
            str(source_path),
        ]
        self._run(cmd, "assembler")
        return object_path

    def link(
        self,
        objects: Sequence[Path],
        output: Path | str,
        libraries: Sequence[str] = (),
    ) -> Path:
        """
        Link object files into an executable.

        Args:
            objects: Object files to link
            output: Path of the executable to produce
            libraries: Library names passed as ``-l<name>``; when present the
                       executable is linked dynamically

        Returns:
            Path to the executable

        Raises:
            ToolchainError: If the linker is missing, times out or fails
        """
        output = Path(output)
        cmd = [self.config.linker, "-o", str(output), *(str(obj) for obj in objects)]
        if libraries:
            cmd.extend(["-dynamic-linker", self.config.dynamic_linker])
            cmd.extend(f"-l{library}" for library in libraries)

        self._run(cmd, "linker")
        return output

    def build(self, result: CompilerResult, output: Path | str) -> Path:
        """
        Assemble and link a compilation result.

        Returns:
            Path to the executable

        Raises:
            ToolchainError: If either step fails
        """
        object_path = self.assemble(result.assembly)
        libraries = self.config.libraries if result.needs_libc else ()
        executable = self.link([object_path], output, libraries)
        logger.info(f"Built {executable}")
        return executable

    def _run(self, cmd: list[str], tool: str) -> subprocess.CompletedProcess:
        logger.info(f"Running {tool}: {' '.join(cmd)}")

        try:
            completed = self._runner(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.timeout,
            )
        except FileNotFoundError:
            logger.error(f"{tool} not found: {cmd[0]}")
            raise ToolchainError(f"{tool} not found: {cmd[0]}", command=cmd) from None
        except subprocess.TimeoutExpired:
            logger.error(f"{tool} timed out after {self.config.timeout}s")
            raise ToolchainError(
                f"{tool} timed out after {self.config.timeout}s", command=cmd
            ) from None

        if completed.returncode != 0:
            logger.error(f"{tool} failed with exit status {completed.returncode}")
            raise ToolchainError(
                f"{tool} failed with exit status {completed.returncode}",
                command=cmd,
                returncode=completed.returncode,
                stderr=completed.stderr or "",
            )

        return completed
