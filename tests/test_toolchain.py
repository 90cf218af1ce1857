"""
Tests for the Assembler and Linker Driver
=========================================

The external tools are replaced by a fake runner with the signature of
subprocess.run, so these tests check the commands issued, artifact naming
and error handling without a native toolchain.
"""

import subprocess
from pathlib import Path

import pytest

from exprc.compiler import Compiler
from exprc.errors import ToolchainError
from exprc.toolchain import ArtifactNamer, Toolchain, ToolchainConfig


class FakeRunner:
    """Records commands and answers with a fixed result."""

    def __init__(self, returncode: int = 0, stderr: str = "", raises: Exception | None = None):
        self.commands: list[list[str]] = []
        self.kwargs: list[dict] = []
        self.returncode = returncode
        self.stderr = stderr
        self.raises = raises

    def __call__(self, cmd, **kwargs):
        self.commands.append(list(cmd))
        self.kwargs.append(kwargs)
        if self.raises is not None:
            raise self.raises
        return subprocess.CompletedProcess(cmd, self.returncode, "", self.stderr)


@pytest.fixture
def config(tmp_path):
    return ToolchainConfig(target_dir=tmp_path / "target")


def make_toolchain(config, runner):
    return Toolchain(config, ArtifactNamer(pid=42), runner)


# =============================================================================
# Configuration
# =============================================================================

class TestConfig:
    """Tests for ToolchainConfig."""

    def test_defaults(self):
        config = ToolchainConfig()
        assert config.assembler == "as"
        assert config.linker == "ld"
        assert config.target_dir == Path("exprc-target")
        assert config.assembler_flags == ("-g",)
        assert config.libraries == ("c",)
        assert config.timeout == 60

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("EXPRC_AS", "x86_64-linux-gnu-as")
        monkeypatch.setenv("EXPRC_LD", "x86_64-linux-gnu-ld")
        monkeypatch.setenv("EXPRC_TARGET_DIR", "/tmp/build")
        monkeypatch.setenv("EXPRC_DYNAMIC_LINKER", "/lib/ld.so")
        monkeypatch.setenv("EXPRC_TIMEOUT", "5")
        config = ToolchainConfig.from_env()
        assert config.assembler == "x86_64-linux-gnu-as"
        assert config.linker == "x86_64-linux-gnu-ld"
        assert config.target_dir == Path("/tmp/build")
        assert config.dynamic_linker == "/lib/ld.so"
        assert config.timeout == 5

    def test_from_env_ignores_invalid_timeout(self, monkeypatch):
        monkeypatch.setenv("EXPRC_TIMEOUT", "soon")
        assert ToolchainConfig.from_env().timeout == 60

    def test_from_env_without_variables(self, monkeypatch):
        for name in ("EXPRC_AS", "EXPRC_LD", "EXPRC_TARGET_DIR",
                     "EXPRC_DYNAMIC_LINKER", "EXPRC_TIMEOUT"):
            monkeypatch.delenv(name, raising=False)
        assert ToolchainConfig.from_env() == ToolchainConfig()

    def test_ensure_target_dir(self, config):
        assert not config.target_dir.exists()
        assert config.ensure_target_dir().is_dir()


class TestArtifactNamer:
    """Tests for unique artifact names."""

    def test_sequence(self):
        namer = ArtifactNamer(pid=7)
        assert [namer.next_name() for _ in range(3)] == ["exprc-7-0", "exprc-7-1", "exprc-7-2"]

    def test_independent_instances(self):
        first = ArtifactNamer(pid=1)
        second = ArtifactNamer(pid=2)
        assert first.next_name() != second.next_name()

    def test_defaults_to_process_id(self):
        import os
        assert ArtifactNamer().pid == os.getpid()


# =============================================================================
# Commands
# =============================================================================

class TestCommands:
    """Tests for the commands issued to the tools."""

    def test_assemble(self, config):
        runner = FakeRunner()
        toolchain = make_toolchain(config, runner)

        object_path = toolchain.assemble("        .text\n")

        source_path = config.target_dir / "exprc-42-0.s"
        assert object_path == config.target_dir / "exprc-42-0.o"
        assert source_path.read_text() == "        .text\n"
        assert runner.commands == [["as", "-g", "-o", str(object_path), str(source_path)]]
        assert runner.kwargs[0] == {"capture_output": True, "text": True, "timeout": 60}

    def test_unique_names_per_build(self, config):
        toolchain = make_toolchain(config, FakeRunner())
        first = toolchain.assemble("a")
        second = toolchain.assemble("b")
        assert first != second

    def test_link_static(self, config, tmp_path):
        runner = FakeRunner()
        toolchain = make_toolchain(config, runner)
        output = toolchain.link([Path("a.o")], tmp_path / "prog")
        assert output == tmp_path / "prog"
        assert runner.commands == [["ld", "-o", str(tmp_path / "prog"), "a.o"]]

    def test_link_with_libc(self, config):
        runner = FakeRunner()
        toolchain = make_toolchain(config, runner)
        toolchain.link([Path("a.o")], "prog", libraries=("c",))
        assert runner.commands[0] == [
            "ld", "-o", "prog", "a.o",
            "-dynamic-linker", "/lib64/ld-linux-x86-64.so.2",
            "-lc",
        ]

    def test_build_freestanding(self, config):
        runner = FakeRunner()
        result = Compiler().compile_source("2 + 3;")
        executable = make_toolchain(config, runner).build(result, "out")
        assert executable == Path("out")
        assert [cmd[0] for cmd in runner.commands] == ["as", "ld"]
        assert "-lc" not in runner.commands[1]

    def test_build_links_libc_for_calls(self, config):
        runner = FakeRunner()
        result = Compiler().compile_source("putchar(65);")
        make_toolchain(config, runner).build(result, "out")
        assert "-lc" in runner.commands[1]

    def test_build_writes_assembly(self, config):
        result = Compiler().compile_source("6 * 7;")
        make_toolchain(config, FakeRunner()).build(result, "out")
        assert (config.target_dir / "exprc-42-0.s").read_text() == result.assembly


# =============================================================================
# Failures
# =============================================================================

class TestFailures:
    """Tests for tool failures."""

    def test_nonzero_exit(self, config):
        runner = FakeRunner(returncode=1, stderr="Error: junk at end of line\n")
        with pytest.raises(ToolchainError) as exc_info:
            make_toolchain(config, runner).assemble("bad")
        error = exc_info.value
        assert error.returncode == 1
        assert error.stderr == "Error: junk at end of line\n"
        assert error.command[0] == "as"
        assert "junk at end of line" in str(error)

    def test_missing_tool(self, config):
        runner = FakeRunner(raises=FileNotFoundError("as"))
        with pytest.raises(ToolchainError, match="assembler not found: as") as exc_info:
            make_toolchain(config, runner).assemble("x")
        assert exc_info.value.returncode is None

    def test_timeout(self, config):
        runner = FakeRunner(raises=subprocess.TimeoutExpired(["ld"], 60))
        with pytest.raises(ToolchainError, match="linker timed out"):
            make_toolchain(config, runner).link([Path("a.o")], "out")

    def test_link_failure_stops_build(self, config):
        calls = []

        def runner(cmd, **kwargs):
            calls.append(cmd[0])
            returncode = 1 if cmd[0] == "ld" else 0
            return subprocess.CompletedProcess(cmd, returncode, "", "undefined reference")

        result = Compiler().compile_source("1;")
        with pytest.raises(ToolchainError, match="linker failed"):
            make_toolchain(config, runner).build(result, "out")
        assert calls == ["as", "ld"]
