"""
Tests for the Assembly Emulator
===============================

These tests run compiled programs end to end in the emulator, checking
the values they exit with, and exercise the emulator's own parsing and
fault handling.
"""

import pytest

from exprc.compiler import CompilerOptions, compile_expr
from exprc.emulator import (
    DATA_BASE,
    Emulator,
    console_routines,
    decode_string,
    parse_assembly,
    run_assembly,
    to_signed,
)
from exprc.errors import EmulatorError


def run(source: str, **kwargs) -> int:
    """Compile and run ``source``, returning its exit value."""
    return run_assembly(compile_expr(source), **kwargs).value


class Recorder:
    """External routine that records its arguments."""

    def __init__(self, returns: int = 0, arity: int = 6):
        self.calls: list[tuple[int, ...]] = []
        self.returns = returns
        self.arity = arity

    def __call__(self, emulator, args):
        self.calls.append(tuple(to_signed(a, 4) for a in args[:self.arity]))
        return self.returns


# =============================================================================
# Arithmetic
# =============================================================================

class TestArithmetic:
    """Tests for the values compiled expressions evaluate to."""

    def test_precedence(self):
        assert run("2+3*4;") == 14

    def test_left_associative_subtraction(self):
        assert run("10-3-2;") == 5

    def test_truncating_division(self):
        assert run("7/2;") == 3

    def test_left_associative_division(self):
        assert run("100/10/5;") == 2

    def test_parentheses(self):
        assert run("(1+2)*3;") == 9
        assert run("2*(3-(4-5));") == 8

    def test_last_statement_is_result(self):
        assert run("1; 2; 3;") == 3

    def test_empty_program(self):
        assert run("") == 0

    def test_negative_result(self):
        result = run_assembly(compile_expr("0 - 5;"))
        assert result.value == -5
        assert result.exit_status == 251

    def test_wraps_at_32_bits(self):
        assert run("2147483647 + 1;") == -2147483648
        assert run("65536 * 65536;") == 0

    def test_division_by_zero_faults(self):
        with pytest.raises(EmulatorError, match="division by zero"):
            run("7 / 0;")

    def test_large_value(self):
        assert run("1000 * 1000;") == 1000000


# =============================================================================
# Variables
# =============================================================================

class TestVariables:
    """Tests for variable slots at runtime."""

    def test_assignment(self):
        assert run("a=1; b=2; a=a+b;") == 3

    def test_read_back(self):
        assert run("a=1; b=2; a=a+b; a;") == 3
        assert run("a=1; b=2; a=a+b; b;") == 2

    def test_chained_assignment(self):
        assert run("a = b = 4; a + b;") == 8

    def test_assignment_value(self):
        assert run("x = 6 * 7;") == 42

    def test_uninitialised_is_zero(self):
        """Fresh emulator memory is zero, so is an unassigned slot."""
        assert run("y;") == 0

    def test_many_variables(self):
        source = "".join(f"v{i} = {i};" for i in range(10)) + "v0+v1+v2+v3+v4+v5+v6+v7+v8+v9;"
        assert run(source) == 45


# =============================================================================
# External Calls
# =============================================================================

class TestCalls:
    """Tests for calls of external routines."""

    def test_arguments_in_registers(self):
        routine = Recorder(returns=10, arity=3)
        assert run("f(1, 2, 3);", externals={"f": routine}) == 10
        assert routine.calls == [(1, 2, 3)]

    def test_six_arguments(self):
        routine = Recorder()
        run("f(1, 2, 3, 4, 5, 6);", externals={"f": routine})
        assert routine.calls == [(1, 2, 3, 4, 5, 6)]

    def test_nested_calls(self):
        f = Recorder(returns=7, arity=2)
        g = Recorder(returns=5, arity=1)
        assert run("f(g(1), 2) + 1;", externals={"f": f, "g": g}) == 8
        assert g.calls == [(1,)]
        assert f.calls == [(5, 2)]

    def test_result_used_in_expression(self):
        assert run("a = 2; a * f();", externals={"f": Recorder(returns=21)}) == 42

    @pytest.mark.parametrize("source", [
        "f(1);",
        "f(1, 2);",
        "f(1, 2, 3);",
        "1 + f(2);",
        "1 + f(2, 3);",
        "1 + (2 * f(3, 4, 5));",
        "f(1 + f(2), f(3, 4 - f(5)));",
    ])
    def test_stack_aligned_at_every_call(self, source):
        """The emulator faults on a misaligned call, so these must all run."""
        run(source, externals={"f": Recorder(returns=1)})

    def test_arguments_preserved_across_nested_call(self):
        f = Recorder(returns=0, arity=3)
        g = Recorder(returns=9, arity=2)
        run("f(1, 2, g(3, 4));", externals={"f": f, "g": g})
        assert f.calls == [(1, 2, 9)]

    def test_exit_builtin(self):
        assert run("exit(3); 5;") == 3

    def test_undefined_routine(self):
        with pytest.raises(EmulatorError, match="undefined symbol 'nope'"):
            run("nope(1);")

    def test_console_routines(self):
        output = []
        routines = console_routines(output.append)
        assert run('putchar(72); puts("i");', externals=routines) == 2
        assert "".join(output) == "Hi\n"

    def test_string_escapes_decoded(self):
        output = []
        run(r'puts("a\tb\"c\"");', externals=console_routines(output.append))
        assert output == ['a\tb"c"\n']

    @pytest.mark.parametrize("emit_comments", [False, True])
    def test_line_break_in_string(self, emit_comments):
        output = []
        assembly = compile_expr('puts("a\nb");', CompilerOptions(emit_comments=emit_comments))
        run_assembly(assembly, externals=console_routines(output.append))
        assert output == ["a\nb\n"]

    def test_line_break_in_commented_string(self):
        output = []
        assembly = compile_expr('puts("x\n2 + ");', CompilerOptions(emit_comments=True))
        run_assembly(assembly, externals=console_routines(output.append))
        assert output == ["x\n2 + \n"]

    def test_libc_and_freestanding_agree(self):
        source = "a = 9; a * 2;"
        libc = run_assembly(compile_expr(source, CompilerOptions(freestanding=False)))
        bare = run_assembly(compile_expr(source, CompilerOptions(freestanding=True)))
        assert libc.value == bare.value == 18


# =============================================================================
# Emulator Mechanics
# =============================================================================

class TestMechanics:
    """Tests for parsing, limits and hooks."""

    def test_string_pool_in_data(self):
        program = parse_assembly(compile_expr('puts("ab");'))
        assert program.data_labels == {".LS0": DATA_BASE}
        assert bytes(program.data) == b"ab\0"

    def test_comments_ignored(self):
        assembly = compile_expr("4 + 4;", CompilerOptions(emit_comments=True))
        assert run_assembly(assembly).value == 8

    def test_missing_start(self):
        with pytest.raises(EmulatorError, match="_start"):
            Emulator("main:\n        ret\n")

    def test_unsupported_instruction(self):
        with pytest.raises(EmulatorError, match="unsupported instruction 'jmp'"):
            Emulator("_start:\n        jmp _start\n").run()

    def test_unsupported_directive(self):
        with pytest.raises(EmulatorError, match="unsupported directive"):
            parse_assembly("        .data\n")

    def test_step_limit(self):
        with pytest.raises(EmulatorError, match="step limit"):
            run("1 + 2;", max_steps=3)

    def test_step_count(self):
        result = run_assembly(compile_expr("1;"))
        # _start: xor, call, mov, mov, syscall; main: push, mov, mov, mov, pop, ret
        assert result.steps == 11

    def test_quotient_overflow(self):
        assembly = "\n".join([
            "_start:",
            "        mov     $1, %edx",
            "        mov     $0, %eax",
            "        mov     $1, %ebx",
            "        idiv    %ebx",
        ])
        with pytest.raises(EmulatorError, match="overflow"):
            Emulator(assembly).run()

    def test_instruction_hook(self):
        seen = []

        def hook(index, instruction):
            seen.append(instruction.mnemonic)
            return True

        emulator = Emulator(compile_expr("1;"))
        emulator.on_instruction = hook
        emulator.run()
        assert seen[:3] == ["xor", "call", "push"]

    def test_instruction_hook_can_stop(self):
        emulator = Emulator(compile_expr("1;"))
        emulator.on_instruction = lambda index, instruction: instruction.mnemonic != "syscall"
        with pytest.raises(EmulatorError, match="stopped"):
            emulator.run()

    def test_reset_allows_rerun(self):
        emulator = Emulator(compile_expr("a = a + 1; a;"))
        assert emulator.run().value == 1
        emulator.reset()
        assert emulator.run().value == 1

    def test_32_bit_write_zero_extends(self):
        assembly = "\n".join([
            "_start:",
            "        mov     $-1, %rax",
            "        mov     $5, %eax",
            "        mov     %rax, %rdi",
            "        mov     $60, %eax",
            "        syscall",
        ])
        emulator = Emulator(assembly)
        emulator.run()
        assert emulator.registers["rdi"] == 5


# =============================================================================
# Helpers
# =============================================================================

class TestHelpers:

    def test_to_signed(self):
        assert to_signed(0xFFFFFFFF, 4) == -1
        assert to_signed(0x7FFFFFFF, 4) == 2147483647
        assert to_signed(0x1_0000_0005, 4) == 5

    def test_decode_string(self):
        assert decode_string(r'a\"b\\c\n') == b'a"b\\c\n'
        assert decode_string(r"\101\x42") == b"AB"
        assert decode_string("plain") == b"plain"
