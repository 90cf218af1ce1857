"""
x86-64 Assembly Emulator
========================

Executes the assembly subset emitted by the code generator, in pure
Python. Compiled programs can be run and checked without an assembler,
a linker or an x86-64 host.

The emulator reads assembly *text*: it parses labels, directives and
instructions, lays the string pool out in memory, and interprets the
instructions starting at ``_start``.

Machine Model
-------------
- Registers: rax, rbx, rcx, rdx, rsi, rdi, rbp, rsp, r8, r9 (64-bit).
  Writing a 32-bit register (eax, r8d, ...) zero-extends into the full
  register, as on real hardware.
- Memory: a flat little-endian bytearray. The string pool is placed at
  DATA_BASE; the stack grows down from the top of memory.
- Return addresses pushed by ``call`` are instruction indices.

Supported Instructions
----------------------
mov, push, pop, add, sub, imul, idiv, xor, lea, call, ret, syscall

``idiv`` divides edx:eax by a 32-bit operand and faults exactly where the
processor does: on a zero divisor and on a quotient that does not fit.

External Routines
-----------------
``call`` to a label that is not defined in the program looks the name up
in the ``externals`` mapping. An external routine is a Python callable
``routine(emulator, args) -> int | None`` where ``args`` holds the six
argument registers rdi, rsi, rdx, rcx, r8, r9. The stack must be 16-byte
aligned at such a call. ``exit`` is built in and ends the program.

Example:
    >>> from exprc.compiler import compile_expr
    >>> from exprc.emulator import Emulator
    >>> Emulator(compile_expr("2 + 3 * 4;")).run().value
    14
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Union

from exprc.errors import EmulatorError


logger = logging.getLogger(__name__)


MEMORY_SIZE = 1 << 20
DATA_BASE = 0x1000
DEFAULT_MAX_STEPS = 1_000_000

# Linux x86-64 exit system call number
SYS_EXIT = 60

ARGUMENT_REGISTERS = ("rdi", "rsi", "rdx", "rcx", "r8", "r9")

# Register name -> (64-bit register, access width in bytes)
REGISTER_ALIASES: dict[str, tuple[str, int]] = {}
for _name in ("ax", "bx", "cx", "dx", "si", "di", "bp", "sp"):
    REGISTER_ALIASES[f"r{_name}"] = (f"r{_name}", 8)
    REGISTER_ALIASES[f"e{_name}"] = (f"r{_name}", 4)
for _name in ("r8", "r9"):
    REGISTER_ALIASES[_name] = (_name, 8)
    REGISTER_ALIASES[f"{_name}d"] = (_name, 4)
del _name

REGISTERS = tuple(dict.fromkeys(name for name, _ in REGISTER_ALIASES.values()))

_IMMEDIATE = re.compile(r"^\$(-?\d+)$")
_REGISTER = re.compile(r"^%(\w+)$")
_MEMORY = re.compile(r"^(-?\d+|[.\w]+)?\(%(\w+)\)$")
_SYMBOL = re.compile(r"^[.A-Za-z_][.\w]*$")
_LABEL = re.compile(r"^([.A-Za-z_][.\w]*):$")
_STRING_ESCAPE = re.compile(r"\\(x[0-9A-Fa-f]{1,2}|[0-7]{1,3}|.)", re.DOTALL)

_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "\\": "\\",
    '"': '"',
}


def to_signed(value: int, width: int) -> int:
    """Interpret the low ``width`` bytes of ``value`` as two's complement."""
    bits = width * 8
    value &= (1 << bits) - 1
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def decode_string(raw: str) -> bytes:
    """Decode the escapes of a ``.string`` operand the way the assembler does."""
    def replace(match: re.Match) -> str:
        escape = match.group(1)
        if escape[0] == "x" and len(escape) > 1:
            return chr(int(escape[1:], 16))
        if escape[0] in "01234567":
            return chr(int(escape, 8) & 0xFF)
        return _SIMPLE_ESCAPES.get(escape, escape)

    return _STRING_ESCAPE.sub(replace, raw).encode("latin-1")


# =============================================================================
# Parsed Program
# =============================================================================

@dataclass(frozen=True)
class Immediate:
    value: int


@dataclass(frozen=True)
class Register:
    name: str       # 64-bit register name
    width: int      # 4 or 8


@dataclass(frozen=True)
class Memory:
    base: str
    displacement: int = 0
    symbol: Optional[str] = None


@dataclass(frozen=True)
class Symbol:
    name: str


Operand = Union[Immediate, Register, Memory, Symbol]


@dataclass(frozen=True)
class Instruction:
    """
    One parsed instruction.

    Attributes:
        mnemonic: Instruction name, lower case
        operands: Operands in AT&T order (source first)
        line: 1-based line number in the assembly text
    """
    mnemonic: str
    operands: tuple[Operand, ...]
    line: int


@dataclass
class AssemblyProgram:
    """Instructions, label addresses and initial data of one assembly text."""
    instructions: list[Instruction] = field(default_factory=list)
    code_labels: dict[str, int] = field(default_factory=dict)
    data_labels: dict[str, int] = field(default_factory=dict)
    data: bytearray = field(default_factory=bytearray)


def _split_operands(text: str) -> list[str]:
    """Split on commas that are not inside parentheses."""
    operands, depth, current = [], 0, []
    for char in text:
        if char == "," and depth == 0:
            operands.append("".join(current).strip())
            current = []
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current.append(char)
    if "".join(current).strip():
        operands.append("".join(current).strip())
    return operands


def _strip_comment(line: str) -> str:
    in_string = False
    escaped = False
    for index, char in enumerate(line):
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            in_string = not in_string
        elif char == "#" and not in_string:
            return line[:index]
    return line


def parse_operand(text: str, line: int) -> Operand:
    """Parse one AT&T operand."""
    if match := _IMMEDIATE.match(text):
        return Immediate(int(match.group(1)))

    if match := _REGISTER.match(text):
        alias = REGISTER_ALIASES.get(match.group(1))
        if alias is None:
            raise EmulatorError(f"unsupported register '{text}'", line)
        return Register(*alias)

    if match := _MEMORY.match(text):
        displacement, base = match.groups()
        if base != "rip" and base not in REGISTER_ALIASES:
            raise EmulatorError(f"unsupported base register '%{base}'", line)
        if base != "rip":
            base = REGISTER_ALIASES[base][0]
        if displacement is None:
            return Memory(base)
        if re.match(r"^-?\d+$", displacement):
            return Memory(base, int(displacement))
        return Memory(base, 0, displacement)

    if _SYMBOL.match(text):
        return Symbol(text)

    raise EmulatorError(f"cannot parse operand '{text}'", line)


def parse_assembly(text: str) -> AssemblyProgram:
    """
    Parse assembly text into an AssemblyProgram.

    Raises:
        EmulatorError: On a directive or operand outside the supported subset
    """
    program = AssemblyProgram()
    section = ".text"

    for number, raw_line in enumerate(text.splitlines(), start=1):
        line = _strip_comment(raw_line).strip()
        if not line:
            continue

        if match := _LABEL.match(line):
            label = match.group(1)
            if section == ".text":
                program.code_labels[label] = len(program.instructions)
            else:
                program.data_labels[label] = DATA_BASE + len(program.data)
            continue

        mnemonic, _, rest = line.partition(" ")
        rest = rest.strip()

        if mnemonic.startswith("."):
            if mnemonic == ".text":
                section = ".text"
            elif mnemonic == ".section":
                section = rest.split(",")[0].strip()
            elif mnemonic in (".string", ".asciz"):
                if not (rest.startswith('"') and rest.endswith('"') and len(rest) >= 2):
                    raise EmulatorError(f"malformed string directive: {rest}", number)
                program.data.extend(decode_string(rest[1:-1]) + b"\0")
            elif mnemonic not in (".globl", ".global"):
                raise EmulatorError(f"unsupported directive '{mnemonic}'", number)
            continue

        operands = tuple(parse_operand(op, number) for op in _split_operands(rest))
        program.instructions.append(Instruction(mnemonic.lower(), operands, number))

    return program


# =============================================================================
# Execution
# =============================================================================

@dataclass
class ExecutionResult:
    """
    Outcome of running a program to completion.

    Attributes:
        value: Exit value as a signed 32-bit integer
        exit_status: What the operating system reports (value & 0xFF)
        steps: Number of instructions executed
    """
    value: int
    exit_status: int
    steps: int


ExternalRoutine = Callable[["Emulator", tuple[int, ...]], Optional[int]]


class Emulator:
    """
    Interpreter for the generated x86-64 assembly subset.

    Example:
        >>> emulator = Emulator(assembly, externals={"putchar": my_putchar})
        >>> result = emulator.run()
        >>> result.value

    Attributes:
        program: The parsed assembly
        registers: 64-bit register values, unsigned
        memory: Flat byte-addressed memory
        externals: Routines callable from the program by name
        max_steps: Instruction budget; exceeding it is an error
    """

    def __init__(
        self,
        assembly: str,
        externals: Optional[Mapping[str, ExternalRoutine]] = None,
        max_steps: int = DEFAULT_MAX_STEPS,
    ):
        self.program = parse_assembly(assembly)
        self.externals = dict(externals or {})
        self.max_steps = max_steps

        self.memory = bytearray(MEMORY_SIZE)
        self.registers: dict[str, int] = {}
        self.steps = 0
        self._pc = 0
        self._exit_value: Optional[int] = None

        # on_instruction(index, instruction) -> bool: return False to stop execution
        self.on_instruction: Optional[Callable[[int, Instruction], bool]] = None

        self.reset()

    def reset(self) -> None:
        """Restore registers, memory and the program counter to the entry state."""
        self.memory[:] = bytes(MEMORY_SIZE)
        data = self.program.data
        self.memory[DATA_BASE:DATA_BASE + len(data)] = data

        self.registers = {name: 0 for name in REGISTERS}
        self.registers["rsp"] = MEMORY_SIZE
        self.steps = 0
        self._exit_value = None

        if "_start" not in self.program.code_labels:
            raise EmulatorError("program has no _start label")
        self._pc = self.program.code_labels["_start"]

    def run(self) -> ExecutionResult:
        """
        Execute from the current state until the program exits.

        Returns:
            ExecutionResult with the exit value

        Raises:
            EmulatorError: On a fault, an unsupported instruction, or when
                the step budget is exhausted
        """
        while self._exit_value is None:
            if self.steps >= self.max_steps:
                raise EmulatorError(f"step limit of {self.max_steps} exceeded")
            if not 0 <= self._pc < len(self.program.instructions):
                raise EmulatorError("execution ran past the end of the program")

            instruction = self.program.instructions[self._pc]
            if self.on_instruction is not None:
                if self.on_instruction(self._pc, instruction) is False:
                    raise EmulatorError("execution stopped by instruction hook", instruction.line)

            self._pc += 1
            self.steps += 1
            self._execute(instruction)

        value = to_signed(self._exit_value, 4)
        logger.debug(f"Program exited with {value} after {self.steps} steps")
        return ExecutionResult(value=value, exit_status=value & 0xFF, steps=self.steps)

    # =========================================================================
    # Memory Access
    # =========================================================================

    def read_memory(self, address: int, size: int) -> int:
        self._check_address(address, size)
        return int.from_bytes(self.memory[address:address + size], "little")

    def write_memory(self, address: int, value: int, size: int) -> None:
        self._check_address(address, size)
        mask = (1 << (size * 8)) - 1
        self.memory[address:address + size] = (value & mask).to_bytes(size, "little")

    def read_string(self, address: int) -> bytes:
        """Read a NUL-terminated byte string starting at ``address``."""
        self._check_address(address, 1)
        end = self.memory.index(0, address)
        return bytes(self.memory[address:end])

    def _check_address(self, address: int, size: int) -> None:
        if address < 0 or address + size > MEMORY_SIZE:
            raise EmulatorError(f"memory access out of bounds at {address:#x}")

    # =========================================================================
    # Operand Access
    # =========================================================================

    def _address(self, operand: Memory, line: int) -> int:
        if operand.base == "rip":
            if operand.symbol not in self.program.data_labels:
                raise EmulatorError(f"undefined data label '{operand.symbol}'", line)
            return self.program.data_labels[operand.symbol]
        if operand.symbol is not None:
            raise EmulatorError(f"symbolic displacement '{operand.symbol}' needs %rip", line)
        return (self.registers[operand.base] + operand.displacement) % (1 << 64)

    def _read(self, operand: Operand, width: int, line: int) -> int:
        if isinstance(operand, Immediate):
            return operand.value & ((1 << (width * 8)) - 1)
        if isinstance(operand, Register):
            return self.registers[operand.name] & ((1 << (operand.width * 8)) - 1)
        if isinstance(operand, Memory):
            return self.read_memory(self._address(operand, line), width)
        raise EmulatorError(f"cannot read operand {operand}", line)

    def _write(self, operand: Operand, value: int, width: int, line: int) -> None:
        if isinstance(operand, Register):
            # 32-bit writes clear the upper half
            self.registers[operand.name] = value & ((1 << (operand.width * 8)) - 1)
        elif isinstance(operand, Memory):
            self.write_memory(self._address(operand, line), value, width)
        else:
            raise EmulatorError(f"cannot write operand {operand}", line)

    @staticmethod
    def _width(instruction: Instruction) -> int:
        for operand in instruction.operands:
            if isinstance(operand, Register):
                return operand.width
        raise EmulatorError(f"ambiguous operand size for '{instruction.mnemonic}'", instruction.line)

    def _push(self, value: int) -> None:
        self.registers["rsp"] -= 8
        self.write_memory(self.registers["rsp"], value, 8)

    def _pop(self) -> int:
        value = self.read_memory(self.registers["rsp"], 8)
        self.registers["rsp"] += 8
        return value

    # =========================================================================
    # Instruction Execution
    # =========================================================================

    def _expect_operands(self, instruction: Instruction, count: int) -> tuple[Operand, ...]:
        if len(instruction.operands) != count:
            raise EmulatorError(
                f"'{instruction.mnemonic}' takes {count} operands, "
                f"got {len(instruction.operands)}",
                instruction.line,
            )
        return instruction.operands

    def _execute(self, instruction: Instruction) -> None:
        handler = getattr(self, f"_op_{instruction.mnemonic}", None)
        if handler is None:
            raise EmulatorError(f"unsupported instruction '{instruction.mnemonic}'", instruction.line)
        handler(instruction)

    def _op_mov(self, instruction: Instruction) -> None:
        source, destination = self._expect_operands(instruction, 2)
        width = self._width(instruction)
        value = self._read(source, width, instruction.line)
        self._write(destination, value, width, instruction.line)

    def _arithmetic(self, instruction: Instruction, operation: Callable[[int, int], int]) -> None:
        source, destination = self._expect_operands(instruction, 2)
        width = self._width(instruction)
        left = self._read(destination, width, instruction.line)
        right = self._read(source, width, instruction.line)
        self._write(destination, operation(left, right), width, instruction.line)

    def _op_add(self, instruction: Instruction) -> None:
        self._arithmetic(instruction, lambda left, right: left + right)

    def _op_sub(self, instruction: Instruction) -> None:
        self._arithmetic(instruction, lambda left, right: left - right)

    def _op_imul(self, instruction: Instruction) -> None:
        self._arithmetic(instruction, lambda left, right: left * right)

    def _op_xor(self, instruction: Instruction) -> None:
        self._arithmetic(instruction, lambda left, right: left ^ right)

    def _op_idiv(self, instruction: Instruction) -> None:
        (source,) = self._expect_operands(instruction, 1)
        if not isinstance(source, Register) or source.width != 4:
            raise EmulatorError("idiv is only supported with a 32-bit register", instruction.line)

        divisor = to_signed(self._read(source, 4, instruction.line), 4)
        high = self.registers["rdx"] & 0xFFFFFFFF
        low = self.registers["rax"] & 0xFFFFFFFF
        dividend = to_signed((high << 32) | low, 8)

        if divisor == 0:
            raise EmulatorError("division by zero", instruction.line)

        # Truncate towards zero
        quotient = abs(dividend) // abs(divisor)
        if (dividend < 0) != (divisor < 0):
            quotient = -quotient
        remainder = dividend - quotient * divisor

        if not -(1 << 31) <= quotient < (1 << 31):
            raise EmulatorError("division quotient overflow", instruction.line)

        self.registers["rax"] = quotient & 0xFFFFFFFF
        self.registers["rdx"] = remainder & 0xFFFFFFFF

    def _op_lea(self, instruction: Instruction) -> None:
        source, destination = self._expect_operands(instruction, 2)
        if not isinstance(source, Memory) or not isinstance(destination, Register):
            raise EmulatorError("lea needs a memory source and register destination", instruction.line)
        self._write(destination, self._address(source, instruction.line), 8, instruction.line)

    def _op_push(self, instruction: Instruction) -> None:
        (source,) = self._expect_operands(instruction, 1)
        self._push(self._read(source, 8, instruction.line))

    def _op_pop(self, instruction: Instruction) -> None:
        (destination,) = self._expect_operands(instruction, 1)
        self._write(destination, self._pop(), 8, instruction.line)

    def _op_call(self, instruction: Instruction) -> None:
        (target,) = self._expect_operands(instruction, 1)
        if not isinstance(target, Symbol):
            raise EmulatorError("indirect calls are not supported", instruction.line)

        name = target.name
        if name in self.program.code_labels:
            self._push(self._pc)
            self._pc = self.program.code_labels[name]
            return

        if name == "exit":
            self._exit_value = self.registers["rdi"]
            return

        if name in self.externals:
            if self.registers["rsp"] % 16 != 0:
                raise EmulatorError(f"stack misaligned at call to '{name}'", instruction.line)
            args = tuple(self.registers[register] for register in ARGUMENT_REGISTERS)
            logger.debug(f"External call {name}{args}")
            returned = self.externals[name](self, args)
            self.registers["rax"] = (returned or 0) & 0xFFFFFFFFFFFFFFFF
            return

        raise EmulatorError(f"undefined symbol '{name}'", instruction.line)

    def _op_ret(self, instruction: Instruction) -> None:
        self._expect_operands(instruction, 0)
        self._pc = self._pop()

    def _op_syscall(self, instruction: Instruction) -> None:
        number = self.registers["rax"]
        if number != SYS_EXIT:
            raise EmulatorError(f"unsupported system call {number}", instruction.line)
        self._exit_value = self.registers["rdi"]


# =============================================================================
# Convenience Functions
# =============================================================================

def console_routines(write: Callable[[str], object]) -> dict[str, ExternalRoutine]:
    """
    External routines for character output, in the shape of their libc
    namesakes.

    Args:
        write: Receives the text each call prints

    Returns:
        Mapping with ``putchar`` and ``puts``
    """
    def putchar(emulator: Emulator, args: tuple[int, ...]) -> int:
        char = args[0] & 0xFF
        write(chr(char))
        return char

    def puts(emulator: Emulator, args: tuple[int, ...]) -> int:
        text = emulator.read_string(args[0]).decode("latin-1")
        write(text + "\n")
        return len(text) + 1

    return {"putchar": putchar, "puts": puts}


def run_assembly(
    assembly: str,
    externals: Optional[Mapping[str, ExternalRoutine]] = None,
    max_steps: int = DEFAULT_MAX_STEPS,
) -> ExecutionResult:
    """Parse and run ``assembly`` in a fresh emulator."""
    return Emulator(assembly, externals, max_steps).run()
