"""
x86-64 Code Generator
=====================

This module lowers a Program to x86-64 assembly in AT&T syntax, ready for
the GNU assembler.

Code Generation Strategy
------------------------
The generator walks the tree and uses a single-accumulator evaluation
model:

1. Every expression leaves its value in %eax
2. For binary operations the left value is pushed, the right value is
   computed into %eax, and the left value is popped into %ebx
3. Variables live in fixed slots below the frame pointer %rbp

Register Usage
--------------
| Register  | Usage                                      |
|-----------|--------------------------------------------|
| %eax      | Accumulator, value of the last expression  |
| %ebx      | Scratch, the pending left operand          |
| %edx      | High half of the dividend for idiv         |
| %rbp      | Frame base, variables at negative offsets  |
| %rdi..%r9 | Call arguments                             |

Stack Frame Layout
------------------
    +----------------+ <- %rbp + 8
    | Return address |
    +----------------+ <- %rbp
    | Saved %rbp     |
    +----------------+ <- %rbp - 4
    | variable 0     |
    | variable 1     |  slot i at -(i + 1) * 4(%rbp)
    | ...            |
    +----------------+ <- %rsp after the prologue (16-byte aligned)
    | pushed operands|
    +----------------+

Process Entry
-------------
``_start`` calls ``main`` and exits with the value main left in %eax, so
the last statement's value becomes the process exit status. Programs that
call external routines are linked against the C library and exit through
``exit()`` so buffered output is flushed; other programs use the exit
system call directly and need no library at all.

Generated Assembly Format
-------------------------
        .text
        .globl  _start
_start:
        xor     %ebp, %ebp
        call    main
        mov     %eax, %edi
        mov     $60, %eax
        syscall
        .globl  main
main:
        push    %rbp
        mov     %rsp, %rbp
        mov     $2, %eax
        ...
        mov     %rbp, %rsp
        pop     %rbp
        ret
"""

import io
import logging
from typing import Any, Optional, TextIO

from exprc.ast import (
    ASTPrinter,
    ASTVisitor,
    BinaryExpression,
    BinaryOperator,
    CallExpression,
    Expression,
    NumberLiteral,
    Program,
    StringLiteral,
    VariableReference,
)
from exprc.span import Span
from exprc.errors import (
    CodegenError,
    ExpectedIdentifierError,
    ExpectedIntExprError,
    InvalidOperatorError,
    TooManyArgumentsError,
)


logger = logging.getLogger(__name__)


# Size of one variable slot in bytes
WORD_SIZE = 4

# System V AMD64 integer argument registers, in order
ARGUMENT_REGISTERS = ("%rdi", "%rsi", "%rdx", "%rcx", "%r8", "%r9")

STACK_ALIGNMENT = 16

# Linux x86-64 exit system call number
SYS_EXIT = 60

ARITHMETIC_INSTRUCTIONS = {
    BinaryOperator.ADD: "add",
    BinaryOperator.SUBTRACT: "sub",
    BinaryOperator.MULTIPLY: "imul",
}


def slot_offset(index: int) -> int:
    """Distance below %rbp of variable slot ``index``."""
    return (index + 1) * WORD_SIZE


def escape_control_characters(text: str) -> str:
    """
    Replace raw control characters with three-digit octal escapes.

    A ``.string`` operand must stay on one line, so a literal that spans
    lines in the source becomes ``\\012`` here. Backslash escapes already
    written in the source are left for the assembler.
    """
    return "".join(
        f"\\{ord(char):03o}" if ord(char) < 0x20 or ord(char) == 0x7F else char
        for char in text
    )


class CodeGenerator(ASTVisitor):
    """
    Generates x86-64 assembly from a Program.

    Each generator writes one program. Output is collected line by line and
    written to the sink in one piece once the whole program has lowered
    without error, so a failed generation leaves the sink untouched.

    Attributes:
        out: Text sink receiving the assembly (default: a fresh StringIO)
        emit_comments: Annotate each statement with its source expression
    """

    def __init__(
        self,
        out: Optional[TextIO] = None,
        emit_comments: bool = False,
        freestanding: Optional[bool] = None,
    ):
        """
        Args:
            out: Where to write the assembly
            emit_comments: Emit a ``#`` comment before each statement
            freestanding: Exit via system call (True) or ``exit()`` (False).
                None picks True unless the program calls external routines.
        """
        self.out = out if out is not None else io.StringIO()
        self.emit_comments = emit_comments
        self._freestanding = freestanding

        self._output: list[str] = []
        self._strings: dict[str, str] = {}      # raw text -> label
        self._externals: list[str] = []
        self._depth = 0                         # 8-byte pushes outstanding

    @property
    def external_symbols(self) -> tuple[str, ...]:
        """Routines called by the generated code, in first-call order."""
        return tuple(self._externals)

    def generate(self, program: Program) -> str:
        """
        Generate assembly for ``program`` and write it to the sink.

        Returns:
            The complete assembly text

        Raises:
            CodegenError: If a statement cannot be lowered
        """
        self._output = []
        self._strings = {}
        self._externals = []
        self._depth = 0

        printer = ASTPrinter()
        for number, statement in enumerate(program.statements, start=1):
            if self.emit_comments:
                self._emit_comment(f"statement {number}: {printer.visit(statement)}")
            self.visit(statement)
            if self._depth != 0:
                raise CodegenError(
                    f"unbalanced operand stack ({self._depth} pushes outstanding)",
                    getattr(statement, "span", Span.EOF),
                )

        body = self._output
        self._output = []

        freestanding = self._freestanding
        if freestanding is None:
            freestanding = not self._externals

        self._emit_entry(freestanding)
        self._emit_prologue(len(program.variables))
        self._output.extend(body)
        self._emit_epilogue()
        self._emit_strings()
        self._emit_directive(".section", '.note.GNU-stack,"",@progbits')

        text = "\n".join(self._output) + "\n"
        self.out.write(text)

        logger.debug(
            f"Generated {len(self._output)} lines for {len(program.statements)} statements "
            f"({'freestanding' if freestanding else 'libc'}, "
            f"externals: {', '.join(self._externals) or 'none'})"
        )
        return text

    # =========================================================================
    # Assembly Output Methods
    # =========================================================================

    def _emit(self, line: str = "") -> None:
        self._output.append(line)

    def _emit_comment(self, comment: str) -> None:
        # A comment runs to the end of its line
        self._emit(f"        # {' '.join(comment.splitlines())}")

    def _emit_label(self, label: str) -> None:
        self._emit(f"{label}:")

    def _emit_directive(self, directive: str, argument: str = "") -> None:
        if argument:
            self._emit(f"        {directive:<7} {argument}")
        else:
            self._emit(f"        {directive}")

    def _emit_instruction(self, mnemonic: str, *operands: str) -> None:
        """Emit an instruction; operands in AT&T order (source first)."""
        if operands:
            self._emit(f"        {mnemonic:<8}{', '.join(operands)}")
        else:
            self._emit(f"        {mnemonic}")

    def _push(self, register: str) -> None:
        self._emit_instruction("push", register)
        self._depth += 1

    def _pop(self, register: str) -> None:
        self._emit_instruction("pop", register)
        self._depth -= 1

    # =========================================================================
    # Entry Point, Prologue and Epilogue
    # =========================================================================

    def _emit_entry(self, freestanding: bool) -> None:
        self._emit_directive(".text")
        self._emit_directive(".globl", "_start")
        self._emit_label("_start")
        self._emit_instruction("xor", "%ebp", "%ebp")
        self._emit_instruction("call", "main")
        self._emit_instruction("mov", "%eax", "%edi")
        if freestanding:
            self._emit_instruction("mov", f"${SYS_EXIT}", "%eax")
            self._emit_instruction("syscall")
        else:
            self._emit_instruction("call", "exit")

    def _emit_prologue(self, variable_count: int) -> None:
        self._emit_directive(".globl", "main")
        self._emit_label("main")
        self._emit_instruction("push", "%rbp")
        self._emit_instruction("mov", "%rsp", "%rbp")

        frame_size = variable_count * WORD_SIZE
        frame_size = -(-frame_size // STACK_ALIGNMENT) * STACK_ALIGNMENT
        if frame_size:
            self._emit_instruction("sub", f"${frame_size}", "%rsp")

    def _emit_epilogue(self) -> None:
        self._emit_instruction("mov", "%rbp", "%rsp")
        self._emit_instruction("pop", "%rbp")
        self._emit_instruction("ret")

    def _emit_strings(self) -> None:
        """Emit the string literal pool."""
        if not self._strings:
            return

        self._emit_directive(".section", ".rodata")
        for value, label in self._strings.items():
            self._emit_label(label)
            # Escapes were kept verbatim by the lexer; the assembler decodes them
            self._emit_directive(".string", f'"{escape_control_characters(value)}"')

    def _string_label(self, value: str) -> str:
        label = self._strings.get(value)
        if label is None:
            label = f".LS{len(self._strings)}"
            self._strings[value] = label
        return label

    # =========================================================================
    # Expression Code Generation
    # =========================================================================

    def generic_visit(self, node: Any) -> None:
        span = getattr(node, "span", Span.EOF)
        raise CodegenError(f"cannot generate code for {type(node).__name__}", span)

    def visit_NumberLiteral(self, node: NumberLiteral) -> None:
        self._emit_instruction("mov", f"${node.value}", "%eax")

    def visit_StringLiteral(self, node: StringLiteral) -> None:
        raise ExpectedIntExprError(node.span)

    def visit_VariableReference(self, node: VariableReference) -> None:
        self._emit_instruction("mov", f"-{slot_offset(node.index)}(%rbp)", "%eax")

    def visit_BinaryExpression(self, node: BinaryExpression) -> None:
        operator = node.operator.value

        if operator == BinaryOperator.ASSIGN:
            self._generate_assignment(node)
            return

        if operator not in ARITHMETIC_INSTRUCTIONS and operator != BinaryOperator.DIVIDE:
            raise InvalidOperatorError(operator.symbol, node.operator.span)

        self.visit(node.left)
        self._push("%rax")
        self.visit(node.right)

        if operator == BinaryOperator.DIVIDE:
            self._emit_instruction("mov", "%eax", "%ebx")     # divisor
            self._pop("%rax")                                  # dividend
            self._emit_instruction("mov", "$0", "%edx")
            self._emit_instruction("idiv", "%ebx")
        elif operator == BinaryOperator.SUBTRACT:
            self._pop("%rbx")
            self._emit_instruction("sub", "%eax", "%ebx")
            self._emit_instruction("mov", "%ebx", "%eax")
        else:
            self._pop("%rbx")
            self._emit_instruction(ARITHMETIC_INSTRUCTIONS[operator], "%ebx", "%eax")

    def _generate_assignment(self, node: BinaryExpression) -> None:
        """Evaluate the right side, then store %eax into the target slot."""
        self.visit(node.right)

        target = node.left
        if not isinstance(target, VariableReference):
            raise ExpectedIdentifierError(target.span)

        self._emit_instruction("mov", "%eax", f"-{slot_offset(target.index)}(%rbp)")

    def visit_CallExpression(self, node: CallExpression) -> None:
        """
        Call an external routine.

        Arguments are evaluated left to right onto the stack, then popped
        into the argument registers. Argument registers past the first one
        are saved around the call. The stack is padded to 16 bytes at the
        call instruction, and %eax is zeroed because the callee may be
        variadic (no vector registers are used).
        """
        count = len(node.arguments)
        if count > len(ARGUMENT_REGISTERS):
            raise TooManyArgumentsError(node.name, count, len(ARGUMENT_REGISTERS), node.span)

        saved = ARGUMENT_REGISTERS[1:count]
        for register in saved:
            self._push(register)

        for argument in node.arguments:
            self._generate_argument(argument)
            self._push("%rax")

        for register in reversed(ARGUMENT_REGISTERS[:count]):
            self._pop(register)

        padded = self._depth % 2 == 1
        if padded:
            self._emit_instruction("sub", "$8", "%rsp")
        self._emit_instruction("mov", "$0", "%eax")
        self._emit_instruction("call", node.name)
        if padded:
            self._emit_instruction("add", "$8", "%rsp")

        for register in reversed(saved):
            self._pop(register)

        if node.name not in self._externals:
            self._externals.append(node.name)

    def _generate_argument(self, argument: Expression) -> None:
        """Evaluate one argument into %rax; strings pass their address."""
        if isinstance(argument, StringLiteral):
            label = self._string_label(argument.value)
            self._emit_instruction("lea", f"{label}(%rip)", "%rax")
        else:
            self.visit(argument)
