"""
Abstract Syntax Tree Definitions
================================

This module defines the node types produced by the parser and consumed
by the code generator.

Node Hierarchy
--------------
Expression (base)
├── NumberLiteral - integer constant
├── StringLiteral - string constant (raw, escapes undecoded)
├── VariableReference - variable resolved to a stack slot index
├── BinaryExpression - arithmetic operator or assignment
└── CallExpression - call of an external routine

Program (root) - statements plus the VariableTable built while parsing

Design Notes
------------
- All nodes are frozen dataclasses; child sequences are tuples, so a tree
  cannot be modified once built.
- Every node stores the span of its full extent for diagnostics.
- Parentheses do not produce a node. They only shape the tree and widen
  the span of the expression they enclose.
- Variables are resolved at parse time. A VariableReference keeps its
  name only so diagnostics and the printer can show it.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Iterator, Optional

from exprc.span import Span, Spanned


# =============================================================================
# Operators
# =============================================================================

class BinaryOperator(Enum):
    """Binary operator types."""
    ADD = auto()        # +
    SUBTRACT = auto()   # -
    MULTIPLY = auto()   # *
    DIVIDE = auto()     # /
    ASSIGN = auto()     # =

    @property
    def precedence(self) -> int:
        """Binding strength; higher binds tighter."""
        return OPERATOR_PRECEDENCE[self]

    @property
    def symbol(self) -> str:
        return OPERATOR_SYMBOLS[self]


OPERATOR_PRECEDENCE: dict[BinaryOperator, int] = {
    BinaryOperator.ASSIGN: 1,
    BinaryOperator.ADD: 2,
    BinaryOperator.SUBTRACT: 2,
    BinaryOperator.MULTIPLY: 3,
    BinaryOperator.DIVIDE: 3,
}

OPERATOR_SYMBOLS: dict[BinaryOperator, str] = {
    BinaryOperator.ADD: "+",
    BinaryOperator.SUBTRACT: "-",
    BinaryOperator.MULTIPLY: "*",
    BinaryOperator.DIVIDE: "/",
    BinaryOperator.ASSIGN: "=",
}


# =============================================================================
# Expression Nodes
# =============================================================================

@dataclass(frozen=True)
class Expression:
    """
    Base class for all expression nodes.

    Attributes:
        span: Source range covering the whole expression
    """
    span: Span


@dataclass(frozen=True)
class NumberLiteral(Expression):
    """Integer literal."""
    value: int = 0


@dataclass(frozen=True)
class StringLiteral(Expression):
    """
    String literal.

    Attributes:
        value: Raw text between the quotes; escapes are kept as written
    """
    value: str = ""


@dataclass(frozen=True)
class VariableReference(Expression):
    """
    Reference to a variable.

    Attributes:
        index: Slot index in the program's VariableTable
        name: Variable name as written in the source
    """
    index: int = 0
    name: str = ""


@dataclass(frozen=True)
class BinaryExpression(Expression):
    """
    Binary operation (left op right).

    Assignment is represented here too, with ``operator.value`` set to
    BinaryOperator.ASSIGN. Whether the left side is assignable is decided
    by the code generator.

    Attributes:
        left: Left operand
        operator: The operator with the span of its token
        right: Right operand
    """
    left: Expression = None
    operator: Spanned[BinaryOperator] = None
    right: Expression = None


@dataclass(frozen=True)
class CallExpression(Expression):
    """
    Call of an external routine by symbol name.

    Attributes:
        name: Routine symbol name
        arguments: Argument expressions, left to right
    """
    name: str = ""
    arguments: tuple[Expression, ...] = ()


# =============================================================================
# Variable Table
# =============================================================================

class VariableTable:
    """
    Insertion-ordered table of variable names.

    Each name gets the next free index the first time it is resolved and
    keeps it for the rest of the compilation. Lookup is a linear scan in
    first-seen order.

    Example:
        >>> table = VariableTable()
        >>> table.resolve("a"), table.resolve("b"), table.resolve("a")
        (0, 1, 0)
    """

    def __init__(self, names: Optional[list[str]] = None):
        self._names: list[str] = list(names or [])

    def resolve(self, name: str) -> int:
        """Return the index of ``name``, appending it if unseen."""
        index = self.index_of(name)
        if index is None:
            self._names.append(name)
            index = len(self._names) - 1
        return index

    def index_of(self, name: str) -> Optional[int]:
        for index, known in enumerate(self._names):
            if known == name:
                return index
        return None

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, VariableTable):
            return NotImplemented
        return self._names == other._names

    def __repr__(self) -> str:
        return f"VariableTable({self._names!r})"


# =============================================================================
# Program Root
# =============================================================================

@dataclass(frozen=True)
class Program:
    """
    Root of the tree: the compilation unit.

    Attributes:
        statements: Top-level expressions, each terminated by ';' in source
        variables: Variable slots resolved while parsing
    """
    statements: tuple[Expression, ...] = ()
    variables: VariableTable = field(default_factory=VariableTable)


# =============================================================================
# AST Visitor Pattern
# =============================================================================

class ASTVisitor:
    """
    Base class for AST visitors.

    Subclasses override ``visit_*`` methods for the node types they care
    about. Unhandled nodes fall through to ``generic_visit``, which visits
    the children.

    Usage:
        class CallCounter(ASTVisitor):
            def __init__(self):
                self.count = 0

            def visit_CallExpression(self, node):
                self.count += 1
                self.generic_visit(node)
    """

    def visit(self, node: Any) -> Any:
        """Dispatch to ``visit_<ClassName>``."""
        method_name = f"visit_{node.__class__.__name__}"
        visitor = getattr(self, method_name, self.generic_visit)
        return visitor(node)

    def generic_visit(self, node: Any) -> None:
        if isinstance(node, Program):
            for statement in node.statements:
                self.visit(statement)
        elif isinstance(node, BinaryExpression):
            self.visit(node.left)
            self.visit(node.right)
        elif isinstance(node, CallExpression):
            for argument in node.arguments:
                self.visit(argument)


# =============================================================================
# AST Pretty Printer
# =============================================================================

class ASTPrinter(ASTVisitor):
    """
    Pretty printer for AST debugging.

    Usage:
        printer = ASTPrinter()
        print(printer.print(program))
    """

    def __init__(self):
        self.output: list[str] = []

    def print(self, program: Program) -> str:
        """Render the program and return it as a string."""
        self.output = []
        self.visit(program)
        return "\n".join(self.output)

    def visit_Program(self, node: Program):
        variables = ", ".join(
            f"{name}={index}" for index, name in enumerate(node.variables)
        )
        self.output.append(f"Program [{variables}]")
        for statement in node.statements:
            self.output.append(f"  Expr: {self.visit(statement)}")

    def visit_NumberLiteral(self, node: NumberLiteral) -> str:
        return str(node.value)

    def visit_StringLiteral(self, node: StringLiteral) -> str:
        return f'"{node.value}"'

    def visit_VariableReference(self, node: VariableReference) -> str:
        return f"{node.name}#{node.index}"

    def visit_BinaryExpression(self, node: BinaryExpression) -> str:
        left = self.visit(node.left)
        right = self.visit(node.right)
        return f"({left} {node.operator.value.symbol} {right})"

    def visit_CallExpression(self, node: CallExpression) -> str:
        args = ", ".join(self.visit(argument) for argument in node.arguments)
        return f"{node.name}({args})"
