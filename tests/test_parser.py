"""
Tests for the Precedence-Climbing Parser
========================================

These tests verify tree shape (precedence and associativity), variable
resolution, spans, and every syntax error the parser raises.
"""

import pytest

from exprc.ast import (
    ASTPrinter,
    BinaryExpression,
    BinaryOperator,
    CallExpression,
    NumberLiteral,
    StringLiteral,
    VariableReference,
)
from exprc.errors import (
    ExpectedExpressionError,
    ExpectedOperatorError,
    InvalidCharacterError,
    MissingOperandError,
    ParseError,
    UnclosedGroupError,
    UnexpectedEofError,
    UnterminatedExpressionError,
)
from exprc.lexer import Lexer
from exprc.parser import Parser, parse_source
from exprc.span import Span


def shape(source: str) -> list[str]:
    """Render each statement of ``source`` with the AST printer."""
    printer = ASTPrinter()
    return [printer.visit(statement) for statement in parse_source(source).statements]


# =============================================================================
# Program Structure
# =============================================================================

class TestProgram:
    """Tests for statement sequencing."""

    def test_empty_program(self):
        program = parse_source("")
        assert program.statements == ()
        assert len(program.variables) == 0

    def test_whitespace_only(self):
        assert parse_source("  \n\t ").statements == ()

    def test_multiple_statements(self):
        assert shape("1; 2; 3;") == ["1", "2", "3"]

    def test_statements_are_tuples(self):
        """The tree is immutable: children are tuples."""
        program = parse_source("f(1, 2);")
        assert isinstance(program.statements, tuple)
        assert isinstance(program.statements[0].arguments, tuple)

    def test_tokens_consumed(self):
        parser = Parser(Lexer("a = 1;"))
        parser.parse()
        assert parser.tokens_consumed == 4


# =============================================================================
# Precedence and Associativity
# =============================================================================

class TestPrecedence:
    """Tests for operator precedence and associativity."""

    def test_multiplication_binds_tighter(self):
        assert shape("2+3*4;") == ["(2 + (3 * 4))"]

    def test_multiplication_first(self):
        assert shape("2*3+4;") == ["((2 * 3) + 4)"]

    def test_subtraction_left_associative(self):
        assert shape("10-3-2;") == ["((10 - 3) - 2)"]

    def test_division_left_associative(self):
        assert shape("8/4/2;") == ["((8 / 4) / 2)"]

    def test_mixed_level_left_associative(self):
        assert shape("1-2+3;") == ["((1 - 2) + 3)"]
        assert shape("6/3*2;") == ["((6 / 3) * 2)"]

    def test_assignment_lowest(self):
        assert shape("a = 1 + 2;") == ["(a#0 = (1 + 2))"]

    def test_assignment_right_associative(self):
        assert shape("a = b = 1;") == ["(a#0 = (b#1 = 1))"]

    def test_parentheses_override(self):
        assert shape("(1+2)*3;") == ["((1 + 2) * 3)"]

    def test_nested_parentheses(self):
        assert shape("((4));") == ["4"]
        assert shape("2*(3-(4-5));") == ["(2 * (3 - (4 - 5)))"]

    def test_non_variable_assignment_parses(self):
        """Assignment targets are checked by the code generator, not here."""
        assert shape("1+2=3;") == ["((1 + 2) = 3)"]

    def test_operator_span(self):
        expression = parse_source("1 + 2;").statements[0]
        assert isinstance(expression, BinaryExpression)
        assert expression.operator.value == BinaryOperator.ADD
        assert expression.operator.span == Span(2, 3)


# =============================================================================
# Primary Expressions
# =============================================================================

class TestPrimary:
    """Tests for literals, variables, calls and groups."""

    def test_number(self):
        expression = parse_source("42;").statements[0]
        assert expression == NumberLiteral(span=Span(0, 2), value=42)

    def test_string(self):
        expression = parse_source('"hi";').statements[0]
        assert expression == StringLiteral(span=Span(0, 4), value="hi")

    def test_variable(self):
        expression = parse_source("x;").statements[0]
        assert expression == VariableReference(span=Span(0, 1), index=0, name="x")

    def test_call_without_arguments(self):
        expression = parse_source("f();").statements[0]
        assert isinstance(expression, CallExpression)
        assert expression.name == "f"
        assert expression.arguments == ()
        assert expression.span == Span(0, 3)

    def test_call_with_arguments(self):
        expression = parse_source('f(1, "s", a + 2);').statements[0]
        assert isinstance(expression, CallExpression)
        assert len(expression.arguments) == 3
        assert isinstance(expression.arguments[1], StringLiteral)
        assert shape('f(1, "s", a + 2);') == ['f(1, "s", (a#0 + 2))']

    def test_nested_calls(self):
        assert shape("f(g(1), 2);") == ["f(g(1), 2)"]

    def test_call_name_is_not_a_variable(self):
        program = parse_source("putchar(65);")
        assert "putchar" not in program.variables

    def test_group_widens_span(self):
        """Parentheses produce no node but widen the inner span."""
        expression = parse_source("(1 + 2) * 3;").statements[0]
        assert expression.left.span == Span(0, 7)
        assert expression.span == Span(0, 11)

    def test_binary_span_is_union(self):
        expression = parse_source("12 - 3;").statements[0]
        assert expression.span == Span(0, 6)


# =============================================================================
# Variable Resolution
# =============================================================================

class TestVariables:
    """Tests for parse-time variable resolution."""

    def test_slots_in_first_seen_order(self):
        program = parse_source("a=1; b=2; a=a+b;")
        assert program.variables.names == ("a", "b")
        assert shape("a=1; b=2; a=a+b;") == [
            "(a#0 = 1)",
            "(b#1 = 2)",
            "(a#0 = (a#0 + b#1))",
        ]

    def test_same_name_same_slot(self):
        program = parse_source("x; x; x;")
        indices = {statement.index for statement in program.statements}
        assert indices == {0}

    def test_use_before_assignment_gets_slot(self):
        program = parse_source("y + 1;")
        assert program.variables.index_of("y") == 0


# =============================================================================
# Syntax Errors
# =============================================================================

class TestErrors:
    """Tests for parser error reporting."""

    def test_operator_at_start(self):
        with pytest.raises(ExpectedExpressionError) as exc_info:
            parse_source("+")
        assert exc_info.value.span.start == 0
        assert exc_info.value.message == "expected expression, found '+'"

    def test_missing_right_operand(self):
        with pytest.raises(ExpectedExpressionError) as exc_info:
            parse_source("1 + ;")
        assert exc_info.value.span == Span(4, 5)

    def test_eof_after_operator(self):
        with pytest.raises(UnexpectedEofError) as exc_info:
            parse_source("1 +")
        assert isinstance(exc_info.value, MissingOperandError)
        assert exc_info.value.span == Span.EOF

    def test_missing_semicolon(self):
        with pytest.raises(UnterminatedExpressionError) as exc_info:
            parse_source("1 + 2")
        assert exc_info.value.span == Span.EOF

    def test_missing_semicolon_after_first_statement(self):
        with pytest.raises(ExpectedOperatorError) as exc_info:
            parse_source("1 2;")
        assert exc_info.value.span == Span(2, 3)
        assert exc_info.value.found == "'2'"

    def test_unclosed_group(self):
        with pytest.raises(UnclosedGroupError) as exc_info:
            parse_source("(1 + 2;")
        assert exc_info.value.span == Span(6, 7)

    def test_eof_in_group(self):
        with pytest.raises(MissingOperandError) as exc_info:
            parse_source("(1 + 2")
        assert "')'" in exc_info.value.message

    def test_trailing_comma_in_call(self):
        with pytest.raises(ExpectedExpressionError) as exc_info:
            parse_source("f(1,);")
        assert exc_info.value.span == Span(4, 5)

    def test_missing_comma_in_call(self):
        with pytest.raises(ExpectedOperatorError):
            parse_source("f(1 2);")

    def test_eof_in_call(self):
        with pytest.raises(UnexpectedEofError):
            parse_source("f(1, ")

    def test_stray_close_paren(self):
        with pytest.raises(ExpectedOperatorError) as exc_info:
            parse_source("1);")
        assert exc_info.value.span == Span(1, 2)

    def test_all_errors_are_parse_errors(self):
        for source in ("+", "1 2;", "(1;", "1 + 2", "1 +"):
            with pytest.raises(ParseError):
                parse_source(source)

    def test_lex_error_propagates_unchanged(self):
        """Lexical errors surface from the parser with their own span."""
        with pytest.raises(InvalidCharacterError) as exc_info:
            parse_source("1 + #;")
        assert exc_info.value.span == Span(4, 5)
        assert exc_info.value.char == "#"
