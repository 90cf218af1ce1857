"""
Precedence-Climbing Parser
==========================

This module implements a recursive descent parser for the expression
language. It pulls tokens through a one-token lookahead TokenBuffer and
builds a Program: the statement list plus the VariableTable.

Grammar (Simplified EBNF)
-------------------------
program     ::= statement*
statement   ::= expression ';'
expression  ::= primary (binary_op expression)*      (precedence climbing)
primary     ::= NUMBER | STRING | IDENTIFIER
              | IDENTIFIER '(' (expression (',' expression)*)? ')'
              | '(' expression ')'
binary_op   ::= '=' | '+' | '-' | '*' | '/'

Operator Precedence (lowest to highest)
---------------------------------------
1. assignment      =       (right-associative)
2. additive        + -     (left-associative)
3. multiplicative  * /     (left-associative)

Precedence Climbing
-------------------
``_parse_expression(min_precedence)`` parses a primary, then folds
operators into it for as long as the next operator binds at least as
tightly as ``min_precedence``. The right operand of a left-associative
operator is parsed with ``precedence + 1``, so an operator of the same
level ends it and is folded by the enclosing loop instead::

    10 - 3 - 2   ->   ((10 - 3) - 2)

The right operand of '=' is parsed at the same level, which nests
chained assignments to the right (``a = b = 1`` is ``a = (b = 1)``).

Variable Resolution
-------------------
An identifier in primary position that is not followed by '(' is
resolved in the VariableTable right away: new names get the next free
slot, known names reuse theirs.

Example Usage
-------------
>>> from exprc.parser import parse_source
>>> program = parse_source("a = 1; a + 2;")
>>> len(program.statements), program.variables.names
(2, ('a',))
"""

import dataclasses
import logging

from exprc.span import Spanned
from exprc.lexer import Lexer, Token, TokenBuffer, TokenType
from exprc.ast import (
    BinaryExpression,
    BinaryOperator,
    CallExpression,
    Expression,
    NumberLiteral,
    Program,
    StringLiteral,
    VariableReference,
    VariableTable,
)
from exprc.errors import (
    ExpectedExpressionError,
    ExpectedOperatorError,
    MissingOperandError,
    UnclosedGroupError,
    UnterminatedExpressionError,
)


logger = logging.getLogger(__name__)


BINARY_OPERATORS: dict[TokenType, BinaryOperator] = {
    TokenType.PLUS: BinaryOperator.ADD,
    TokenType.MINUS: BinaryOperator.SUBTRACT,
    TokenType.STAR: BinaryOperator.MULTIPLY,
    TokenType.SLASH: BinaryOperator.DIVIDE,
    TokenType.ASSIGN: BinaryOperator.ASSIGN,
}

# Tokens that end an expression without being an operator
EXPRESSION_TERMINATORS = frozenset({
    TokenType.SEMICOLON,
    TokenType.RPAREN,
    TokenType.COMMA,
    TokenType.EOF,
})


class Parser:
    """
    Recursive descent parser producing a Program.

    The parser stops at the first error; there is no resynchronization.
    Lexical errors raised while pulling tokens propagate unchanged.

    Attributes:
        variables: The VariableTable being filled while parsing
    """

    def __init__(self, lexer: Lexer):
        self._tokens = TokenBuffer(lexer)
        self.variables = VariableTable()

    @property
    def tokens_consumed(self) -> int:
        return self._tokens.consumed

    def parse(self) -> Program:
        """
        Parse every statement up to the end of input.

        Returns:
            Program holding the statements and the VariableTable

        Raises:
            LexError: If the source cannot be tokenized
            ParseError: If the token stream is not a valid program
        """
        statements = []
        while self._tokens.peek().type != TokenType.EOF:
            statements.append(self._parse_statement())

        logger.debug(
            f"Parsed {len(statements)} statements, "
            f"{len(self.variables)} variables, {self.tokens_consumed} tokens"
        )
        return Program(statements=tuple(statements), variables=self.variables)

    # =========================================================================
    # Statements
    # =========================================================================

    def _parse_statement(self) -> Expression:
        """Parse ``expression ';'``."""
        expression = self._parse_expression()

        token = self._tokens.next()
        if token.type == TokenType.SEMICOLON:
            return expression
        if token.type == TokenType.EOF:
            raise UnterminatedExpressionError(token.span)
        raise ExpectedOperatorError(token.describe(), token.span)

    # =========================================================================
    # Expressions
    # =========================================================================

    def _parse_expression(self, min_precedence: int = 0) -> Expression:
        """
        Parse an expression whose operators bind at least ``min_precedence``.

        Raises:
            ExpectedOperatorError: If a token that is neither an operator nor
                an expression terminator follows an operand
        """
        expression = self._parse_primary()

        while True:
            token = self._tokens.peek()
            operator = BINARY_OPERATORS.get(token.type)

            if operator is None:
                if token.type in EXPRESSION_TERMINATORS:
                    return expression
                raise ExpectedOperatorError(token.describe(), token.span)

            if operator.precedence < min_precedence:
                return expression

            self._tokens.next()

            if operator == BinaryOperator.ASSIGN:
                right = self._parse_expression(operator.precedence)
            else:
                right = self._parse_expression(operator.precedence + 1)

            expression = BinaryExpression(
                span=expression.span + right.span,
                left=expression,
                operator=Spanned(operator, token.span),
                right=right,
            )

    def _parse_primary(self) -> Expression:
        """Parse a literal, variable, call or parenthesised group."""
        token = self._tokens.next()

        if token.type == TokenType.NUMBER:
            return NumberLiteral(span=token.span, value=token.value)

        if token.type == TokenType.STRING:
            return StringLiteral(span=token.span, value=token.value)

        if token.type == TokenType.IDENTIFIER:
            if self._tokens.peek().type == TokenType.LPAREN:
                return self._parse_call(token)
            index = self.variables.resolve(token.value)
            return VariableReference(span=token.span, index=index, name=token.value)

        if token.type == TokenType.LPAREN:
            return self._parse_group(token)

        if token.type == TokenType.EOF:
            raise MissingOperandError("expression", token.span)

        raise ExpectedExpressionError(token.describe(), token.span)

    def _parse_group(self, open_paren: Token) -> Expression:
        """Parse ``'(' expression ')'``; the '(' is already consumed."""
        inner = self._parse_expression()
        close = self._expect_close_paren()
        return dataclasses.replace(inner, span=open_paren.span + close.span)

    def _parse_call(self, name: Token) -> CallExpression:
        """Parse ``name '(' args ')'``; only the name is consumed."""
        self._tokens.next()  # consume '('

        arguments = []
        if self._tokens.peek().type == TokenType.RPAREN:
            close = self._tokens.next()
        else:
            while True:
                arguments.append(self._parse_expression())
                if self._tokens.peek().type == TokenType.COMMA:
                    self._tokens.next()
                    continue
                close = self._expect_close_paren()
                break

        return CallExpression(
            span=name.span + close.span,
            name=name.value,
            arguments=tuple(arguments),
        )

    def _expect_close_paren(self) -> Token:
        token = self._tokens.next()
        if token.type == TokenType.RPAREN:
            return token
        if token.type == TokenType.EOF:
            raise MissingOperandError("')'", token.span)
        raise UnclosedGroupError(token.describe(), token.span)


# =============================================================================
# Convenience Functions
# =============================================================================

def parse_source(source: str) -> Program:
    """
    Lex and parse ``source`` in one call.

    Raises:
        LexError: If the source cannot be tokenized
        ParseError: If the source is not a valid program
    """
    return Parser(Lexer(source)).parse()
