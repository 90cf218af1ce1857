"""
Expression Lexer (Tokenizer)
============================

This module converts source text into a stream of tokens for the parser.

Token Categories
----------------
- Operators: + - * / =
- Delimiters: ( ) , ;
- Numbers: unsigned decimal integers
- Strings: "double quoted", escapes kept verbatim
- Identifiers: variable and routine names
- Whitespace: one token per run, dropped by the TokenBuffer

The lexer is lazy: each ``next()`` scans exactly one token and never looks
further ahead than the characters needed to finish it. Lexical errors are
raised at the point they are met; nothing after the first error is
scanned.

Strings
-------
A backslash immediately followed by ``"`` or ``\\`` is skipped over so the
quote does not end the literal. The escape is *not* decoded: the token
value is the raw text between the quotes, ready to be copied into a
``.string`` directive.

Example Usage
-------------
>>> from exprc.lexer import Lexer
>>> for token in Lexer("a = 42;").tokenize():
...     print(token)
Token(IDENTIFIER, 'a', 0..1)
Token(WHITESPACE, 1..2)
Token(ASSIGN, 2..3)
Token(WHITESPACE, 3..4)
Token(NUMBER, 42, 4..6)
Token(SEMICOLON, 6..7)
Token(EOF, EOF)
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator, Optional
import string

from exprc.span import Span
from exprc.errors import (
    IntegerOverflowError,
    InvalidCharacterError,
    UnterminatedStringError,
)


# Largest literal the 32-bit signed accumulator can hold
MAX_INTEGER = 2**31 - 1


# =============================================================================
# Token Type Enumeration
# =============================================================================

class TokenType(Enum):
    """Token kinds of the expression language."""

    # === Operators ===
    PLUS = auto()           # +
    MINUS = auto()          # -
    STAR = auto()           # *
    SLASH = auto()          # /
    ASSIGN = auto()         # =

    # === Delimiters ===
    SEMICOLON = auto()      # ;
    LPAREN = auto()         # (
    RPAREN = auto()         # )
    COMMA = auto()          # ,

    # === Literals and names ===
    NUMBER = auto()
    STRING = auto()
    IDENTIFIER = auto()

    # === Structural ===
    WHITESPACE = auto()
    EOF = auto()


SINGLE_CHAR_TOKENS: dict[str, TokenType] = {
    "+": TokenType.PLUS,
    "-": TokenType.MINUS,
    "*": TokenType.STAR,
    "/": TokenType.SLASH,
    "=": TokenType.ASSIGN,
    ";": TokenType.SEMICOLON,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    ",": TokenType.COMMA,
}

TOKEN_SYMBOLS: dict[TokenType, str] = {
    token_type: char for char, token_type in SINGLE_CHAR_TOKENS.items()
}


# =============================================================================
# Token Data Class
# =============================================================================

@dataclass(frozen=True)
class Token:
    """
    A single token.

    Attributes:
        type: The TokenType classification
        span: Source range the token was scanned from
        value: int for NUMBER, raw str for STRING and IDENTIFIER, else None
    """
    type: TokenType
    span: Span
    value: int | str | None = None

    def __repr__(self) -> str:
        if self.value is not None:
            if isinstance(self.value, int):
                return f"Token({self.type.name}, {self.value}, {self.span})"
            return f"Token({self.type.name}, {self.value!r}, {self.span})"
        return f"Token({self.type.name}, {self.span})"

    def describe(self) -> str:
        """Human-readable form used in diagnostics."""
        if self.type == TokenType.EOF:
            return "end of input"
        if self.type == TokenType.STRING:
            return f"'\"{self.value}\"'"
        if self.value is not None:
            return f"'{self.value}'"
        if self.type == TokenType.WHITESPACE:
            return "whitespace"
        return f"'{TOKEN_SYMBOLS[self.type]}'"


# =============================================================================
# Lexer Implementation
# =============================================================================

class Lexer:
    """
    Lazy tokenizer over one source string.

    The lexer is an iterator: ``next(lexer)`` scans one token and raises
    StopIteration once the input is exhausted (no EOF token is produced;
    the TokenBuffer synthesizes it). The sequence cannot be restarted, build
    a new Lexer over the same text instead.

    Usage:
        lexer = Lexer(source)
        tokens = list(lexer.tokenize())

    Attributes:
        source: The text being tokenized
    """

    # Characters that can start an identifier
    IDENT_START = string.ascii_letters + "_"

    # Characters that can continue an identifier
    IDENT_CHARS = string.ascii_letters + string.digits + "_"

    WHITESPACE_CHARS = " \t\n\r\f\v"

    def __init__(self, source: str):
        self.source = source

        # Current scan position and start of the token being scanned
        self._pos = 0
        self._start = 0

    def __iter__(self) -> "Lexer":
        return self

    def __next__(self) -> Token:
        self._start = self._pos
        if self._at_end():
            raise StopIteration
        return self._scan_token()

    def tokenize(self) -> Iterator[Token]:
        """
        Generate all remaining tokens followed by a single EOF token.

        Raises:
            LexError: At the first character that cannot be tokenized
        """
        yield from self
        yield Token(TokenType.EOF, Span.EOF)

    @property
    def at_eof(self) -> bool:
        """True once every character has been consumed."""
        return self._at_end()

    def current_span(self) -> Span:
        """Span of the most recent token, or the EOF sentinel when exhausted."""
        if self._at_end():
            return Span.EOF
        return Span(self._start, self._pos)

    # =========================================================================
    # Character Access Methods
    # =========================================================================

    def _at_end(self) -> bool:
        return self._pos >= len(self.source)

    def _peek(self, offset: int = 0) -> str:
        """Character at current position + offset, or '' past the end."""
        pos = self._pos + offset
        if pos >= len(self.source):
            return ""
        return self.source[pos]

    def _advance(self) -> str:
        char = self.source[self._pos]
        self._pos += 1
        return char

    def _advance_while(self, chars: str) -> None:
        while self._peek() and self._peek() in chars:
            self._pos += 1

    def _span(self) -> Span:
        return Span(self._start, self._pos)

    def _slice(self) -> str:
        return self.source[self._start:self._pos]

    # =========================================================================
    # Token Scanning
    # =========================================================================

    def _scan_token(self) -> Token:
        char = self._advance()

        if char in SINGLE_CHAR_TOKENS:
            return Token(SINGLE_CHAR_TOKENS[char], self._span())

        if char in string.digits:
            return self._scan_number()

        if char in self.WHITESPACE_CHARS:
            self._advance_while(self.WHITESPACE_CHARS)
            return Token(TokenType.WHITESPACE, self._span())

        if char == '"':
            return self._scan_string()

        if char in self.IDENT_START:
            self._advance_while(self.IDENT_CHARS)
            return Token(TokenType.IDENTIFIER, self._span(), self._slice())

        raise InvalidCharacterError(char, self._span())

    def _scan_number(self) -> Token:
        """Scan a run of decimal digits; the first digit is already consumed."""
        self._advance_while(string.digits)
        literal = self._slice()
        value = int(literal)
        if value > MAX_INTEGER:
            raise IntegerOverflowError(literal, MAX_INTEGER, self._span())
        return Token(TokenType.NUMBER, self._span(), value)

    def _scan_string(self) -> Token:
        """Scan a string literal; the opening quote is already consumed."""
        while not self._at_end():
            char = self._peek()

            if char == '"':
                self._advance()
                raw = self.source[self._start + 1:self._pos - 1]
                return Token(TokenType.STRING, self._span(), raw)

            # Skip the escaped character so \" does not close the string
            if char == "\\" and self._peek(1) in ('"', "\\"):
                self._advance()

            self._advance()

        raise UnterminatedStringError(self._span())


# =============================================================================
# One-Token Lookahead Buffer
# =============================================================================

class TokenBuffer:
    """
    One slot of lookahead over a Lexer, with whitespace filtered out.

    ``peek()`` fills the slot without consuming it; ``next()`` drains the
    slot if it is full and otherwise pulls straight from the lexer. Neither
    ever returns a WHITESPACE token. Once the lexer is exhausted both
    return an EOF token spanning ``Span.EOF``, as often as they are called.

    Attributes:
        consumed: Number of tokens handed out by ``next()``
    """

    def __init__(self, lexer: Lexer):
        self._lexer = lexer
        self._peeked: Optional[Token] = None
        self.consumed = 0

    def peek(self) -> Token:
        if self._peeked is None:
            self._peeked = self._pull()
        return self._peeked

    def next(self) -> Token:
        if self._peeked is not None:
            token, self._peeked = self._peeked, None
        else:
            token = self._pull()
        if token.type != TokenType.EOF:
            self.consumed += 1
        return token

    def current_span(self) -> Span:
        """Span of the most recently scanned token, EOF once input is exhausted."""
        return self._lexer.current_span()

    def _pull(self) -> Token:
        while True:
            token = next(self._lexer, None)
            if token is None:
                return Token(TokenType.EOF, Span.EOF)
            if token.type != TokenType.WHITESPACE:
                return token
