"""Tokenizer for fieldlogic expressions.

Expressions are small JavaScript-flavoured snippets such as
`formValue.qty * formValue.price` or `fieldValue?.length > 3`. The lexer
scans them with one compiled pattern and returns a flat token list ending
in EOF. Keywords are case-sensitive: `true` is a boolean, `True` is a name.
"""

import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator


class TokenType(Enum):
    """Kinds of tokens produced by the lexer."""

    NUMBER = auto()
    STRING = auto()
    BOOLEAN = auto()
    NULL = auto()
    IDENTIFIER = auto()

    EQ = auto()
    NEQ = auto()
    LT = auto()
    LTE = auto()
    GT = auto()
    GTE = auto()
    IN = auto()
    NOT_IN = auto()

    AND = auto()
    OR = auto()
    NOT = auto()
    NULLISH = auto()

    PLUS = auto()
    MINUS = auto()
    MULTIPLY = auto()
    DIVIDE = auto()
    MODULO = auto()

    QUESTION = auto()
    COLON = auto()

    LPAREN = auto()
    RPAREN = auto()
    LBRACKET = auto()
    RBRACKET = auto()
    COMMA = auto()
    DOT = auto()
    OPTIONAL_DOT = auto()

    EOF = auto()


@dataclass(frozen=True)
class Token:
    """One lexed token.

    Attributes:
        type: Token kind
        value: Parsed value: a number, unescaped string, name or operator text
        position: Offset of the first character in the source
        line: 1-based line of the first character
        column: 1-based column of the first character
    """

    type: TokenType
    value: str | int | float | bool | None
    position: int
    line: int = 1
    column: int = 1

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, pos={self.position})"


class LexerError(Exception):
    """The source contains a character no token starts with."""

    def __init__(self, message: str, position: int, line: int = 1, column: int = 1):
        self.position = position
        self.line = line
        self.column = column
        super().__init__(f"{message} at line {line}, column {column}")


# Longest operators first so "===" is not read as "==" followed by "="
OPERATORS: dict[str, TokenType] = {
    "===": TokenType.EQ,
    "!==": TokenType.NEQ,
    "==": TokenType.EQ,
    "!=": TokenType.NEQ,
    "<=": TokenType.LTE,
    ">=": TokenType.GTE,
    "&&": TokenType.AND,
    "||": TokenType.OR,
    "??": TokenType.NULLISH,
    "<": TokenType.LT,
    ">": TokenType.GT,
    "!": TokenType.NOT,
    "+": TokenType.PLUS,
    "-": TokenType.MINUS,
    "*": TokenType.MULTIPLY,
    "/": TokenType.DIVIDE,
    "%": TokenType.MODULO,
    "?": TokenType.QUESTION,
    ":": TokenType.COLON,
    "(": TokenType.LPAREN,
    ")": TokenType.RPAREN,
    "[": TokenType.LBRACKET,
    "]": TokenType.RBRACKET,
    ",": TokenType.COMMA,
}

KEYWORDS: dict[str, tuple[TokenType, str | bool | None]] = {
    "true": (TokenType.BOOLEAN, True),
    "false": (TokenType.BOOLEAN, False),
    "null": (TokenType.NULL, None),
    "undefined": (TokenType.NULL, None),
    "and": (TokenType.AND, "and"),
    "or": (TokenType.OR, "or"),
    "not": (TokenType.NOT, "not"),
    "in": (TokenType.IN, "in"),
}

NAME_PATTERN = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")

_TOKEN_PATTERN = re.compile(
    "|".join(
        [
            r"(?P<space>\s+)",
            r"(?P<number>\d+\.\d+|\d+|\.\d+)",
            r"""(?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')""",
            rf"(?P<name>{NAME_PATTERN.pattern})",
            # "?." before a digit is a ternary against a decimal: a ?.5 : 1
            r"(?P<optional>\?\.(?!\d))",
            r"(?P<dot>\.)",
            "(?P<op>" + "|".join(re.escape(op) for op in OPERATORS) + ")",
        ]
    ),
    re.DOTALL,
)

_ESCAPE = re.compile(r"\\(.)", re.DOTALL)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}


class Lexer:
    """Tokenizer for one expression string.

    Usage:
        tokens = Lexer('formValue.status == "active" && formValue.count > 0').tokenize()
    """

    def __init__(self, source: str):
        self.source = source

    def __iter__(self) -> Iterator[Token]:
        return iter(self.tokenize())

    def tokenize(self) -> list[Token]:
        """Lex the whole source. The last token is always EOF.

        Raises:
            LexerError: On a character that starts no token
        """
        tokens: list[Token] = []
        position = 0
        while position < len(self.source):
            match = _TOKEN_PATTERN.match(self.source, position)
            if match is None:
                line, column = self.location(position)
                raise LexerError(
                    f"Unexpected character '{self.source[position]}'", position, line, column
                )
            kind = match.lastgroup
            if kind != "space":
                token = self._token(kind or "", match.group(), position)
                if (
                    token.type == TokenType.IN
                    and tokens
                    and tokens[-1].type == TokenType.NOT
                    and tokens[-1].value == "not"
                ):
                    previous = tokens.pop()
                    token = Token(
                        TokenType.NOT_IN,
                        "not in",
                        previous.position,
                        previous.line,
                        previous.column,
                    )
                tokens.append(token)
            position = match.end()

        tokens.append(Token(TokenType.EOF, None, len(self.source), *self.location(len(self.source))))
        return tokens

    def location(self, position: int) -> tuple[int, int]:
        """1-based (line, column) of a source offset."""
        line = self.source.count("\n", 0, position) + 1
        column = position - (self.source.rfind("\n", 0, position) + 1) + 1
        return line, column

    def _token(self, kind: str, text: str, position: int) -> Token:
        line, column = self.location(position)

        if kind == "number":
            value: str | int | float | bool | None = float(text) if "." in text else int(text)
            return Token(TokenType.NUMBER, value, position, line, column)
        if kind == "string":
            unescaped = _ESCAPE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), text[1:-1])
            return Token(TokenType.STRING, unescaped, position, line, column)
        if kind == "name":
            token_type, value = KEYWORDS.get(text, (TokenType.IDENTIFIER, text))
            return Token(token_type, value, position, line, column)
        if kind == "optional":
            return Token(TokenType.OPTIONAL_DOT, text, position, line, column)
        if kind == "dot":
            return Token(TokenType.DOT, text, position, line, column)
        return Token(OPERATORS[text], text, position, line, column)
