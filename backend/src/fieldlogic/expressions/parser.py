"""Parser for the fieldlogic expression language.

Binary operators are parsed by precedence climbing over BINARY_OPERATORS;
unary operators, postfix access and primaries by plain recursive descent.
The ternary binds loosest and nests to the right.

Binding, loosest first:
    ? :
    ??
    || or
    && and
    == != < <= > >= in, not in
    + -
    * / %
    ! not, unary - and +
    . ?. [] and calls
"""

from dataclasses import dataclass
from typing import Any

from fieldlogic.expressions.lexer import Lexer, Token, TokenType


@dataclass
class ASTNode:
    """Base class for AST nodes."""


@dataclass
class Literal(ASTNode):
    value: Any


@dataclass
class Identifier(ASTNode):
    """A bare name: formValue, fieldValue, externalData, rootFormValue..."""

    name: str


@dataclass
class MemberAccess(ASTNode):
    object: ASTNode
    member: str
    optional: bool = False


@dataclass
class IndexAccess(ASTNode):
    object: ASTNode
    index: ASTNode
    optional: bool = False


@dataclass
class BinaryOp(ASTNode):
    operator: str
    left: ASTNode
    right: ASTNode


@dataclass
class UnaryOp(ASTNode):
    operator: str
    operand: ASTNode


@dataclass
class Conditional(ASTNode):
    test: ASTNode
    consequent: ASTNode
    alternate: ASTNode


@dataclass
class FunctionCall(ASTNode):
    """Call of a function from the function registry, e.g. round(x, 2)."""

    name: str
    arguments: list[ASTNode]


@dataclass
class MethodCall(ASTNode):
    """Call of a whitelisted method on a value, e.g. fieldValue.trim()."""

    object: ASTNode
    method: str
    arguments: list[ASTNode]
    optional: bool = False


@dataclass
class ArrayLiteral(ASTNode):
    elements: list[ASTNode]


# token type -> (precedence, operator symbol used by the evaluator)
BINARY_OPERATORS: dict[TokenType, tuple[int, str]] = {
    TokenType.NULLISH: (1, "??"),
    TokenType.OR: (2, "||"),
    TokenType.AND: (3, "&&"),
    TokenType.EQ: (4, "=="),
    TokenType.NEQ: (4, "!="),
    TokenType.LT: (4, "<"),
    TokenType.LTE: (4, "<="),
    TokenType.GT: (4, ">"),
    TokenType.GTE: (4, ">="),
    TokenType.IN: (4, "in"),
    TokenType.NOT_IN: (4, "not in"),
    TokenType.PLUS: (5, "+"),
    TokenType.MINUS: (5, "-"),
    TokenType.MULTIPLY: (6, "*"),
    TokenType.DIVIDE: (6, "/"),
    TokenType.MODULO: (6, "%"),
}

UNARY_OPERATORS: dict[TokenType, str] = {
    TokenType.NOT: "!",
    TokenType.MINUS: "-",
    TokenType.PLUS: "+",
}

# After a dot, keywords are plain member names: formValue.in, a.null
_KEYWORD_MEMBERS = frozenset(
    {
        TokenType.BOOLEAN,
        TokenType.NULL,
        TokenType.AND,
        TokenType.OR,
        TokenType.NOT,
        TokenType.IN,
    }
)


class ParseError(Exception):
    """The token stream does not form a valid expression."""

    def __init__(self, message: str, token: Token):
        self.token = token
        super().__init__(f"{message} at position {token.position}")


class Parser:
    """Builds an AST from one expression string.

    Usage:
        ast = Parser("formValue.quantity * formValue.unitPrice").parse()
    """

    def __init__(self, source: str):
        self.source = source
        self.tokens = Lexer(source).tokenize()
        self._index = 0

    def parse(self) -> ASTNode:
        """Parse the whole source.

        Raises:
            LexerError: The source cannot be tokenized
            ParseError: The tokens do not form one complete expression
        """
        if self._peek().type == TokenType.EOF:
            raise ParseError("Empty expression", self._peek())

        tree = self._expression()
        if self._peek().type != TokenType.EOF:
            raise ParseError(f"Unexpected token '{self._peek().value}'", self._peek())
        return tree

    def _peek(self) -> Token:
        return self.tokens[self._index]

    def _next(self) -> Token:
        token = self.tokens[self._index]
        if token.type != TokenType.EOF:
            self._index += 1
        return token

    def _accept(self, token_type: TokenType) -> bool:
        if self._peek().type == token_type:
            self._next()
            return True
        return False

    def _expect(self, token_type: TokenType, message: str) -> Token:
        if self._peek().type != token_type:
            raise ParseError(message, self._peek())
        return self._next()

    def _expression(self, min_precedence: int = 0) -> ASTNode:
        left = self._unary()

        while True:
            token_type = self._peek().type

            if token_type == TokenType.QUESTION and min_precedence == 0:
                self._next()
                consequent = self._expression()
                self._expect(TokenType.COLON, "Expected ':' in conditional expression")
                return Conditional(left, consequent, self._expression())

            if token_type not in BINARY_OPERATORS:
                return left
            precedence, symbol = BINARY_OPERATORS[token_type]
            if precedence <= min_precedence:
                return left
            self._next()
            left = BinaryOp(symbol, left, self._expression(precedence))

    def _unary(self) -> ASTNode:
        symbol = UNARY_OPERATORS.get(self._peek().type)
        if symbol is None:
            return self._postfix(self._primary())
        self._next()
        return UnaryOp(symbol, self._unary())

    def _postfix(self, node: ASTNode) -> ASTNode:
        while True:
            if self._accept(TokenType.LBRACKET):
                node = IndexAccess(node, self._bracket_index())
            elif self._accept(TokenType.OPTIONAL_DOT):
                if self._accept(TokenType.LBRACKET):
                    node = IndexAccess(node, self._bracket_index(), optional=True)
                else:
                    node = self._member(node, optional=True)
            elif self._accept(TokenType.DOT):
                node = self._member(node, optional=False)
            else:
                return node

    def _bracket_index(self) -> ASTNode:
        index = self._expression()
        self._expect(TokenType.RBRACKET, "Expected ']' after index")
        return index

    def _member(self, node: ASTNode, optional: bool) -> ASTNode:
        token = self._next()
        if token.type == TokenType.IDENTIFIER:
            name = str(token.value)
        elif token.type in _KEYWORD_MEMBERS:
            # keyword tokens carry a parsed value; the name is the source text
            name = self.source[token.position:self._peek().position].strip()
        else:
            raise ParseError("Expected a member name after '.'", token)

        if self._peek().type == TokenType.LPAREN:
            return MethodCall(node, name, self._sequence(TokenType.LPAREN, TokenType.RPAREN), optional)
        return MemberAccess(node, name, optional)

    def _primary(self) -> ASTNode:
        token = self._peek()

        if token.type in (TokenType.NUMBER, TokenType.STRING, TokenType.BOOLEAN, TokenType.NULL):
            self._next()
            return Literal(token.value)
        if token.type == TokenType.IDENTIFIER:
            self._next()
            if self._peek().type == TokenType.LPAREN:
                return FunctionCall(str(token.value), self._sequence(TokenType.LPAREN, TokenType.RPAREN))
            return Identifier(str(token.value))
        if token.type == TokenType.LPAREN:
            self._next()
            inner = self._expression()
            self._expect(TokenType.RPAREN, "Expected ')' after expression")
            return inner
        if token.type == TokenType.LBRACKET:
            return ArrayLiteral(self._sequence(TokenType.LBRACKET, TokenType.RBRACKET))

        raise ParseError(f"Unexpected token '{token.value}'", token)

    def _sequence(self, opening: TokenType, closing: TokenType) -> list[ASTNode]:
        """Comma separated expressions between an opening and closing token."""
        self._expect(opening, "Expected opening bracket")
        items: list[ASTNode] = []
        if self._accept(closing):
            return items
        items.append(self._expression())
        while self._accept(TokenType.COMMA):
            items.append(self._expression())
        self._expect(closing, "Expected ',' or closing bracket")
        return items


def parse(source: str) -> ASTNode:
    """Parse an expression string into its AST root."""
    return Parser(source).parse()
