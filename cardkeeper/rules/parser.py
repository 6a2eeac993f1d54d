"""
Parser for sorting rule expressions.

Grammar (keywords are case-insensitive):

    expr       := or_expr EOF
    or_expr    := and_expr ( OR and_expr )*
    and_expr   := not_expr ( AND not_expr )*
    not_expr   := NOT not_expr | primary
    primary    := "(" or_expr ")" | TRUE | FALSE | comparison
    comparison := FIELD [ OPERATOR literal ]
    literal    := STRING | NUMBER | TRUE | FALSE | "[" [ scalar ("," scalar)* ] "]"

``&&``, ``||`` and ``!`` are accepted for AND, OR and NOT. A bare field
name is shorthand for ``field == true``.

Examples:
    rarity == "mythic" AND colors contains "R"
    (set_code == "MOM" OR set_code == "MAT") AND NOT foil
    prices.usd >= 10 AND color_identity in ["W", "U"]
"""

from dataclasses import dataclass

from cardkeeper.models.failure import ExpressionParseError
from cardkeeper.rules.nodes import (
    Comparison,
    Constant,
    Expression,
    Literal,
    Logical,
    LogicalOp,
    Operator,
    Scalar,
)
from cardkeeper.rules.schema import canonical_field

# Hard ceiling on parenthesis/NOT nesting so hostile input cannot exhaust
# the interpreter stack. Validation applies a tighter configured limit.
MAX_PARSE_DEPTH = 64

KEYWORDS = {
    "and": "AND",
    "or": "OR",
    "not": "NOT",
    "true": "TRUE",
    "false": "FALSE",
    "contains": "CONTAINS",
    "in": "IN",
}

SYMBOL_OPERATORS = ("==", "!=", ">=", "<=", ">", "<")

ESCAPES = {"n": "\n", "t": "\t", "\\": "\\", '"': '"', "'": "'"}


@dataclass(frozen=True, slots=True)
class Token:
    kind: str
    value: str
    position: int


def tokenize(text: str) -> list[Token]:
    """Split expression text into tokens, ending with an EOF token."""
    tokens: list[Token] = []
    i = 0
    length = len(text)

    while i < length:
        ch = text[i]

        if ch.isspace():
            i += 1
            continue

        if ch in "()[],":
            kinds = {"(": "LPAREN", ")": "RPAREN", "[": "LBRACKET", "]": "RBRACKET", ",": "COMMA"}
            tokens.append(Token(kinds[ch], ch, i))
            i += 1
            continue

        two = text[i : i + 2]
        if two == "&&":
            tokens.append(Token("AND", two, i))
            i += 2
            continue
        if two == "||":
            tokens.append(Token("OR", two, i))
            i += 2
            continue

        symbol = next((op for op in SYMBOL_OPERATORS if text.startswith(op, i)), None)
        if symbol:
            tokens.append(Token("OP", symbol, i))
            i += len(symbol)
            continue

        if ch == "!":
            tokens.append(Token("NOT", ch, i))
            i += 1
            continue

        if ch == "=":
            raise ExpressionParseError("Use '==' for equality", i)

        if ch in "\"'":
            string_token, i = _read_string(text, i)
            tokens.append(string_token)
            continue

        if ch.isdigit() or (ch == "-" and i + 1 < length and text[i + 1].isdigit()):
            start = i
            i += 1
            while i < length and text[i].isdigit():
                i += 1
            if i < length and text[i] == ".":
                i += 1
                if i >= length or not text[i].isdigit():
                    raise ExpressionParseError("Malformed number", start)
                while i < length and text[i].isdigit():
                    i += 1
            tokens.append(Token("NUMBER", text[start:i], start))
            continue

        if ch.isalpha() or ch == "_":
            start = i
            i += 1
            while i < length and (text[i].isalnum() or text[i] in "_."):
                i += 1
            word = text[start:i]
            tokens.append(Token(KEYWORDS.get(word.lower(), "IDENT"), word, start))
            continue

        raise ExpressionParseError(f"Unexpected character {ch!r}", i)

    tokens.append(Token("EOF", "", length))
    return tokens


def _read_string(text: str, start: int) -> tuple[Token, int]:
    quote = text[start]
    chars: list[str] = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            escaped = text[i + 1]
            chars.append(ESCAPES.get(escaped, escaped))
            i += 2
            continue
        if ch == quote:
            return Token("STRING", "".join(chars), start), i + 1
        chars.append(ch)
        i += 1
    raise ExpressionParseError("Unterminated string", start)


def _describe(token: Token) -> str:
    if token.kind == "EOF":
        return "end of expression"
    return repr(token.value)


class _Parser:
    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.pos = 0
        self.depth = 0

    def peek(self) -> Token:
        return self.tokens[self.pos]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def expect(self, kind: str, what: str) -> Token:
        token = self.peek()
        if token.kind != kind:
            raise ExpressionParseError(f"Expected {what}, found {_describe(token)}", token.position)
        return self.advance()

    def parse(self) -> Expression:
        node = self.parse_or()
        token = self.peek()
        if token.kind != "EOF":
            raise ExpressionParseError(f"Unexpected {_describe(token)}", token.position)
        return node

    def parse_or(self) -> Expression:
        children = [self.parse_and()]
        while self.peek().kind == "OR":
            self.advance()
            children.append(self.parse_and())
        if len(children) == 1:
            return children[0]
        return Logical(LogicalOp.OR, tuple(children))

    def parse_and(self) -> Expression:
        children = [self.parse_not()]
        while self.peek().kind == "AND":
            self.advance()
            children.append(self.parse_not())
        if len(children) == 1:
            return children[0]
        return Logical(LogicalOp.AND, tuple(children))

    def parse_not(self) -> Expression:
        if self.peek().kind == "NOT":
            token = self.advance()
            self._enter(token)
            child = self.parse_not()
            self.depth -= 1
            return Logical(LogicalOp.NOT, (child,))
        return self.parse_primary()

    def parse_primary(self) -> Expression:
        token = self.peek()

        if token.kind == "LPAREN":
            self.advance()
            self._enter(token)
            node = self.parse_or()
            self.depth -= 1
            self.expect("RPAREN", "')'")
            return node

        if token.kind in ("TRUE", "FALSE"):
            self.advance()
            return Constant(token.kind == "TRUE")

        if token.kind == "IDENT":
            return self.parse_comparison()

        raise ExpressionParseError(
            f"Expected a field name, 'true', 'false' or '(', found {_describe(token)}",
            token.position,
        )

    def parse_comparison(self) -> Comparison:
        field_token = self.advance()
        field = canonical_field(field_token.value)
        token = self.peek()

        if token.kind == "OP":
            operator = Operator(self.advance().value)
        elif token.kind == "CONTAINS":
            self.advance()
            operator = Operator.CONTAINS
        elif token.kind == "IN":
            self.advance()
            operator = Operator.IN
        else:
            # Bare field: shorthand for a boolean test
            return Comparison(field, Operator.EQ, True, field_token.position)

        value = self.parse_literal(operator)
        return Comparison(field, operator, value, field_token.position)

    def parse_literal(self, operator: Operator) -> Literal:
        token = self.peek()
        if token.kind == "LBRACKET":
            self.advance()
            items: list[Scalar] = []
            if self.peek().kind != "RBRACKET":
                items.append(self.parse_scalar(operator))
                while self.peek().kind == "COMMA":
                    self.advance()
                    items.append(self.parse_scalar(operator))
            self.expect("RBRACKET", "',' or ']'")
            return tuple(items)
        return self.parse_scalar(operator)

    def parse_scalar(self, operator: Operator) -> Scalar:
        token = self.peek()
        if token.kind == "STRING":
            self.advance()
            return token.value
        if token.kind == "NUMBER":
            self.advance()
            if "." in token.value:
                return float(token.value)
            return int(token.value)
        if token.kind in ("TRUE", "FALSE"):
            self.advance()
            return token.kind == "TRUE"
        raise ExpressionParseError(
            f"Expected a value after '{operator.value}', found {_describe(token)}",
            token.position,
        )

    def _enter(self, token: Token) -> None:
        self.depth += 1
        if self.depth > MAX_PARSE_DEPTH:
            raise ExpressionParseError("Expression nested too deeply", token.position)


def parse(text: str) -> Expression:
    """
    Parse expression text into a syntax tree.

    Raises:
        ExpressionParseError: If the text is empty or not valid syntax
    """
    if not text or not text.strip():
        raise ExpressionParseError("Expression cannot be empty")
    return _Parser(tokenize(text)).parse()
