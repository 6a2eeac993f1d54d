"""
Static validation of sorting rule expressions.

Checks syntax, field names and operator/type compatibility against the
declared schema. Never evaluates anything against card data.
"""

from dataclasses import dataclass

from cardkeeper.config import settings
from cardkeeper.models.failure import (
    ExpressionParseError,
    ExpressionValidationError,
)
from cardkeeper.rules.nodes import Comparison, Expression, Operator, iter_comparisons
from cardkeeper.rules.parser import parse, tokenize
from cardkeeper.rules.schema import FieldType, field_type


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of validating an expression."""

    valid: bool
    error: str | None = None


def _nesting_depth(text: str) -> int:
    """Deepest parenthesis nesting, ignoring parentheses inside string literals."""
    depth = 0
    max_depth = 0
    for token in tokenize(text):
        if token.kind == "LPAREN":
            depth += 1
            max_depth = max(max_depth, depth)
        elif token.kind == "RPAREN":
            depth -= 1
    return max_depth


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _literal_type_name(value: object) -> str:
    if isinstance(value, tuple):
        return "list"
    if isinstance(value, bool):
        return "boolean"
    if _is_number(value):
        return "number"
    return "string"


def _check_comparison(node: Comparison) -> None:
    declared = field_type(node.field)
    if declared is None:
        raise ExpressionValidationError(f"Unknown field '{node.field}'")

    op = node.operator
    value = node.value

    if op.is_ordering:
        if declared is not FieldType.NUMBER:
            raise ExpressionValidationError(
                f"Operator '{op.value}' requires a numeric field; "
                f"'{node.field}' is {declared.value}"
            )
        if not _is_number(value):
            raise ExpressionValidationError(
                f"Operator '{op.value}' on '{node.field}' requires a number, "
                f"got {_literal_type_name(value)}"
            )
        return

    if op.is_membership:
        if declared is not FieldType.LIST:
            raise ExpressionValidationError(
                f"Operator '{op.value}' requires a list field; '{node.field}' is {declared.value}"
            )
        if op is Operator.IN and not isinstance(value, tuple):
            raise ExpressionValidationError(f"Operator 'in' on '{node.field}' requires a list")
        items = value if isinstance(value, tuple) else (value,)
        if op is Operator.CONTAINS and not items:
            raise ExpressionValidationError(
                f"Operator '{op.value}' on '{node.field}' requires at least one value"
            )
        if not all(isinstance(item, str) for item in items):
            raise ExpressionValidationError(
                f"Operator '{op.value}' on '{node.field}' requires string values"
            )
        return

    # == and != need a literal of the declared type
    expected = {
        FieldType.STRING: lambda v: isinstance(v, str),
        FieldType.NUMBER: _is_number,
        FieldType.BOOLEAN: lambda v: isinstance(v, bool),
        FieldType.LIST: lambda v: isinstance(v, tuple),
    }[declared]
    if not expected(value):
        raise ExpressionValidationError(
            f"Cannot compare {declared.value} field '{node.field}' "
            f"with {_literal_type_name(value)} value"
        )


def check_expression(expression: Expression) -> None:
    """
    Check a parsed expression against the field schema.

    Raises:
        ExpressionValidationError: On the first unknown field or type mismatch
    """
    for comparison in iter_comparisons(expression):
        _check_comparison(comparison)


def validate_or_raise(text: str) -> Expression:
    """
    Fully validate expression text and return its syntax tree.

    Raises:
        ExpressionParseError: Malformed syntax
        ExpressionValidationError: Limits exceeded, unknown field or bad types
    """
    if text and len(text) > settings.max_expression_length:
        raise ExpressionValidationError(
            f"Expression too long (max {settings.max_expression_length} characters)"
        )
    if _nesting_depth(text or "") > settings.max_expression_depth:
        raise ExpressionValidationError(
            f"Expression too complex (max {settings.max_expression_depth} levels of nesting)"
        )

    expression = parse(text)
    check_expression(expression)
    return expression


def validate(text: str) -> ValidationResult:
    """Validate expression text, reporting the first problem found."""
    try:
        validate_or_raise(text)
    except (ExpressionParseError, ExpressionValidationError) as e:
        return ValidationResult(valid=False, error=e.message)
    return ValidationResult(valid=True)
