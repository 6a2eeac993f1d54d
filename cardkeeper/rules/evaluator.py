"""
Expression evaluator.

Walks a parsed expression against one card's evaluation context.

Semantics:
- AND/OR short-circuit, NOT negates its single child
- A field missing from the context (or None) never matches
- String comparisons are exact and case-sensitive
- A runtime value that does not fit the comparison raises EvaluationError;
  values are never coerced
"""

from collections.abc import Mapping
from typing import Any

from cardkeeper.models.failure import EvaluationError
from cardkeeper.rules.nodes import (
    Comparison,
    Constant,
    Expression,
    Logical,
    LogicalOp,
    Operator,
)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _type_name(value: Any) -> str:
    if isinstance(value, list | tuple):
        return "list"
    if isinstance(value, bool):
        return "boolean"
    if _is_number(value):
        return "number"
    return type(value).__name__


def _same_kind(actual: Any, literal: Any) -> bool:
    if isinstance(literal, bool) or isinstance(actual, bool):
        return isinstance(literal, bool) and isinstance(actual, bool)
    if _is_number(literal):
        return _is_number(actual)
    if isinstance(literal, tuple):
        return isinstance(actual, list | tuple)
    return isinstance(actual, str) and isinstance(literal, str)


def _mismatch(node: Comparison, actual: Any) -> EvaluationError:
    return EvaluationError(
        node.field,
        f"Cannot apply '{node.operator.value}' to {_type_name(actual)} value of "
        f"'{node.field}' with {_type_name(node.value)} operand",
    )


def _compare(node: Comparison, actual: Any) -> bool:
    op = node.operator
    literal = node.value

    if op.is_membership:
        if not isinstance(actual, list | tuple):
            raise _mismatch(node, actual)
        wanted = literal if isinstance(literal, tuple) else (literal,)
        if op is Operator.CONTAINS:
            return all(item in actual for item in wanted)
        # IN: every element of the field appears in the literal list
        return all(item in wanted for item in actual)

    if not _same_kind(actual, literal):
        raise _mismatch(node, actual)

    if op is Operator.EQ:
        if isinstance(literal, tuple):
            return tuple(actual) == literal
        return actual == literal
    if op is Operator.NE:
        if isinstance(literal, tuple):
            return tuple(actual) != literal
        return actual != literal

    if not _is_number(actual):
        raise _mismatch(node, actual)
    if op is Operator.GT:
        return actual > literal
    if op is Operator.GE:
        return actual >= literal
    if op is Operator.LT:
        return actual < literal
    return actual <= literal


def evaluate(expression: Expression, context: Mapping[str, Any]) -> bool:
    """
    Evaluate an expression against a card context.

    Raises:
        EvaluationError: If a field's actual value does not fit its comparison
    """
    if isinstance(expression, Constant):
        return expression.value

    if isinstance(expression, Comparison):
        actual = context.get(expression.field)
        if actual is None:
            return False
        return _compare(expression, actual)

    if expression.op is LogicalOp.NOT:
        return not evaluate(expression.children[0], context)
    if expression.op is LogicalOp.AND:
        return all(evaluate(child, context) for child in expression.children)
    return any(evaluate(child, context) for child in expression.children)
