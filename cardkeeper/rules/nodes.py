"""
Expression syntax tree.

Nodes are frozen dataclasses so a parsed tree can be shared between the
cache, rule snapshots and worker threads without copying.
"""

from dataclasses import dataclass
from enum import Enum

# Literal values that can appear on the right of a comparison
Scalar = str | int | float | bool
Literal = Scalar | tuple[Scalar, ...]


class Operator(str, Enum):
    """Comparison operators."""

    EQ = "=="
    NE = "!="
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    CONTAINS = "contains"
    IN = "in"

    @property
    def is_ordering(self) -> bool:
        return self in (Operator.GT, Operator.GE, Operator.LT, Operator.LE)

    @property
    def is_membership(self) -> bool:
        return self in (Operator.CONTAINS, Operator.IN)


class LogicalOp(str, Enum):
    """Boolean connectives."""

    AND = "AND"
    OR = "OR"
    NOT = "NOT"


@dataclass(frozen=True, slots=True)
class Comparison:
    """``field operator literal``, e.g. ``rarity == "mythic"``."""

    field: str
    operator: Operator
    value: Literal
    position: int = 0


@dataclass(frozen=True, slots=True)
class Logical:
    """
    Boolean combination of child expressions.

    AND/OR hold two or more children; NOT holds exactly one.
    """

    op: LogicalOp
    children: tuple["Expression", ...]


@dataclass(frozen=True, slots=True)
class Constant:
    """A bare ``true`` or ``false``."""

    value: bool


Expression = Comparison | Logical | Constant


def iter_comparisons(node: Expression):
    """Yield every Comparison in the tree, depth first."""
    if isinstance(node, Comparison):
        yield node
    elif isinstance(node, Logical):
        for child in node.children:
            yield from iter_comparisons(child)
