# sharescan/predicates/expressions.py
"""
Minimal predicate tree used for pushdown hints and fingerprints.

Engine integrations lower their native expressions into these nodes before
handing them to the translator. Anything that cannot be lowered becomes an
``Unsupported`` node, which the translator drops from the hint.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Tuple, Union

# Operator tags, as they appear on the wire.
EQUAL = "equal"
LESS_THAN = "lessThan"
LESS_THAN_OR_EQUAL = "lessThanOrEqual"
GREATER_THAN = "greaterThan"
GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
AND = "and"
OR = "or"
NOT = "not"
IS_NULL = "isNull"
IN = "in"

COMPARISON_OPS = frozenset({EQUAL, LESS_THAN, LESS_THAN_OR_EQUAL, GREATER_THAN, GREATER_THAN_OR_EQUAL})
LOGICAL_OPS = frozenset({AND, OR})
BINARY_OPS = COMPARISON_OPS | LOGICAL_OPS
UNARY_OPS = frozenset({NOT, IS_NULL})

# Operators whose operands can be swapped without changing the result.
COMMUTATIVE_OPS = frozenset({EQUAL, AND, OR})


@dataclass(frozen=True)
class Column:
    name: str
    value_type: str


@dataclass(frozen=True)
class Literal:
    value: Any
    value_type: str


@dataclass(frozen=True)
class UnaryOp:
    op: str
    child: "Expression"

    def __post_init__(self):
        if self.op not in UNARY_OPS:
            raise ValueError(f"Unsupported unary operator: {self.op}")


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Expression"
    right: "Expression"

    def __post_init__(self):
        if self.op not in BINARY_OPS:
            raise ValueError(f"Unsupported binary operator: {self.op}")


@dataclass(frozen=True)
class InOp:
    child: "Expression"
    values: Tuple["Expression", ...]

    op = IN


@dataclass(frozen=True)
class Unsupported:
    """An engine expression with no counterpart in the wire grammar."""
    description: str


Expression = Union[Column, Literal, UnaryOp, BinaryOp, InOp, Unsupported]


# ---------------- constructors ----------------

def col(name: str, value_type: str) -> Column:
    return Column(name, value_type)


def lit(value: Any, value_type: str) -> Literal:
    return Literal(value, value_type)


def eq(left: Expression, right: Expression) -> BinaryOp:
    return BinaryOp(EQUAL, left, right)


def lt(left: Expression, right: Expression) -> BinaryOp:
    return BinaryOp(LESS_THAN, left, right)


def le(left: Expression, right: Expression) -> BinaryOp:
    return BinaryOp(LESS_THAN_OR_EQUAL, left, right)


def gt(left: Expression, right: Expression) -> BinaryOp:
    return BinaryOp(GREATER_THAN, left, right)


def ge(left: Expression, right: Expression) -> BinaryOp:
    return BinaryOp(GREATER_THAN_OR_EQUAL, left, right)


def and_(left: Expression, right: Expression, *more: Expression) -> BinaryOp:
    node = BinaryOp(AND, left, right)
    for extra in more:
        node = BinaryOp(AND, node, extra)
    return node


def or_(left: Expression, right: Expression, *more: Expression) -> BinaryOp:
    node = BinaryOp(OR, left, right)
    for extra in more:
        node = BinaryOp(OR, node, extra)
    return node


def not_(child: Expression) -> UnaryOp:
    return UnaryOp(NOT, child)


def is_null(child: Expression) -> UnaryOp:
    return UnaryOp(IS_NULL, child)


def in_(child: Expression, values) -> InOp:
    return InOp(child, tuple(values))
