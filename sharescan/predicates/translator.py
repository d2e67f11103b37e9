# sharescan/predicates/translator.py

from __future__ import annotations

import datetime as dt
import json
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sharescan.config.defaults import logger
from sharescan.predicates.expressions import (
    AND,
    COMPARISON_OPS,
    NOT,
    OR,
    BinaryOp,
    Column,
    Expression,
    InOp,
    Literal,
    UnaryOp,
    Unsupported,
)

_VALUE_TYPES: Dict[str, str] = {
    "int": "int",
    "integer": "int",
    "int32": "int",
    "bigint": "long",
    "long": "long",
    "int64": "long",
    "float": "float",
    "real": "float",
    "float32": "float",
    "double": "double",
    "float64": "double",
    "string": "string",
    "varchar": "string",
    "utf8": "string",
    "boolean": "boolean",
    "bool": "boolean",
    "date": "date",
    "timestamp": "timestamp",
}


def normalize_value_type(value_type: str) -> Optional[str]:
    """Map an engine type name onto its wire tag, or None when there is none."""
    if not value_type:
        return None
    return _VALUE_TYPES.get(str(value_type).strip().lower())


def render_literal(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, str):
        return value
    return None


def prune(node: Expression, negated: bool = False) -> Optional[Expression]:
    """
    The part of a predicate tree that can be sent to the server.

    Returns None when nothing of the tree translates. Untranslatable children
    of an ``and`` are dropped (of an ``or`` under negation), which keeps the
    result a superset filter; anywhere else they drop the whole node.
    """
    if isinstance(node, Column):
        return node if normalize_value_type(node.value_type) is not None else None

    if isinstance(node, Literal):
        if normalize_value_type(node.value_type) is None or render_literal(node.value) is None:
            return None
        return node

    if isinstance(node, UnaryOp):
        child = prune(node.child, not negated if node.op == NOT else negated)
        if child is None:
            return None
        return node if child is node.child else UnaryOp(node.op, child)

    if isinstance(node, BinaryOp):
        left = prune(node.left, negated)
        right = prune(node.right, negated)
        if left is not None and right is not None:
            if left is node.left and right is node.right:
                return node
            return BinaryOp(node.op, left, right)
        if node.op in COMPARISON_OPS:
            return None
        # Dropping a conjunct (or a disjunct under negation) only widens the filter.
        droppable = (node.op == AND and not negated) or (node.op == OR and negated)
        if droppable:
            return left if left is not None else right
        return None

    if isinstance(node, InOp):
        child = prune(node.child, negated)
        values = tuple(prune(v, negated) for v in node.values)
        if child is None or not values or any(v is None for v in values):
            return None
        return InOp(child, values)

    if isinstance(node, Unsupported):
        logger.debug(f"[predicates] skipping unsupported expression: {node.description}")
        return None

    logger.debug(f"[predicates] skipping unknown node type: {type(node).__name__}")
    return None


def _to_json(node: Expression) -> Dict[str, Any]:
    # node has already been pruned
    if isinstance(node, Column):
        return {"op": "column", "name": node.name, "valueType": normalize_value_type(node.value_type)}
    if isinstance(node, Literal):
        return {
            "op": "literal",
            "value": render_literal(node.value),
            "valueType": normalize_value_type(node.value_type),
        }
    if isinstance(node, UnaryOp):
        return {"op": node.op, "children": [_to_json(node.child)]}
    if isinstance(node, BinaryOp):
        return {"op": node.op, "children": [_to_json(node.left), _to_json(node.right)]}
    if isinstance(node, InOp):
        return {"op": node.op, "children": [_to_json(node.child), *(_to_json(v) for v in node.values)]}
    raise TypeError(f"Not a translatable predicate node: {type(node).__name__}")


def to_wire_json(tree: Expression) -> Optional[Dict[str, Any]]:
    """
    Translate one predicate tree into the wire JSON grammar.

    Returns None when nothing of the tree can be sent. Untranslatable parts of
    a conjunction are left out, which keeps the hint a superset filter; the
    engine re-applies the full predicate locally.
    """
    pruned = prune(tree)
    if pruned is None:
        logger.warning(f"[predicates] predicate not translatable, omitted from hints: {tree!r}")
        return None
    return _to_json(pruned)


def conjunction_to_wire_json(predicates: Sequence[Expression]) -> Optional[Dict[str, Any]]:
    """Translate a sequence of predicates that are implicitly AND-ed together."""
    children: List[Dict[str, Any]] = []
    for predicate in predicates or ():
        translated = to_wire_json(predicate)
        if translated is not None:
            children.append(translated)
    if not children:
        return None
    if len(children) == 1:
        return children[0]
    return {"op": AND, "children": children}


def build_predicate_hints(
        partition_predicates: Sequence[Expression],
        data_predicates: Sequence[Expression],
        *,
        hints_enabled: bool,
        v2_enabled: bool,
) -> Optional[str]:
    """
    Build the compact JSON predicate hint sent with a file listing request.

    V1 sends partition predicates only. V2 translates both sides and joins them
    under a synthetic ``and`` when both are present.
    """
    if not hints_enabled:
        return None

    partition_json = conjunction_to_wire_json(partition_predicates)
    if v2_enabled:
        data_json = conjunction_to_wire_json(data_predicates)
        if partition_json is not None and data_json is not None:
            combined: Optional[Dict[str, Any]] = {"op": AND, "children": [partition_json, data_json]}
        else:
            combined = partition_json if partition_json is not None else data_json
    else:
        combined = partition_json

    if combined is None:
        return None
    return json.dumps(combined, separators=(",", ":"), ensure_ascii=False)
