# sharescan/fingerprint.py

from __future__ import annotations

import hashlib
from typing import Iterable, List, Optional, Sequence

from sharescan.data_classes import (
    ScanParameters,
    TimestampAsOf,
    VersionAsOf,
    VersionRange,
    VersionSelector,
)
from sharescan.file_path import table_location_with_fingerprint, unique_table_location  # noqa: F401
from sharescan.predicates.expressions import (
    AND,
    COMMUTATIVE_OPS,
    OR,
    BinaryOp,
    Column,
    Expression,
    InOp,
    Literal,
    UnaryOp,
    Unsupported,
)
from sharescan.predicates.translator import normalize_value_type, prune, render_literal

FINGERPRINT_HEX_LENGTH = 64

_SNAPSHOT_MODE = "snapshot"
_RANGE_MODE = "range"


# =========================================================
# Canonical predicate form
# =========================================================

def _atom(value: str) -> str:
    value = str(value)
    return f"{len(value)}:{value}"


def _flatten(node: BinaryOp) -> List[Expression]:
    """Collect the operands of a chain of the same associative operator."""
    out: List[Expression] = []
    for side in (node.left, node.right):
        if isinstance(side, BinaryOp) and side.op == node.op:
            out.extend(_flatten(side))
        else:
            out.append(side)
    return out


def canonical_predicate(node: Expression) -> str:
    """
    Structural canonical string of a predicate tree.

    Sensitive to operators, operand order of non-commutative operators, column
    names, types and literal values. Operands of equal/and/or are sorted, and
    and/or chains are flattened, so construction order does not matter.
    """
    if isinstance(node, Column):
        value_type = normalize_value_type(node.value_type) or str(node.value_type).lower()
        return f"C({_atom(node.name)}{_atom(value_type)})"

    if isinstance(node, Literal):
        value_type = normalize_value_type(node.value_type) or str(node.value_type).lower()
        rendered = render_literal(node.value)
        if rendered is None:
            rendered = "null" if node.value is None else repr(node.value)
        return f"L({_atom(value_type)}{_atom(rendered)})"

    if isinstance(node, UnaryOp):
        return f"U({_atom(node.op)}{canonical_predicate(node.child)})"

    if isinstance(node, BinaryOp):
        if node.op in (AND, OR):
            operands = [canonical_predicate(child) for child in _flatten(node)]
        else:
            operands = [canonical_predicate(node.left), canonical_predicate(node.right)]
        if node.op in COMMUTATIVE_OPS:
            operands.sort()
        return f"B({_atom(node.op)}{''.join(operands)})"

    if isinstance(node, InOp):
        values = sorted({canonical_predicate(v) for v in node.values})
        return f"I({canonical_predicate(node.child)}{''.join(values)})"

    if isinstance(node, Unsupported):
        return f"X({_atom(node.description)})"

    raise TypeError(f"Not a predicate node: {type(node).__name__}")


def canonical_predicates(predicates: Iterable[Expression]) -> str:
    """
    Canonical string of a predicate sequence.

    The sequence is a conjunction: it is pruned the way hints are, top-level
    and chains are flattened into it and duplicate conjuncts collapse, so
    neither order nor grouping changes the result.
    """
    conjuncts: List[Expression] = []
    for predicate in predicates or ():
        pruned = prune(predicate)
        if pruned is None:
            continue
        if isinstance(pruned, BinaryOp) and pruned.op == AND:
            conjuncts.extend(_flatten(pruned))
        else:
            conjuncts.append(pruned)
    return "".join(sorted({canonical_predicate(c) for c in conjuncts}))


def canonical_version(version: Optional[VersionSelector]) -> str:
    if version is None:
        return "latest"
    if isinstance(version, VersionAsOf):
        return f"version:{int(version.version)}"
    if isinstance(version, TimestampAsOf):
        return f"timestamp:{version.timestamp}"
    if isinstance(version, VersionRange):
        end = "none" if version.end_version is None else int(version.end_version)
        return f"range:{int(version.start_version)}:{end}"
    raise TypeError(f"Not a version selector: {type(version).__name__}")


# =========================================================
# Fingerprints
# =========================================================

def _digest(fields: Sequence[tuple]) -> str:
    h = hashlib.sha256()
    for name, value in fields:
        h.update(f"{name}={_atom(value)};".encode("utf-8"))
    return h.hexdigest()


def snapshot_fingerprint(
        predicates: Sequence[Expression] = (),
        limit: Optional[int] = None,
        version: Optional[VersionSelector] = None,
) -> str:
    """Fingerprint of a point-in-time scan: (predicates, limit, versionAsOf | timestampAsOf)."""
    if isinstance(version, VersionRange):
        raise ValueError("Use range_fingerprint for a version range")
    return _digest((
        ("mode", _SNAPSHOT_MODE),
        ("predicates", canonical_predicates(predicates)),
        ("limit", "none" if limit is None else str(int(limit))),
        ("version", canonical_version(version)),
    ))


def range_fingerprint(start_version: int, end_version: Optional[int] = None) -> str:
    """
    Fingerprint of a change-range scan.

    Predicates are not part of it: the server returns every action in the
    range and filtering happens in the engine.
    """
    return _digest((
        ("mode", _RANGE_MODE),
        ("version", canonical_version(VersionRange(start_version, end_version))),
    ))


def scan_fingerprint(params: ScanParameters, predicates: Optional[Sequence[Expression]] = None) -> str:
    """
    Fingerprint a scan.

    `predicates` overrides which predicates count (callers pass the ones that
    actually shape the listing request); defaults to partition + data predicates.
    """
    if params.is_cdf:
        assert isinstance(params.version, VersionRange)
        return range_fingerprint(params.version.start_version, params.version.end_version)
    if predicates is None:
        predicates = tuple(params.partition_predicates) + tuple(params.data_predicates)
    return snapshot_fingerprint(predicates, params.limit, params.version)
