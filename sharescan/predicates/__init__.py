# sharescan/predicates/__init__.py
#
# Predicate tree model and its translation into JSON pushdown hints.

from sharescan.predicates.expressions import (  # noqa: F401
    BinaryOp,
    Column,
    Expression,
    InOp,
    Literal,
    UnaryOp,
    Unsupported,
    and_,
    col,
    eq,
    ge,
    gt,
    in_,
    is_null,
    le,
    lit,
    lt,
    not_,
    or_,
)
from sharescan.predicates.translator import (  # noqa: F401
    build_predicate_hints,
    conjunction_to_wire_json,
    normalize_value_type,
    to_wire_json,
)
