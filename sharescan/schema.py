# sharescan/schema.py

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Sequence, Union

import pyarrow as pa

from sharescan.config.defaults import logger
from sharescan.errors import SchemaMismatchError

COMMIT_VERSION_COL = "_commit_version"
COMMIT_TIMESTAMP_COL = "_commit_timestamp"
CHANGE_TYPE_COL = "_change_type"

ADD_FILES = "add"
REMOVE_FILES = "remove"
CDC_FILES = "cdc"

_PRIMITIVES = {
    "string": pa.string(),
    "long": pa.int64(),
    "integer": pa.int32(),
    "short": pa.int16(),
    "byte": pa.int8(),
    "float": pa.float32(),
    "double": pa.float64(),
    "boolean": pa.bool_(),
    "binary": pa.binary(),
    "date": pa.date32(),
    "timestamp": pa.timestamp("us", tz="UTC"),
    "timestamp_ntz": pa.timestamp("us"),
}

_DECIMAL = re.compile(r"^decimal\(\s*(\d+)\s*,\s*(\d+)\s*\)$")


def _to_arrow_type(type_json: Union[str, Dict[str, Any]]) -> pa.DataType:
    if isinstance(type_json, str):
        name = type_json.strip().lower()
        if name in _PRIMITIVES:
            return _PRIMITIVES[name]
        m = _DECIMAL.match(name)
        if m:
            return pa.decimal128(int(m.group(1)), int(m.group(2)))
        raise ValueError(f"Unsupported column type: {type_json}")

    kind = type_json.get("type")
    if kind == "struct":
        return pa.struct([_to_arrow_field(f) for f in type_json.get("fields", [])])
    if kind == "array":
        element = pa.field("element", _to_arrow_type(type_json["elementType"]),
                           nullable=bool(type_json.get("containsNull", True)))
        return pa.list_(element)
    if kind == "map":
        return pa.map_(
            _to_arrow_type(type_json["keyType"]),
            pa.field("value", _to_arrow_type(type_json["valueType"]),
                     nullable=bool(type_json.get("valueContainsNull", True))),
        )
    raise ValueError(f"Unsupported column type: {type_json}")


def _to_arrow_field(field_json: Dict[str, Any]) -> pa.Field:
    return pa.field(
        field_json["name"],
        _to_arrow_type(field_json["type"]),
        nullable=bool(field_json.get("nullable", True)),
    )


def schema_from_json(schema_string: str) -> pa.Schema:
    """Parse the table's JSON struct schema into a pyarrow schema."""
    try:
        parsed = json.loads(schema_string)
    except json.JSONDecodeError as e:
        raise ValueError(f"Schema string is not valid JSON: {e}") from e
    if not isinstance(parsed, dict) or parsed.get("type") != "struct":
        raise ValueError("Schema string must describe a struct")
    return pa.schema([_to_arrow_field(f) for f in parsed.get("fields", [])])


def check_schema_compatible(
        planned: pa.Schema,
        live: pa.Schema,
        planned_partitions: Sequence[str],
        live_partitions: Sequence[str],
        structural: bool = False,
) -> None:
    """
    Raise SchemaMismatchError when the live table no longer matches the plan.

    Partition columns must be identical. In exact mode the schemas must be
    equal field by field (name, type, nullability). In structural mode every
    planned field must still exist with the same type; new live fields are fine.
    """
    if list(planned_partitions) != list(live_partitions):
        raise SchemaMismatchError(
            f"partition columns changed from {list(planned_partitions)} to {list(live_partitions)}"
        )

    if not structural:
        if not planned.equals(live):
            raise SchemaMismatchError("schema changed")
        return

    for field in planned:
        idx = live.get_field_index(field.name)
        if idx < 0:
            raise SchemaMismatchError(f"field '{field.name}' no longer exists")
        live_type = live.field(idx).type
        if not live_type.equals(field.type):
            raise SchemaMismatchError(f"field '{field.name}' changed type from {field.type} to {live_type}")

    extra = [f.name for f in live if planned.get_field_index(f.name) < 0]
    if extra:
        logger.debug(f"[scan] live schema has new fields, ignored: {extra}")


def cdf_partition_schema(kind: str) -> pa.Schema:
    """
    Derived partition columns of a change data feed file group.

    Added and removed files also carry the change type; cdc files already
    contain it as a data column.
    """
    fields: List[pa.Field] = [
        pa.field(COMMIT_VERSION_COL, pa.int64()),
        pa.field(COMMIT_TIMESTAMP_COL, pa.int64()),
    ]
    if kind in (ADD_FILES, REMOVE_FILES):
        fields.append(pa.field(CHANGE_TYPE_COL, pa.string()))
    elif kind != CDC_FILES:
        raise ValueError(f"Unknown change file group: {kind}")
    return pa.schema(fields)


def partition_schema(schema: pa.Schema, partition_columns: Sequence[str]) -> pa.Schema:
    """Engine-visible partition columns of a snapshot scan, in declared order."""
    out: List[pa.Field] = []
    for name in partition_columns:
        idx = schema.get_field_index(name)
        if idx < 0:
            raise ValueError(f"Partition column '{name}' is not in the table schema")
        out.append(schema.field(idx))
    return pa.schema(out)


def change_type_for(kind: str, action_change_type: Optional[str] = None) -> Optional[str]:
    if kind == ADD_FILES:
        return action_change_type or "insert"
    if kind == REMOVE_FILES:
        return action_change_type or "delete"
    return None
