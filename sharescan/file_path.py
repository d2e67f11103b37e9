# sharescan/file_path.py
"""
Opaque file paths handed to the storage read path.

    <scheme>:/<table_location>/<file_id>/<commit_version>

The table location may contain '/' (it usually starts with a profile file
path). File ids are percent-quoted so the last two segments are always
unambiguous.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import quote, unquote

DEFAULT_SCHEME = "delta-sharing"


@dataclass(frozen=True)
class DecodedPath:
    table_location: str
    file_id: str
    commit_version: int


def table_location_with_fingerprint(table_location: str, fingerprint: str) -> str:
    """Append the query fingerprint, giving each distinct query its own cache partition."""
    if not fingerprint:
        return table_location
    return f"{table_location}_{fingerprint}"


def unique_table_location(table_location: str, now: datetime | None = None) -> str:
    """
    Make a table location that no other scan will ever share.

    Used when URL caching is disabled: <location>_<yyyyMMdd>_<HHmmss>_<uuid>.
    """
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"{table_location}_{stamp}_{uuid.uuid4()}"


def encode(table_location: str, file_id: str, commit_version: int = 0, scheme: str = DEFAULT_SCHEME) -> str:
    if not file_id:
        raise ValueError("file_id must not be empty")
    return f"{scheme}:/{table_location}/{quote(str(file_id), safe='')}/{int(commit_version)}"


def decode(path: str, scheme: str = DEFAULT_SCHEME) -> DecodedPath:
    path = str(path)
    prefix = f"{scheme}:/"
    if not path.startswith(prefix):
        raise ValueError(f"Not a {scheme} path: {path}")
    body = path[len(prefix):]
    parts = body.rsplit("/", 2)
    if len(parts) != 3 or not parts[0] or not parts[1]:
        raise ValueError(f"Malformed {scheme} path: {path}")
    table_location, raw_file_id, raw_version = parts
    try:
        commit_version = int(raw_version)
    except ValueError:
        raise ValueError(f"Malformed commit version in {scheme} path: {path}") from None
    return DecodedPath(
        table_location=table_location,
        file_id=unquote(raw_file_id),
        commit_version=commit_version,
    )
