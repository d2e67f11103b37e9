# sharescan/data_classes.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from sharescan.file_path import DEFAULT_SCHEME, DecodedPath, decode, encode, table_location_with_fingerprint
from sharescan.predicates.expressions import Expression


@dataclass(frozen=True)
class TableReference:
    share: str
    schema: str
    name: str

    @classmethod
    def from_string(cls, value: str) -> "TableReference":
        parts = str(value).split(".")
        if len(parts) != 3 or not all(p.strip() for p in parts):
            raise ValueError(f"Table reference must be 'share.schema.table', got: {value!r}")
        return cls(*(p.strip() for p in parts))

    def __str__(self) -> str:
        return f"{self.share}.{self.schema}.{self.name}"


@dataclass(frozen=True)
class VersionAsOf:
    version: int


@dataclass(frozen=True)
class TimestampAsOf:
    timestamp: str


@dataclass(frozen=True)
class VersionRange:
    start_version: int
    end_version: Optional[int] = None

    def __post_init__(self):
        if self.start_version < 0:
            raise ValueError(f"start_version must be >= 0, got {self.start_version}")
        if self.end_version is not None and self.end_version < self.start_version:
            raise ValueError(
                f"end_version ({self.end_version}) must be >= start_version ({self.start_version})"
            )


VersionSelector = Union[VersionAsOf, TimestampAsOf, VersionRange]


@dataclass(frozen=True)
class ScanParameters:
    """
    Everything about a scan that can change its result set.

    partition_predicates / data_predicates are implicit conjunctions.
    version holds at most one selector; a CDF scan requires a VersionRange.
    """
    partition_predicates: Tuple[Expression, ...] = ()
    data_predicates: Tuple[Expression, ...] = ()
    limit: Optional[int] = None
    version: Optional[VersionSelector] = None
    is_cdf: bool = False

    def __post_init__(self):
        object.__setattr__(self, "partition_predicates", tuple(self.partition_predicates or ()))
        object.__setattr__(self, "data_predicates", tuple(self.data_predicates or ()))
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be >= 0, got {self.limit}")
        if self.is_cdf and not isinstance(self.version, VersionRange):
            raise ValueError("A change data feed scan requires a VersionRange")
        if not self.is_cdf and isinstance(self.version, VersionRange):
            raise ValueError("A VersionRange is only valid for a change data feed scan")


@dataclass
class FileAction:
    """One file action as returned by the metadata client."""
    id: str
    url: str = ""
    size: int = 0
    partition_values: Dict[str, Optional[str]] = field(default_factory=dict)
    version: Optional[int] = None
    timestamp: Optional[int] = None
    expiration_timestamp: Optional[int] = None
    change_type: Optional[str] = None


@dataclass
class ChangeFiles:
    add_files: List[FileAction] = field(default_factory=list)
    remove_files: List[FileAction] = field(default_factory=list)
    cdc_files: List[FileAction] = field(default_factory=list)


@dataclass
class TableMetadata:
    schema_string: str
    partition_columns: List[str] = field(default_factory=list)
    num_files: Optional[int] = None
    size_in_bytes: Optional[int] = None
    version: Optional[int] = None


@dataclass(frozen=True)
class CacheEntry:
    url: str
    expiration_ms: int


@dataclass(frozen=True)
class FileReference:
    """
    Opaque handle for one remote file, handed to the storage read path.

    `path` embeds the fingerprinted table location so the read path can find
    the cached URL batch the file belongs to.
    """
    table_location: str
    fingerprint: str
    file_id: str
    size: int
    partition_values: Dict[str, Optional[str]] = field(default_factory=dict, hash=False, compare=True)
    commit_version: int = 0
    commit_timestamp: Optional[int] = None
    change_type: Optional[str] = None
    scheme: str = DEFAULT_SCHEME

    @property
    def table_key(self) -> str:
        return table_location_with_fingerprint(self.table_location, self.fingerprint)

    @property
    def path(self) -> str:
        return encode(self.table_key, self.file_id, self.commit_version, scheme=self.scheme)

    @staticmethod
    def decode(path: str, scheme: str = DEFAULT_SCHEME) -> DecodedPath:
        return decode(path, scheme=scheme)


@dataclass
class PartitionDirectory:
    """Files sharing one derived partition key."""
    values: Dict[str, Optional[str]]
    files: List[FileReference] = field(default_factory=list)
