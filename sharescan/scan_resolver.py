# sharescan/scan_resolver.py

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import pyarrow as pa

from sharescan.cache.population import CachePopulation, population_policy
from sharescan.cache.presigned_url_cache import PresignedUrlCache
from sharescan.clients import CredentialIssuer, MetadataClient
from sharescan.config.defaults import default, logger
from sharescan.data_classes import (
    FileAction,
    FileReference,
    PartitionDirectory,
    ScanParameters,
    TableMetadata,
    TableReference,
    VersionRange,
    VersionSelector,
)
from sharescan.errors import CredentialUnavailable
from sharescan.file_path import decode, table_location_with_fingerprint, unique_table_location
from sharescan.fingerprint import canonical_version, range_fingerprint, snapshot_fingerprint
from sharescan.predicates.expressions import Expression
from sharescan.predicates.translator import build_predicate_hints
from sharescan.schema import (
    ADD_FILES,
    CDC_FILES,
    CHANGE_TYPE_COL,
    COMMIT_TIMESTAMP_COL,
    COMMIT_VERSION_COL,
    REMOVE_FILES,
    cdf_partition_schema,
    change_type_for,
    check_schema_compatible,
    partition_schema,
    schema_from_json,
)


@dataclass
class ResolvedScan:
    """
    Result of one resolution.

    `files` is every file in listing order; `partitions` groups them by their
    derived partition key (group order is not stable across calls). CDF scans
    also expose the add/remove/cdc groups separately.
    """
    files: List[FileReference]
    fingerprint: str
    table_key: str
    partitions: List[PartitionDirectory]
    predicate_hints: Optional[str] = None
    partition_schema: Optional[pa.Schema] = None
    change_groups: Dict[str, List[PartitionDirectory]] = field(default_factory=dict)

    @property
    def paths(self) -> List[str]:
        return [f.path for f in self.files]


class ScanResolver:
    """
    Turns a logical table scan into file references for the engine.

    Per scan: fingerprint the query, translate its predicates, list files
    through the metadata client, and put the batch's URLs into the shared
    cache (eagerly or on first read). Collaborator errors propagate as-is.
    """

    def __init__(
            self,
            metadata_client: MetadataClient,
            table_location: str,
            cache: Optional[PresignedUrlCache] = None,
            credential_issuer: Optional[CredentialIssuer] = None,
            planned_metadata: Optional[TableMetadata] = None,
            planned_version: Optional[VersionSelector] = None,
            predicate_hints_enabled: bool = default.PREDICATE_HINTS_ENABLED,
            predicate_v2_enabled: bool = default.PREDICATE_V2_ENABLED,
            limit_pushdown_enabled: bool = default.LIMIT_PUSHDOWN_ENABLED,
            url_cache_enabled: bool = default.URL_CACHE_ENABLED,
            structural_schema_match: bool = default.STRUCTURAL_SCHEMA_MATCH_ENABLED,
            population: CachePopulation | str = default.CACHE_POPULATION,
            scheme: str = default.FILE_PATH_SCHEME,
    ):
        self.metadata_client = metadata_client
        self.cache = cache
        self.credential_issuer = credential_issuer
        self.predicate_hints_enabled = predicate_hints_enabled
        self.predicate_v2_enabled = predicate_v2_enabled
        self.limit_pushdown_enabled = limit_pushdown_enabled
        self.url_cache_enabled = url_cache_enabled
        self.structural_schema_match = structural_schema_match
        self.population = population_policy(population)
        self.scheme = scheme

        # Without URL caching every resolver gets a location nobody else shares.
        self.table_location = table_location if url_cache_enabled else unique_table_location(table_location)

        # canonical version -> metadata the scan was planned against
        self._planned: Dict[str, TableMetadata] = {}
        if planned_metadata is not None:
            self._planned[canonical_version(planned_version)] = planned_metadata
        self._registered: List[str] = []
        self._tables: Dict[str, TableReference] = {}

    # ---------------- planning / schema ----------------

    def plan(self, table: TableReference, version: Optional[VersionSelector] = None) -> TableMetadata:
        """Fetch and remember the metadata later scans are checked against."""
        metadata = self.metadata_client.get_metadata(table, version)
        self._planned[canonical_version(version)] = metadata
        return metadata

    def _check_metadata(self, table: TableReference, version: Optional[VersionSelector]) -> TableMetadata:
        key = canonical_version(version)
        planned = self._planned.get(key)
        if planned is None:
            return self.plan(table, version)

        live = self.metadata_client.get_metadata(table, version)
        check_schema_compatible(
            schema_from_json(planned.schema_string),
            schema_from_json(live.schema_string),
            planned.partition_columns,
            live.partition_columns,
            structural=self.structural_schema_match,
        )
        return planned

    # ---------------- predicates / fingerprint ----------------

    def predicate_hints(self, params: ScanParameters) -> Optional[str]:
        return build_predicate_hints(
            params.partition_predicates,
            params.data_predicates,
            hints_enabled=self.predicate_hints_enabled,
            v2_enabled=self.predicate_v2_enabled,
        )

    def _fingerprint_predicates(self, params: ScanParameters) -> Tuple[Expression, ...]:
        # data predicates only shape the listing when they are pushed down
        predicates = tuple(params.partition_predicates)
        if self.predicate_hints_enabled and self.predicate_v2_enabled:
            predicates += tuple(params.data_predicates)
        return predicates

    def _effective_limit(self, params: ScanParameters) -> Optional[int]:
        return params.limit if self.limit_pushdown_enabled else None

    # ---------------- resolution ----------------

    def resolve(self, table: TableReference, params: ScanParameters) -> ResolvedScan:
        """Resolve a scan into file references, populating the URL cache."""
        if params.is_cdf:
            return self._resolve_changes(table, params)

        metadata = self._check_metadata(table, params.version)
        hints = self.predicate_hints(params)
        limit = self._effective_limit(params)
        fingerprint = snapshot_fingerprint(self._fingerprint_predicates(params), limit, params.version)

        actions = list(self.metadata_client.list_files(table, hints, limit, params.version))
        if limit is not None:
            actions = actions[:limit]

        resolved = self._build(table, fingerprint, actions)
        resolved.predicate_hints = hints
        resolved.partition_schema = self._snapshot_partition_schema(metadata)
        logger.info(
            f"[scan] {table}: {len(resolved.files)} files in {len(resolved.partitions)} partitions "
            f"(limit={limit}, hints={'yes' if hints else 'no'}, fp={fingerprint[:12]})"
        )
        return resolved

    def input_files(self, table: TableReference, params: ScanParameters) -> ResolvedScan:
        """
        Every file the scan could read, ignoring limit and predicates.

        Used for lineage and input-file enumeration; never truncated.
        """
        if params.is_cdf:
            return self._resolve_changes(table, params, apply_limit=False)

        self._check_metadata(table, params.version)
        fingerprint = snapshot_fingerprint((), None, params.version)
        actions = list(self.metadata_client.list_files(table, None, None, params.version))
        return self._build(table, fingerprint, actions)

    def resolve_batch(
            self,
            table: TableReference,
            actions: Sequence[FileAction],
            start_version: int,
            end_version: Optional[int] = None,
    ) -> ResolvedScan:
        """File references for actions already fetched for a streaming version range."""
        fingerprint = range_fingerprint(start_version, end_version)
        return self._build(table, fingerprint, list(actions))

    def _resolve_changes(self, table: TableReference, params: ScanParameters, apply_limit: bool = True) -> ResolvedScan:
        assert isinstance(params.version, VersionRange)
        start, end = params.version.start_version, params.version.end_version
        fingerprint = range_fingerprint(start, end)

        # The range is fetched whole; the engine filters locally.
        changes = self.metadata_client.list_change_files(table, start, end, None)
        groups = [
            (ADD_FILES, list(changes.add_files)),
            (REMOVE_FILES, list(changes.remove_files)),
            (CDC_FILES, list(changes.cdc_files)),
        ]

        limit = self._effective_limit(params) if apply_limit else None
        if limit is not None:
            remaining = limit
            truncated = []
            for kind, actions in groups:
                truncated.append((kind, actions[:remaining]))
                remaining = max(0, remaining - len(actions))
            groups = truncated

        table_key = table_location_with_fingerprint(self.table_location, fingerprint)
        files: List[FileReference] = []
        partitions: List[PartitionDirectory] = []
        change_groups: Dict[str, List[PartitionDirectory]] = {}
        all_actions: List[FileAction] = []
        for kind, actions in groups:
            refs = [self._reference(fingerprint, a, kind) for a in actions]
            group_partitions = self._group(refs, kind)
            change_groups[kind] = group_partitions
            partitions.extend(group_partitions)
            files.extend(refs)
            all_actions.extend(actions)

        self._populate(table, table_key, all_actions)
        logger.info(
            f"[scan] {table} changes [{start}, {end}]: "
            + ", ".join(f"{kind}={sum(len(p.files) for p in change_groups[kind])}" for kind, _ in groups)
        )
        return ResolvedScan(
            files=files,
            fingerprint=fingerprint,
            table_key=table_key,
            partitions=partitions,
            change_groups=change_groups,
        )

    # ---------------- building references ----------------

    def _reference(self, fingerprint: str, action: FileAction, kind: Optional[str]) -> FileReference:
        return FileReference(
            table_location=self.table_location,
            fingerprint=fingerprint,
            file_id=action.id,
            size=int(action.size or 0),
            partition_values=dict(action.partition_values or {}),
            commit_version=int(action.version or 0),
            commit_timestamp=action.timestamp,
            change_type=change_type_for(kind, action.change_type) if kind else action.change_type,
            scheme=self.scheme,
        )

    @staticmethod
    def _partition_key(ref: FileReference, kind: Optional[str]) -> Dict[str, Optional[str]]:
        if kind is None:
            return dict(sorted(ref.partition_values.items()))
        values: Dict[str, Optional[str]] = {
            COMMIT_VERSION_COL: str(ref.commit_version),
            COMMIT_TIMESTAMP_COL: None if ref.commit_timestamp is None else str(ref.commit_timestamp),
        }
        if kind in (ADD_FILES, REMOVE_FILES):
            values[CHANGE_TYPE_COL] = ref.change_type
        return values

    def _group(self, refs: Sequence[FileReference], kind: Optional[str]) -> List[PartitionDirectory]:
        grouped: "OrderedDict[tuple, PartitionDirectory]" = OrderedDict()
        for ref in refs:
            values = self._partition_key(ref, kind)
            key = tuple(values.items())
            if key not in grouped:
                grouped[key] = PartitionDirectory(values=values)
            grouped[key].files.append(ref)
        return list(grouped.values())

    def _build(
            self,
            table: TableReference,
            fingerprint: str,
            actions: List[FileAction],
    ) -> ResolvedScan:
        refs = [self._reference(fingerprint, a, None) for a in actions]
        table_key = table_location_with_fingerprint(self.table_location, fingerprint)
        self._populate(table, table_key, actions)
        return ResolvedScan(
            files=refs,
            fingerprint=fingerprint,
            table_key=table_key,
            partitions=self._group(refs, None),
        )

    @staticmethod
    def _snapshot_partition_schema(metadata: TableMetadata) -> pa.Schema:
        if not metadata.partition_columns:
            return pa.schema([])
        return partition_schema(schema_from_json(metadata.schema_string), metadata.partition_columns)

    @staticmethod
    def change_partition_schema(kind: str) -> pa.Schema:
        return cdf_partition_schema(kind)

    # ---------------- cache ----------------

    def _populate(self, table: TableReference, table_key: str, actions: List[FileAction]) -> None:
        self._tables[table_key] = table
        if not self.url_cache_enabled or self.cache is None:
            return
        self.population.populate(self.cache, table_key, table, actions, self.credential_issuer)
        self._registered.append(table_key)

    def file_url(self, path: str) -> Tuple[str, int]:
        """
        Read path: (url, expiration_ms) for an encoded file path.

        With URL caching disabled every call signs the file afresh.
        """
        decoded = decode(path, scheme=self.scheme)
        if self.url_cache_enabled and self.cache is not None:
            return self.cache.get(decoded.table_location, decoded.file_id)

        table = self._tables.get(decoded.table_location)
        if table is None:
            raise CredentialUnavailable(f"Path was not resolved by this scan: {path}")
        if self.credential_issuer is None:
            raise CredentialUnavailable(f"No credential issuer available to sign {decoded.file_id}")
        try:
            signed = self.credential_issuer.sign(table, [decoded.file_id])
        except Exception as e:
            raise CredentialUnavailable(f"Signing {decoded.file_id} of {table} failed: {e}") from e
        if decoded.file_id not in signed:
            raise CredentialUnavailable(f"Credential issuer did not sign file {decoded.file_id} of {table}")
        url, expiration_ms = signed[decoded.file_id]
        return url, int(expiration_ms)

    def close(self) -> None:
        """Release every cache batch this resolver registered."""
        if self.cache is not None:
            for table_key in self._registered:
                self.cache.release(table_key)
        self._registered.clear()

    def __enter__(self) -> "ScanResolver":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()
