import json

import pyarrow as pa
import pytest

from sharing_fakes import BASE_FIELDS, TABLE_LOCATION, FakeSharingClient, schema_string
from sharescan.data_classes import FileAction, ScanParameters, TableMetadata, VersionAsOf, VersionRange
from sharescan.errors import CredentialUnavailable, SchemaMismatchError
from sharescan.fingerprint import range_fingerprint, snapshot_fingerprint
from sharescan.predicates.expressions import Unsupported, col, eq, gt, lit
from sharescan.scan_resolver import ScanResolver

ID_EQ_23 = eq(col("id", "int"), lit(23, "int"))
DATE_EQ = eq(col("date", "date"), lit("2021-04-28", "date"))
VALUE_GT = gt(col("value", "long"), lit(100, "long"))


def _resolver(client, cache=None, **kwargs):
    return ScanResolver(client, TABLE_LOCATION, cache=cache, credential_issuer=client, **kwargs)


# ---------------------------
# Snapshot scans
# ---------------------------

def test_resolve_lists_and_groups_files(client, cache, table):
    resolved = _resolver(client, cache).resolve(table, ScanParameters())

    assert [f.file_id for f in resolved.files] == ["f1", "f2", "f3", "f4"]
    assert resolved.paths[0] == f"delta-sharing:/{TABLE_LOCATION}_{resolved.fingerprint}/f1/0"
    assert resolved.table_key == f"{TABLE_LOCATION}_{resolved.fingerprint}"
    assert sorted(p.values["date"] for p in resolved.partitions) == ["2021-04-28", "2021-04-29"]
    assert all(len(p.files) == 2 for p in resolved.partitions)
    assert resolved.partition_schema.names == ["date"]
    assert resolved.partition_schema.field("date").type == pa.date32()
    assert resolved.predicate_hints is None


def test_limit_is_pushed_down_and_enforced(client, cache, table):
    resolved = _resolver(client, cache).resolve(table, ScanParameters(limit=2))

    # the fake server ignores the limit; the resolver still truncates
    assert client.list_calls[-1]["limit"] == 2
    assert [f.file_id for f in resolved.files] == ["f1", "f2"]
    assert resolved.fingerprint == snapshot_fingerprint((), 2, None)


def test_limit_zero(client, cache, table):
    resolved = _resolver(client, cache).resolve(table, ScanParameters(limit=0))
    assert resolved.files == []
    assert resolved.partitions == []


def test_limit_pushdown_disabled(client, cache, table):
    resolved = _resolver(client, cache, limit_pushdown_enabled=False).resolve(table, ScanParameters(limit=2))

    assert client.list_calls[-1]["limit"] is None
    assert len(resolved.files) == 4
    assert resolved.fingerprint == snapshot_fingerprint((), None, None)


def test_input_files_are_never_limited(client, cache, table):
    resolver = _resolver(client, cache)
    params = ScanParameters(partition_predicates=(DATE_EQ,), limit=1)

    assert len(resolver.resolve(table, params).files) == 1
    inputs = resolver.input_files(table, params)

    assert client.list_calls[-1] == {"hints": None, "limit": None, "version": None}
    assert [f.file_id for f in inputs.files] == ["f1", "f2", "f3", "f4"]


def test_version_as_of(client, cache, table):
    resolver = _resolver(client, cache)
    resolved = resolver.resolve(table, ScanParameters(version=VersionAsOf(3)))

    assert client.list_calls[-1]["version"] == VersionAsOf(3)
    assert client.metadata_calls == [VersionAsOf(3)]
    assert resolved.fingerprint != resolver.resolve(table, ScanParameters()).fingerprint


def test_collaborator_errors_propagate(client, cache, table):
    client.list_error = TimeoutError("listing timed out")
    with pytest.raises(TimeoutError):
        _resolver(client, cache).resolve(table, ScanParameters())


# ---------------------------
# Predicate hints
# ---------------------------

def test_v1_hints_carry_partition_predicates_only(client, cache, table):
    params = ScanParameters(partition_predicates=(ID_EQ_23,), data_predicates=(VALUE_GT,))
    resolved = _resolver(client, cache).resolve(table, params)

    expected = (
        '{"op":"equal","children":[{"op":"column","name":"id","valueType":"int"},'
        '{"op":"literal","value":"23","valueType":"int"}]}'
    )
    assert client.list_calls[-1]["hints"] == expected
    assert resolved.predicate_hints == expected
    # data predicates do not shape the listing, so they do not split the cache
    assert resolved.fingerprint == snapshot_fingerprint((ID_EQ_23,), None, None)


def test_v2_hints_combine_both_sides(client, cache, table):
    params = ScanParameters(partition_predicates=(ID_EQ_23,), data_predicates=(VALUE_GT,))
    resolved = _resolver(client, cache, predicate_v2_enabled=True).resolve(table, params)

    hints = json.loads(client.list_calls[-1]["hints"])
    assert hints["op"] == "and"
    assert [c["op"] for c in hints["children"]] == ["equal", "greaterThan"]
    assert resolved.fingerprint == snapshot_fingerprint((ID_EQ_23, VALUE_GT), None, None)


def test_hints_disabled(client, cache, table):
    params = ScanParameters(partition_predicates=(ID_EQ_23,))
    _resolver(client, cache, predicate_hints_enabled=False).resolve(table, params)
    assert client.list_calls[-1]["hints"] is None


def test_untranslatable_predicate_is_left_out(client, cache, table):
    params = ScanParameters(partition_predicates=(Unsupported("udf(date)"),))
    resolved = _resolver(client, cache).resolve(table, params)
    assert client.list_calls[-1]["hints"] is None
    assert len(resolved.files) == 4


# ---------------------------
# Cache partitions
# ---------------------------

def test_distinct_queries_get_distinct_partitions(client, cache, table):
    resolver = _resolver(client, cache)
    before = cache.partition_count

    first = resolver.resolve(table, ScanParameters(partition_predicates=(ID_EQ_23,)))
    second = resolver.resolve(table, ScanParameters(partition_predicates=(DATE_EQ,)))

    assert cache.partition_count - before == 2
    assert first.table_key != second.table_key

    ids = [f.file_id for f in first.files]
    first_keys = {(first.table_key, f) for f in cache.fresh_entries(first.table_key, ids)}
    second_keys = {(second.table_key, f) for f in cache.fresh_entries(second.table_key, ids)}
    assert len(first_keys) == len(second_keys) == 4
    assert first_keys.isdisjoint(second_keys)
    assert cache.size == 8


def test_identical_queries_share_a_partition(client, cache, table):
    before = cache.partition_count
    params = ScanParameters(partition_predicates=(ID_EQ_23,), limit=3)

    first = _resolver(client, cache).resolve(table, params)
    second = _resolver(client, cache).resolve(table, params)

    assert cache.partition_count - before == 1
    assert first.paths == second.paths


def test_eager_reads_use_listing_urls(client, cache, table):
    resolver = _resolver(client, cache)
    resolved = resolver.resolve(table, ScanParameters())

    url, _ = resolver.file_url(resolved.paths[2])
    assert url == "https://listing.example.com/f3"
    assert client.sign_calls == []


def test_eager_signs_when_listing_has_no_urls(cache, table):
    client = FakeSharingClient(inline_urls=False)
    resolver = _resolver(client, cache)
    resolved = resolver.resolve(table, ScanParameters())

    assert client.sign_calls == [["f1", "f2", "f3", "f4"]]
    assert resolver.file_url(resolved.paths[0])[0].startswith("https://signed.example.com/f1")
    assert len(client.sign_calls) == 1


def test_identical_eager_scans_sign_once(cache, table):
    client = FakeSharingClient(inline_urls=False)
    params = ScanParameters(partition_predicates=(ID_EQ_23,))

    _resolver(client, cache).resolve(table, params)
    second = _resolver(client, cache)
    resolved = second.resolve(table, params)

    assert client.sign_calls == [["f1", "f2", "f3", "f4"]]
    url, _ = second.file_url(resolved.paths[1])
    assert url == "https://signed.example.com/f2?n=1"


def test_lazy_population_signs_on_first_read(client, cache, table):
    resolver = _resolver(client, cache, population="lazy")
    resolved = resolver.resolve(table, ScanParameters())
    assert client.sign_calls == []

    resolver.file_url(resolved.paths[1])
    resolver.file_url(resolved.paths[3])
    assert client.sign_calls == [["f1", "f2", "f3", "f4"]]


def test_url_cache_disabled_signs_every_read(client, cache, table):
    resolver = _resolver(client, cache, url_cache_enabled=False)
    other = _resolver(client, cache, url_cache_enabled=False)
    assert resolver.table_location.startswith(f"{TABLE_LOCATION}_")
    assert resolver.table_location != other.table_location

    resolved = resolver.resolve(table, ScanParameters())
    path = resolved.paths[0]
    first, _ = resolver.file_url(path)
    second, _ = resolver.file_url(path)

    assert first != second
    assert client.sign_calls == [["f1"], ["f1"]]
    assert cache.partition_count == 0


def test_url_cache_disabled_rejects_foreign_path(client, table):
    resolver = _resolver(client, url_cache_enabled=False)
    with pytest.raises(CredentialUnavailable):
        resolver.file_url(f"delta-sharing:/{TABLE_LOCATION}_abc/f1/0")


def test_close_releases_batches(client, cache, table):
    resolver = _resolver(client, cache, population="lazy")
    resolver.resolve(table, ScanParameters())
    cache.refresh()
    assert cache.partition_count == 1

    resolver.close()
    cache.refresh()
    assert cache.partition_count == 0


def test_context_manager_closes(client, cache, table):
    with _resolver(client, cache, population="lazy") as resolver:
        resolver.resolve(table, ScanParameters())
    cache.refresh()
    assert cache.partition_count == 0


# ---------------------------
# Change data feed
# ---------------------------

CDF = ScanParameters(partition_predicates=(ID_EQ_23,), version=VersionRange(1, 4), is_cdf=True)


def test_cdf_groups_and_partition_values(client, cache, table):
    resolved = _resolver(client, cache).resolve(table, CDF)

    assert client.list_calls == []
    assert client.change_calls == [{"start": 1, "end": 4, "hints": None}]
    assert resolved.fingerprint == range_fingerprint(1, 4)
    assert resolved.paths[0] == f"delta-sharing:/{TABLE_LOCATION}_{resolved.fingerprint}/cdf_add1/1"

    add = resolved.change_groups["add"]
    assert [p.values for p in add] == [
        {"_commit_version": "1", "_commit_timestamp": "1000", "_change_type": "insert"}
    ]

    remove = resolved.change_groups["remove"]
    assert len(remove) == 2
    assert {p.values["_commit_timestamp"] for p in remove} == {"4000", "4200"}
    assert all(p.values["_change_type"] == "delete" for p in remove)

    cdc = resolved.change_groups["cdc"]
    assert [len(p.files) for p in cdc] == [1, 2]
    assert cdc[1].values == {"_commit_version": "3", "_commit_timestamp": "3000"}
    assert len(resolved.files) == 6


def test_cdf_fingerprint_ignores_predicates(client, cache, table):
    plain = ScanParameters(version=VersionRange(1, 4), is_cdf=True)
    resolver = _resolver(client, cache)
    assert resolver.resolve(table, CDF).table_key == resolver.resolve(table, plain).table_key


def test_cdf_limit_spans_groups(client, cache, table):
    params = ScanParameters(version=VersionRange(1, 4), is_cdf=True, limit=2)
    resolver = _resolver(client, cache)
    resolved = resolver.resolve(table, params)

    assert [f.file_id for f in resolved.files] == ["cdf_add1", "cdf_rem1"]
    assert resolved.change_groups["cdc"] == []
    assert len(resolver.input_files(table, params).files) == 6


def test_cdf_partition_schemas():
    assert ScanResolver.change_partition_schema("add").names == [
        "_commit_version", "_commit_timestamp", "_change_type",
    ]
    assert ScanResolver.change_partition_schema("cdc").names == ["_commit_version", "_commit_timestamp"]


def test_resolve_batch_uses_range_fingerprint(client, cache, table):
    actions = [FileAction(id="streamed", url="https://u/s", expiration_timestamp=client._expiration(), version=7)]
    resolved = _resolver(client, cache).resolve_batch(table, actions, 5, 9)

    assert resolved.fingerprint == range_fingerprint(5, 9)
    assert resolved.paths == [f"delta-sharing:/{TABLE_LOCATION}_{resolved.fingerprint}/streamed/7"]


# ---------------------------
# Schema checks
# ---------------------------

def test_removed_column_is_a_mismatch(client, cache, table):
    resolver = _resolver(client, cache)
    resolver.plan(table)
    client.schema_string = schema_string(BASE_FIELDS[:2])

    with pytest.raises(SchemaMismatchError) as exc_info:
        resolver.resolve(table, ScanParameters())
    assert "Please redefine your DataFrame" in str(exc_info.value)


def test_changed_partition_columns_are_a_mismatch(client, cache, table):
    planned = TableMetadata(schema_string=schema_string(), partition_columns=["date"])
    resolver = _resolver(client, cache, planned_metadata=planned)
    client.partition_columns = ["id"]

    with pytest.raises(SchemaMismatchError):
        resolver.resolve(table, ScanParameters())


def test_added_column_depends_on_match_mode(client, cache, table):
    planned = TableMetadata(schema_string=schema_string(), partition_columns=["date"])
    extra = {"name": "extra", "type": "long", "nullable": True, "metadata": {}}
    client.schema_string = schema_string(BASE_FIELDS + [extra])

    structural = _resolver(client, cache, planned_metadata=planned, structural_schema_match=True)
    assert len(structural.resolve(table, ScanParameters()).files) == 4

    exact = _resolver(client, cache, planned_metadata=planned)
    with pytest.raises(SchemaMismatchError):
        exact.resolve(table, ScanParameters())


def test_unchanged_schema_passes(client, cache, table):
    resolver = _resolver(client, cache)
    resolver.resolve(table, ScanParameters())
    resolver.resolve(table, ScanParameters())
    assert len(client.metadata_calls) == 2
