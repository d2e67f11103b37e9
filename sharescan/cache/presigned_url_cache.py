# sharescan/cache/presigned_url_cache.py

from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional, Set, Tuple

from sharescan.clients import CredentialIssuer, SignedUrls
from sharescan.config.defaults import default, logger
from sharescan.data_classes import CacheEntry, TableReference
from sharescan.errors import CredentialUnavailable, RefreshTimeout, UnknownCacheKey


def _epoch_millis() -> int:
    return int(time.time() * 1000)


def _short(url: str) -> str:
    # signed URLs carry credentials in the query string
    return url.split("?", 1)[0][:96]


@dataclass
class _Partition:
    """One batch of file URLs: every file of one (table location, fingerprint)."""
    table_key: str
    table: TableReference
    file_ids: Set[str] = field(default_factory=set)
    refresher: Optional[CredentialIssuer] = None
    ref_count: int = 0
    # refresh lease: owner token + monotonic expiry
    lease_token: Optional[str] = None
    lease_expires_at: float = 0.0
    # bumped after every finished refresh attempt; last_error is set when it failed
    generation: int = 0
    last_error: Optional[BaseException] = None


class PresignedUrlCache:
    """
    Process-wide cache of pre-signed file URLs, grouped in batches.

    Entries live under (table_key, file_id), where table_key is the table
    location suffixed with the query fingerprint. A stale or missing entry is
    refreshed together with the rest of its batch in one issuance call.

    Thread-safe. Concurrent readers of the same stale batch share a single
    refresh: the first takes a lease, the others wait on it. A lease expires,
    so an abandoned refresh is taken over instead of blocking readers forever.

    Construct it once per process or session and pass it to resolvers; call
    start() for the background sweeper and shutdown() when done.
    """

    def __init__(
            self,
            issuer: Optional[CredentialIssuer] = None,
            refresh_skew_sec: float = default.URL_REFRESH_SKEW_SEC,
            max_entries: int = default.URL_CACHE_MAX_ENTRIES,
            lease_sec: float = default.REFRESH_LEASE_SEC,
            refresh_timeout_sec: float = default.REFRESH_TIMEOUT_SEC,
            sweep_interval_sec: float = default.CACHE_SWEEP_INTERVAL_SEC,
            clock: Optional[Callable[[], int]] = None,
    ):
        if max_entries <= 0:
            raise ValueError(f"max_entries must be > 0, got {max_entries}")
        self.issuer = issuer
        self.refresh_skew_ms = int(float(refresh_skew_sec) * 1000)
        self.max_entries = int(max_entries)
        self.lease_sec = max(0.01, float(lease_sec))
        self.refresh_timeout_sec = max(0.0, float(refresh_timeout_sec))
        self.sweep_interval_sec = max(0.01, float(sweep_interval_sec))
        self._clock = clock or _epoch_millis

        self._lock = threading.Lock()
        self._cond = threading.Condition(self._lock)
        self._entries: "OrderedDict[Tuple[str, str], CacheEntry]" = OrderedDict()
        self._partitions: Dict[str, _Partition] = {}
        self._stats: Dict[str, int] = {"hits": 0, "misses": 0, "refreshes": 0, "refresh_failures": 0, "evictions": 0}

        self._sweep_stop = threading.Event()
        self._sweep_thread: Optional[threading.Thread] = None

    # ---------------- internal helpers ----------------

    def _is_fresh(self, entry: CacheEntry, now_ms: int) -> bool:
        return now_ms < entry.expiration_ms - self.refresh_skew_ms

    def _store(self, table_key: str, signed: SignedUrls, requested: Optional[Tuple[str, str]] = None) -> None:
        # caller holds the lock; the requested entry is kept most recently used
        for file_id, (url, expiration_ms) in signed.items():
            key = (table_key, str(file_id))
            self._entries[key] = CacheEntry(url=str(url), expiration_ms=int(expiration_ms))
            self._entries.move_to_end(key)
        if requested is not None and requested in self._entries:
            self._entries.move_to_end(requested)
        self._enforce_capacity()

    def _enforce_capacity(self) -> None:
        # caller holds the lock
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return
        now_ms = self._clock()
        expired = [k for k, e in self._entries.items() if e.expiration_ms <= now_ms][:overflow]
        for key in expired:
            del self._entries[key]
        evicted = len(expired)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            evicted += 1
        self._stats["evictions"] += evicted
        logger.debug(f"[url-cache] capacity eviction: {evicted} entries (expired first, then LRU)")

    # ---------------- registration ----------------

    def register(
            self,
            table_key: str,
            table: TableReference,
            file_ids: Iterable[str],
            entries: Optional[SignedUrls] = None,
            refresher: Optional[CredentialIssuer] = None,
    ) -> None:
        """
        Attach a scan context to the batch `table_key`, creating it if needed.

        Identical queries share a table_key and therefore one batch. Each call
        must be paired with release().
        """
        with self._lock:
            partition = self._partitions.get(table_key)
            if partition is None:
                partition = _Partition(table_key=table_key, table=table)
                self._partitions[table_key] = partition
                logger.debug(f"[url-cache] new batch {table_key}")
            partition.file_ids.update(str(f) for f in file_ids)
            partition.ref_count += 1
            if refresher is not None:
                partition.refresher = refresher
            if entries:
                self._store(table_key, entries)

    def release(self, table_key: str) -> None:
        """Detach one scan context. Released batches are evicted once expired."""
        with self._lock:
            partition = self._partitions.get(table_key)
            if partition is None or partition.ref_count == 0:
                return
            partition.ref_count -= 1

    # ---------------- reads ----------------

    def fresh_entries(self, table_key: str, file_ids: Iterable[str]) -> SignedUrls:
        """Entries of `file_ids` in batch `table_key` that are outside the refresh window."""
        now_ms = self._clock()
        out: SignedUrls = {}
        with self._lock:
            for file_id in file_ids:
                entry = self._entries.get((table_key, str(file_id)))
                if entry is not None and self._is_fresh(entry, now_ms):
                    out[str(file_id)] = (entry.url, entry.expiration_ms)
        return out

    def get(self, table_key: str, file_id: str) -> Tuple[str, int]:
        """
        Return (url, expiration_ms) for a file, refreshing its batch when needed.

        Raises:
            UnknownCacheKey: no batch was ever registered for table_key.
            RefreshTimeout: another thread's refresh did not finish in time.
            CredentialUnavailable: the refresh failed or did not sign this file.
        """
        file_id = str(file_id)
        key = (table_key, file_id)
        deadline = time.monotonic() + self.refresh_timeout_sec
        seen_generation: Optional[int] = None

        with self._cond:
            while True:
                entry = self._entries.get(key)
                if entry is not None and self._is_fresh(entry, self._clock()):
                    self._entries.move_to_end(key)
                    self._stats["hits"] += 1
                    return entry.url, entry.expiration_ms

                partition = self._partitions.get(table_key)
                if partition is None:
                    raise UnknownCacheKey(f"No pre-signed URL batch registered for {table_key}")
                if file_id not in partition.file_ids:
                    raise CredentialUnavailable(f"File {file_id} is not part of batch {table_key}")

                # the refresh we were waiting on has finished
                if seen_generation is not None and partition.generation != seen_generation:
                    if partition.last_error is not None:
                        raise CredentialUnavailable(
                            f"Refreshing pre-signed URLs for {table_key} failed: {partition.last_error}"
                        ) from partition.last_error
                    if entry is None:
                        raise CredentialUnavailable(
                            f"Credential issuer did not sign file {file_id} of {table_key}"
                        )
                    self._stats["hits"] += 1
                    return entry.url, entry.expiration_ms

                now = time.monotonic()
                if partition.lease_token is not None and partition.lease_expires_at > now:
                    remaining = deadline - now
                    if remaining <= 0:
                        raise RefreshTimeout(
                            f"Timed out after {self.refresh_timeout_sec}s waiting for the "
                            f"pre-signed URL refresh of {table_key}"
                        )
                    if seen_generation is None:
                        seen_generation = partition.generation
                    self._cond.wait(min(remaining, partition.lease_expires_at - now))
                    continue

                if partition.lease_token is not None:
                    logger.warning(f"[url-cache] lease on {table_key} expired, taking over the refresh")

                token = uuid.uuid4().hex
                partition.lease_token = token
                partition.lease_expires_at = now + self.lease_sec
                self._stats["misses"] += 1
                issuer = partition.refresher if partition.refresher is not None else self.issuer
                table = partition.table
                batch = sorted(partition.file_ids)
                break

        return self._refresh_batch(partition, token, issuer, table, batch, key)

    def _refresh_batch(
            self,
            partition: _Partition,
            token: str,
            issuer: Optional[CredentialIssuer],
            table: TableReference,
            batch: list,
            key: Tuple[str, str],
    ) -> Tuple[str, int]:
        table_key, file_id = key
        try:
            if issuer is None:
                raise CredentialUnavailable(f"No credential issuer available to refresh {table_key}")
            logger.info(f"[url-cache] refreshing {len(batch)} URLs for {table} ({table_key})")
            signed = issuer.sign(table, batch)
        except Exception as e:
            with self._cond:
                self._stats["refresh_failures"] += 1
                if partition.lease_token == token:
                    partition.lease_token = None
                    partition.lease_expires_at = 0.0
                partition.generation += 1
                partition.last_error = e
                self._cond.notify_all()
            logger.warning(f"[url-cache] refresh failed for {table_key}: {e}")
            if isinstance(e, CredentialUnavailable):
                raise
            raise CredentialUnavailable(f"Refreshing pre-signed URLs for {table_key} failed: {e}") from e

        with self._cond:
            self._stats["refreshes"] += 1
            self._store(table_key, signed or {}, requested=key)
            if partition.lease_token == token:
                partition.lease_token = None
                partition.lease_expires_at = 0.0
            partition.generation += 1
            partition.last_error = None
            self._cond.notify_all()
            entry = self._entries.get(key)

        if entry is None:
            raise CredentialUnavailable(f"Credential issuer did not sign file {file_id} of {table_key}")
        logger.debug(f"[url-cache] refreshed {file_id} -> {_short(entry.url)}")
        return entry.url, entry.expiration_ms

    # ---------------- maintenance ----------------

    @property
    def size(self) -> int:
        """Number of entries that have not passed their expiration."""
        now_ms = self._clock()
        with self._lock:
            return sum(1 for e in self._entries.values() if e.expiration_ms > now_ms)

    @property
    def partition_count(self) -> int:
        with self._lock:
            return len(self._partitions)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            out = dict(self._stats)
            out["entries"] = len(self._entries)
            out["partitions"] = len(self._partitions)
            return out

    def refresh(self) -> int:
        """
        Sweep the cache: evict expired entries of released batches and drop
        released batches with nothing left. Returns the number of evicted entries.
        """
        now_ms = self._clock()
        with self._lock:
            released = {k for k, p in self._partitions.items() if p.ref_count == 0 and p.lease_token is None}
            doomed = [
                key for key, entry in self._entries.items()
                if key[0] in released and entry.expiration_ms <= now_ms
            ]
            for key in doomed:
                del self._entries[key]
            live_keys = {k[0] for k in self._entries}
            for table_key in released - live_keys:
                del self._partitions[table_key]
            self._stats["evictions"] += len(doomed)
        if doomed:
            logger.debug(f"[url-cache] sweep evicted {len(doomed)} expired entries")
        return len(doomed)

    # ---------------- lifecycle ----------------

    def start(self) -> "PresignedUrlCache":
        """Start the background sweeper (idempotent)."""
        if self._sweep_thread is not None and self._sweep_thread.is_alive():
            return self
        self._sweep_stop.clear()
        self._sweep_thread = threading.Thread(target=self._sweep_loop, name="sharescan-url-cache-sweeper", daemon=True)
        self._sweep_thread.start()
        return self

    def _sweep_loop(self) -> None:
        while not self._sweep_stop.wait(self.sweep_interval_sec):
            try:
                self.refresh()
            except Exception as e:
                logger.warning(f"[url-cache] sweep error: {e}")

    def shutdown(self) -> None:
        """Stop the sweeper and drop every entry."""
        self._sweep_stop.set()
        if self._sweep_thread is not None and self._sweep_thread.is_alive():
            self._sweep_thread.join(timeout=1.0)
        self._sweep_thread = None
        with self._cond:
            self._entries.clear()
            self._partitions.clear()
            self._cond.notify_all()

    def __enter__(self) -> "PresignedUrlCache":
        return self.start()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.shutdown()
