# sharescan/cache/population.py

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

from sharescan.cache.presigned_url_cache import PresignedUrlCache
from sharescan.clients import CredentialIssuer, SignedUrls
from sharescan.config.defaults import logger
from sharescan.data_classes import FileAction, TableReference
from sharescan.errors import CredentialUnavailable


class CachePopulation(Enum):
    EAGER = "eager"
    LAZY = "lazy"

    @classmethod
    def from_str(cls, value: str | None, default: Optional["CachePopulation"] = None) -> "CachePopulation":
        if not value:
            return default or cls.EAGER
        v = str(value).strip().lower()
        if v == "eager":
            return cls.EAGER
        if v == "lazy":
            return cls.LAZY
        return default or cls.EAGER


class PopulationPolicy:
    """How a resolved batch of files gets its URLs into the cache."""

    kind: CachePopulation

    def populate(
            self,
            cache: PresignedUrlCache,
            table_key: str,
            table: TableReference,
            actions: Sequence[FileAction],
            issuer: Optional[CredentialIssuer],
    ) -> None:
        raise NotImplementedError


class EagerPopulation(PopulationPolicy):
    """
    Fill the batch during resolution.

    Files whose URLs are already cached and fresh under this table_key are
    left alone. For the rest, URLs that came back with the listing are used
    as-is and whatever is still missing is signed in one call.
    """

    kind = CachePopulation.EAGER

    def populate(self, cache, table_key, table, actions, issuer):
        file_ids = [a.id for a in actions]
        cached = cache.fresh_entries(table_key, file_ids)
        missing = [f for f in dict.fromkeys(file_ids) if f not in cached]

        entries: SignedUrls = {
            a.id: (a.url, int(a.expiration_timestamp))
            for a in actions
            if a.id in missing and a.url and a.expiration_timestamp is not None
        }
        to_sign = [f for f in missing if f not in entries]
        if to_sign:
            if issuer is None:
                raise CredentialUnavailable(f"No credential issuer available to sign {len(to_sign)} files of {table}")
            try:
                entries.update(issuer.sign(table, to_sign))
            except CredentialUnavailable:
                raise
            except Exception as e:
                raise CredentialUnavailable(f"Signing {len(to_sign)} files of {table} failed: {e}") from e

        cache.register(table_key, table, file_ids, entries=entries, refresher=issuer)
        logger.debug(
            f"[url-cache] eager batch {table_key}: {len(cached)} cached, {len(entries)} new URLs "
            f"({len(to_sign)} signed)"
        )


class LazyPopulation(PopulationPolicy):
    """Register the batch only; URLs are signed on the first read."""

    kind = CachePopulation.LAZY

    def populate(self, cache, table_key, table, actions, issuer):
        cache.register(table_key, table, [a.id for a in actions], refresher=issuer)
        logger.debug(f"[url-cache] lazy batch {table_key}: {len(actions)} files")


def population_policy(kind: CachePopulation | str) -> PopulationPolicy:
    if not isinstance(kind, CachePopulation):
        kind = CachePopulation.from_str(kind)
    if kind == CachePopulation.LAZY:
        return LazyPopulation()
    return EagerPopulation()
