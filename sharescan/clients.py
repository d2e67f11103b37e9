# sharescan/clients.py
"""
Capabilities sharescan consumes from the protocol client.

The HTTP transport, retries and URL signing live behind these interfaces.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Protocol, Tuple, Union, runtime_checkable

from sharescan.data_classes import (
    ChangeFiles,
    FileAction,
    TableMetadata,
    TableReference,
    TimestampAsOf,
    VersionAsOf,
)

# file id -> (url, expiration epoch millis)
SignedUrls = Dict[str, Tuple[str, int]]


@runtime_checkable
class MetadataClient(Protocol):

    def get_metadata(
            self,
            table: TableReference,
            version: Optional[Union[VersionAsOf, TimestampAsOf]] = None,
    ) -> TableMetadata:
        ...

    def list_files(
            self,
            table: TableReference,
            predicate_hints: Optional[str],
            limit: Optional[int],
            version: Optional[Union[VersionAsOf, TimestampAsOf]] = None,
    ) -> List[FileAction]:
        ...

    def list_change_files(
            self,
            table: TableReference,
            start_version: int,
            end_version: Optional[int],
            predicate_hints: Optional[str] = None,
    ) -> ChangeFiles:
        ...


@runtime_checkable
class CredentialIssuer(Protocol):

    def sign(self, table: TableReference, file_ids: Iterable[str]) -> SignedUrls:
        """Return a fresh pre-signed URL and its expiry for each requested file id."""
        ...
