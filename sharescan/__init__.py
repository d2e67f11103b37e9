# sharescan/__init__.py
#
# Client-side scan resolution and pre-signed URL caching for shared tables.

from sharescan.cache import CachePopulation, PresignedUrlCache  # noqa: F401
from sharescan.data_classes import (  # noqa: F401
    ChangeFiles,
    FileAction,
    FileReference,
    ScanParameters,
    TableMetadata,
    TableReference,
    TimestampAsOf,
    VersionAsOf,
    VersionRange,
)
from sharescan.errors import (  # noqa: F401
    CredentialUnavailable,
    RefreshTimeout,
    SchemaMismatchError,
    SharescanError,
    ValidationError,
)
from sharescan.fingerprint import range_fingerprint, scan_fingerprint, snapshot_fingerprint  # noqa: F401
from sharescan.profile import parse_profile  # noqa: F401
from sharescan.scan_resolver import ResolvedScan, ScanResolver  # noqa: F401

__version__ = "0.1.0"
