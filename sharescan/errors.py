# sharescan/errors.py

from __future__ import annotations


class SharescanError(Exception):
    """Base class for errors raised by sharescan."""


class ValidationError(SharescanError, ValueError):
    """A credential profile is malformed or incomplete. Never retried."""


class SchemaMismatchError(SharescanError):
    """The remote table schema or partition columns changed since the scan was planned."""

    def __init__(self, detail: str = ""):
        message = (
            "The schema or partition columns of your table has changed since your\n"
            "DataFrame was created. Please redefine your DataFrame"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.detail = detail


class CredentialUnavailable(SharescanError):
    """A pre-signed URL could not be obtained for a file read."""


class RefreshTimeout(CredentialUnavailable):
    """Another thread's refresh of the same batch did not finish in time."""


class UnknownCacheKey(CredentialUnavailable):
    """The cache has no batch registered for the requested table key."""
