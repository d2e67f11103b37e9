# sharescan/profile/credential_profile.py

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Union

from sharescan.config.defaults import logger
from sharescan.data_classes import TableReference
from sharescan.errors import ValidationError

BEARER_TOKEN = "bearer_token"
OAUTH_CLIENT_CREDENTIALS = "oauth_client_credentials"

CURRENT_VERSION = 2

_FRACTION = re.compile(r"\.(\d+)")

# profile type -> (required version, mandatory fields in report order)
_PROFILE_RULES: Dict[str, Tuple[int, Tuple[str, ...]]] = {
    BEARER_TOKEN: (1, ("endpoint", "bearerToken")),
    OAUTH_CLIENT_CREDENTIALS: (2, ("endpoint", "tokenEndpoint", "clientId", "clientSecret")),
}


@dataclass(frozen=True)
class BearerTokenProfile:
    share_credentials_version: Optional[int]
    endpoint: str
    bearer_token: str
    expiration_time: Optional[str] = None

    profile_type: ClassVar[str] = BEARER_TOKEN

    def __repr__(self) -> str:
        return (
            f"BearerTokenProfile(share_credentials_version={self.share_credentials_version}, "
            f"endpoint={self.endpoint!r}, bearer_token='***', expiration_time={self.expiration_time!r})"
        )


@dataclass(frozen=True)
class OAuthClientCredentialsProfile:
    share_credentials_version: Optional[int]
    endpoint: str
    token_endpoint: str
    client_id: str
    client_secret: str
    scope: Optional[str] = None

    profile_type: ClassVar[str] = OAUTH_CLIENT_CREDENTIALS

    def __repr__(self) -> str:
        return (
            f"OAuthClientCredentialsProfile(share_credentials_version={self.share_credentials_version}, "
            f"endpoint={self.endpoint!r}, token_endpoint={self.token_endpoint!r}, "
            f"client_id={self.client_id!r}, client_secret='***', scope={self.scope!r})"
        )


CredentialProfile = Union[BearerTokenProfile, OAuthClientCredentialsProfile]


def _missing(field_name: str) -> ValidationError:
    return ValidationError(f"Cannot find the '{field_name}' field in the profile file")


def parse_profile(raw: Union[str, bytes, Mapping[str, Any]]) -> CredentialProfile:
    """
    Parse and validate a credential profile.

    Accepts the profile file's JSON text or an already-decoded mapping.
    Unknown fields are ignored. The first missing mandatory field is reported.

    Raises:
        ValidationError: the profile is malformed, incomplete, or too new.
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Profile file is not valid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, Mapping):
        raise ValidationError("Profile file must contain a JSON object")

    version = data.get("shareCredentialsVersion")
    if version is None:
        raise _missing("shareCredentialsVersion")
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValidationError(f"'shareCredentialsVersion' must be an integer, got: {version!r}")
    if version > CURRENT_VERSION:
        raise ValidationError(
            f"'shareCredentialsVersion' in the profile is {version} which is too new. "
            f"The current release supports version {CURRENT_VERSION} and below. "
            f"Please upgrade to a newer release."
        )

    profile_type = data.get("type") or BEARER_TOKEN
    rules = _PROFILE_RULES.get(profile_type)
    if rules is None:
        raise ValidationError(f"Unsupported profile type: {profile_type}")

    required_version, mandatory = rules
    if version != required_version:
        raise ValidationError(f"{profile_type} only supports version {required_version}")

    for field_name in mandatory:
        if data.get(field_name) is None:
            raise _missing(field_name)

    if profile_type == BEARER_TOKEN:
        profile: CredentialProfile = BearerTokenProfile(
            share_credentials_version=version,
            endpoint=str(data["endpoint"]),
            bearer_token=str(data["bearerToken"]),
            expiration_time=data.get("expirationTime"),
        )
    else:
        profile = OAuthClientCredentialsProfile(
            share_credentials_version=version,
            endpoint=str(data["endpoint"]),
            token_endpoint=str(data["tokenEndpoint"]),
            client_id=str(data["clientId"]),
            client_secret=str(data["clientSecret"]),
            scope=data.get("scope"),
        )

    logger.debug(f"[profile] parsed {profile.profile_type} profile for endpoint {profile.endpoint}")
    return profile


def read_profile_file(path: str) -> CredentialProfile:
    """Read a profile from a local file."""
    expanded = os.path.expanduser(path)
    with open(expanded, "r", encoding="utf-8") as f:
        return parse_profile(f.read())


def auth_headers(profile: CredentialProfile, access_token: Optional[str] = None) -> Dict[str, str]:
    """
    HTTP headers authenticating requests made with `profile`.

    OAuth profiles need the access token already exchanged at the token
    endpoint; the exchange itself belongs to the transport.
    """
    if isinstance(profile, BearerTokenProfile):
        return {"Authorization": f"Bearer {profile.bearer_token}"}
    if isinstance(profile, OAuthClientCredentialsProfile):
        if not access_token:
            raise ValidationError(
                f"{OAUTH_CLIENT_CREDENTIALS} profile requires an access token from {profile.token_endpoint}"
            )
        return {"Authorization": f"Bearer {access_token}"}
    raise TypeError(f"Unknown profile type: {type(profile).__name__}")


def parse_expiration_time(value: str) -> datetime:
    """Parse an ISO-8601 expirationTime such as '2021-11-12T00:12:29.0Z'."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat on 3.10 only takes 3 or 6 fractional digits
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_expired(profile: CredentialProfile, now: Optional[datetime] = None) -> bool:
    """True when a bearer token's expirationTime has passed. OAuth profiles never expire here."""
    if isinstance(profile, BearerTokenProfile):
        if not profile.expiration_time:
            return False
        try:
            expires = parse_expiration_time(profile.expiration_time)
        except ValueError:
            logger.warning(f"[profile] unparseable expirationTime: {profile.expiration_time!r}")
            return False
        return (now or datetime.now(timezone.utc)) >= expires
    if isinstance(profile, OAuthClientCredentialsProfile):
        return False
    raise TypeError(f"Unknown profile type: {type(profile).__name__}")


def split_table_path(path: str) -> Tuple[str, TableReference]:
    """
    Split '<profile file>#<share>.<schema>.<table>' into its two parts.
    """
    profile_file, sep, table = str(path).rpartition("#")
    if not sep or not profile_file or not table:
        raise ValueError(
            f"Invalid table path: {path}. The expected format is '<profile-file-path>#<share>.<schema>.<table>'"
        )
    try:
        return profile_file, TableReference.from_string(table)
    except ValueError as e:
        raise ValueError(
            f"Invalid table path: {path}. The expected format is '<profile-file-path>#<share>.<schema>.<table>'"
        ) from e
