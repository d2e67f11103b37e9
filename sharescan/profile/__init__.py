# sharescan/profile/__init__.py
#
# Credential profiles: bearer token (version 1) and OAuth client credentials (version 2).

from sharescan.profile.credential_profile import (  # noqa: F401
    BEARER_TOKEN,
    OAUTH_CLIENT_CREDENTIALS,
    BearerTokenProfile,
    CredentialProfile,
    OAuthClientCredentialsProfile,
    auth_headers,
    is_expired,
    parse_profile,
    read_profile_file,
    split_table_path,
)
