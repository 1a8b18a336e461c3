"""OAuth2 authentication for csync accounts."""

from csync.auth.google_auth import (
    AuthenticationError,
    CredentialProvider,
    GoogleAuth,
    LocalServerProvider,
    ManualProvider,
)

__all__ = [
    "AuthenticationError",
    "CredentialProvider",
    "GoogleAuth",
    "LocalServerProvider",
    "ManualProvider",
]
