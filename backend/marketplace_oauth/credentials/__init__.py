"""
Marketplace OAuth credential handling.

Encryption at rest, legacy encoding migration, client credential
resolution, token refresh and redaction of secrets from logs.
"""

from marketplace_oauth.credentials.cipher import CryptoError, TokenCipher
from marketplace_oauth.credentials.context import InvocationContext
from marketplace_oauth.credentials.migration import (
    LegacyMigrator,
    MigratedRecord,
    MigrationSkipped,
    SkipReason,
)
from marketplace_oauth.credentials.resolver import AppCredentials, CredentialResolver
from marketplace_oauth.credentials.store import RefreshLockRegistry, TokenStore
from marketplace_oauth.credentials.refresh import NewTokenSet, RefreshFailure, TokenRefresher
from marketplace_oauth.credentials.access import AuthorizedRequester
from marketplace_oauth.credentials.redaction import (
    CredentialLoggingFilter,
    redact_credential_data,
    setup_credential_logging,
)

__all__ = [
    "CryptoError",
    "TokenCipher",
    "InvocationContext",
    "LegacyMigrator",
    "MigratedRecord",
    "MigrationSkipped",
    "SkipReason",
    "AppCredentials",
    "CredentialResolver",
    "RefreshLockRegistry",
    "TokenStore",
    "NewTokenSet",
    "RefreshFailure",
    "TokenRefresher",
    "AuthorizedRequester",
    "CredentialLoggingFilter",
    "redact_credential_data",
    "setup_credential_logging",
]
