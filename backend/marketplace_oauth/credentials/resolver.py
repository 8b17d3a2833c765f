"""
OAuth client credential resolution.

Resolution order for (provider, environment):
1. Decrypt the provider_app_credentials row, if one exists
2. On absence OR decryption failure, use the operator supplied plaintext pair
3. Fail with CredentialsMissing if neither yields a non-empty id and secret

Both sources are legitimate configurations, so an unset or broken stored
row is logged and skipped rather than treated as fatal.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from marketplace_oauth.config.settings import MarketplaceSettings
from marketplace_oauth.credentials.cipher import CryptoError, TokenCipher
from marketplace_oauth.models.provider_app_credential import ProviderAppCredential
from marketplace_oauth.platform.errors import CredentialsMissing

logger = logging.getLogger(__name__)

SOURCE_STORED = "stored"
SOURCE_FALLBACK = "fallback"


@dataclass(frozen=True)
class AppCredentials:
    """
    Resolved OAuth client identity.

    SECURITY: repr hides the secret.
    """
    client_id: str
    client_secret: str
    source: str

    def __repr__(self) -> str:
        return f"AppCredentials(client_id={self.client_id!r}, source={self.source!r})"


class CredentialResolver:
    """Resolves client id/secret for a provider and environment."""

    def __init__(
        self,
        db_session: Session,
        cipher: TokenCipher,
        settings: MarketplaceSettings,
    ):
        self.db = db_session
        self.cipher = cipher
        self.settings = settings

    def resolve(self, provider: str, environment: str) -> AppCredentials:
        """
        Raises:
            CredentialsMissing: If no source yields a complete pair
        """
        stored = self._from_store(provider, environment)
        if stored is not None:
            return stored

        fallback = self.settings.fallback_for(provider)
        if fallback.is_complete:
            return AppCredentials(
                client_id=fallback.client_id,
                client_secret=fallback.client_secret,
                source=SOURCE_FALLBACK,
            )

        logger.error(
            "No OAuth client credentials available",
            extra={"provider": provider, "environment": environment},
        )
        raise CredentialsMissing()

    def _from_store(self, provider: str, environment: str) -> Optional[AppCredentials]:
        row = self.db.query(ProviderAppCredential).filter(
            ProviderAppCredential.provider == provider,
            ProviderAppCredential.environment == environment,
        ).first()
        if row is None:
            return None

        try:
            client_id = self.cipher.decrypt_from_storage(row.client_id_encrypted, row.encryption_iv)
            client_secret = self.cipher.decrypt_from_storage(row.client_secret_encrypted, row.encryption_iv)
        except CryptoError as e:
            logger.warning(
                "Stored app credentials could not be decrypted; using fallback",
                extra={
                    "provider": provider,
                    "environment": environment,
                    "error_type": type(e).__name__,
                },
            )
            return None

        if not client_id or not client_secret:
            return None
        return AppCredentials(client_id=client_id, client_secret=client_secret, source=SOURCE_STORED)
