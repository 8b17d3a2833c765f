"""
Runtime configuration for the marketplace OAuth service.

Settings are read from the environment ONCE (``MarketplaceSettings.from_env``)
and the resulting immutable object is passed by reference to the services
that need it. Crypto and credential code never reads the environment.

Environment variables:
- MARKETPLACE_MASTER_KEY: base64 encoded 256-bit key for token encryption
- EBAY_RUNAME_SANDBOX / EBAY_RUNAME_PROD: redirect identifiers per environment
- EBAY_CLIENT_ID / EBAY_CLIENT_SECRET: fallback plaintext app credentials
- EBAY_DEFAULT_SCOPES: optional override of the default refresh scope
- MARKETPLACE_HTTP_TIMEOUT_SECONDS: timeout for every outbound call
- AUTH_JWT_SECRET / AUTH_JWT_ALGORITHM: caller identity tokens
- DATABASE_URL: SQLAlchemy database URL
"""

import os
from functools import lru_cache
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from marketplace_oauth.config.providers import DEFAULT_SCOPES, EBAY_PROVIDER

DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0


class FallbackClientCredentials(BaseModel):
    """Operator supplied plaintext OAuth client pair."""
    model_config = ConfigDict(frozen=True)

    client_id: str = ""
    client_secret: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.client_id) and bool(self.client_secret)


class MarketplaceSettings(BaseModel):
    """Immutable service configuration."""
    model_config = ConfigDict(frozen=True)

    master_key: Optional[str] = None
    redirect_identifiers: Dict[str, str] = Field(default_factory=dict)
    fallback_credentials: Dict[str, FallbackClientCredentials] = Field(default_factory=dict)
    default_scopes: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_SCOPES))
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    database_url: str = "sqlite:///./marketplace_oauth.db"

    @classmethod
    def from_env(cls) -> "MarketplaceSettings":
        """Build settings from process environment variables."""
        default_scopes = dict(DEFAULT_SCOPES)
        scope_override = os.getenv("EBAY_DEFAULT_SCOPES", "").strip()
        if scope_override:
            default_scopes[EBAY_PROVIDER] = scope_override

        return cls(
            master_key=os.getenv("MARKETPLACE_MASTER_KEY") or None,
            redirect_identifiers={
                "sandbox": os.getenv("EBAY_RUNAME_SANDBOX", ""),
                "production": os.getenv("EBAY_RUNAME_PROD", ""),
            },
            fallback_credentials={
                EBAY_PROVIDER: FallbackClientCredentials(
                    client_id=os.getenv("EBAY_CLIENT_ID", ""),
                    client_secret=os.getenv("EBAY_CLIENT_SECRET", ""),
                ),
            },
            default_scopes=default_scopes,
            http_timeout_seconds=float(
                os.getenv("MARKETPLACE_HTTP_TIMEOUT_SECONDS", str(DEFAULT_HTTP_TIMEOUT_SECONDS))
            ),
            jwt_secret=os.getenv("AUTH_JWT_SECRET") or None,
            jwt_algorithm=os.getenv("AUTH_JWT_ALGORITHM", "HS256"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./marketplace_oauth.db"),
        )

    def redirect_identifier(self, environment: str) -> Optional[str]:
        """RUName for an environment, or None when unset."""
        value = self.redirect_identifiers.get(environment, "")
        return value.strip() or None

    def fallback_for(self, provider: str) -> FallbackClientCredentials:
        return self.fallback_credentials.get(provider) or FallbackClientCredentials()

    def scope_for(self, provider: str, stored_scope: Optional[str]) -> str:
        """Stored scope when present, otherwise the provider default."""
        scope = (stored_scope or "").strip()
        if scope:
            return scope
        return self.default_scopes.get(provider, "")


@lru_cache
def get_settings() -> MarketplaceSettings:
    """Process-wide settings instance."""
    return MarketplaceSettings.from_env()
