"""Configuration module for the marketplace OAuth service."""

from marketplace_oauth.config.providers import (
    DEFAULT_SCOPES,
    EBAY_PROVIDER,
    ProviderEndpoints,
    get_provider_endpoints,
)
from marketplace_oauth.config.settings import (
    FallbackClientCredentials,
    MarketplaceSettings,
    get_settings,
)

__all__ = [
    "DEFAULT_SCOPES",
    "EBAY_PROVIDER",
    "ProviderEndpoints",
    "get_provider_endpoints",
    "FallbackClientCredentials",
    "MarketplaceSettings",
    "get_settings",
]
