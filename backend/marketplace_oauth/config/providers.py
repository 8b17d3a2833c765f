"""
Marketplace provider endpoint tables.

Endpoints are keyed by (provider, environment). Only eBay is configured;
adding a provider means adding rows here and a default scope set.
"""

from dataclasses import dataclass
from typing import Dict, Tuple

EBAY_PROVIDER = "ebay"


@dataclass(frozen=True)
class ProviderEndpoints:
    """OAuth token endpoint plus the two health-check endpoints."""
    token_url: str
    identity_url: str
    privileges_url: str


PROVIDER_ENDPOINTS: Dict[Tuple[str, str], ProviderEndpoints] = {
    (EBAY_PROVIDER, "sandbox"): ProviderEndpoints(
        token_url="https://api.sandbox.ebay.com/identity/v1/oauth2/token",
        identity_url="https://apiz.sandbox.ebay.com/commerce/identity/v1/user/",
        privileges_url="https://api.sandbox.ebay.com/sell/account/v1/privilege",
    ),
    (EBAY_PROVIDER, "production"): ProviderEndpoints(
        token_url="https://api.ebay.com/identity/v1/oauth2/token",
        identity_url="https://apiz.ebay.com/commerce/identity/v1/user/",
        privileges_url="https://api.ebay.com/sell/account/v1/privilege",
    ),
}

# Requested on refresh when the stored scope is blank
DEFAULT_SCOPES: Dict[str, str] = {
    EBAY_PROVIDER: " ".join([
        "https://api.ebay.com/oauth/api_scope",
        "https://api.ebay.com/oauth/api_scope/sell.account",
        "https://api.ebay.com/oauth/api_scope/sell.inventory",
        "https://api.ebay.com/oauth/api_scope/sell.fulfillment",
    ]),
}


class UnknownProviderError(KeyError):
    """Raised when no endpoints are configured for a provider/environment."""


def get_provider_endpoints(provider: str, environment: str) -> ProviderEndpoints:
    try:
        return PROVIDER_ENDPOINTS[(provider, environment)]
    except KeyError:
        raise UnknownProviderError(f"No endpoints configured for {provider}/{environment}")
