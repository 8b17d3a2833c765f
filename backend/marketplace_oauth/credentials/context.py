"""
Per-invocation state for one unit of work against a marketplace account.

The refresh budget is explicit: ``has_refreshed`` is set by the refresher and
read before every refresh decision, so at most one refresh happens per
invocation no matter how many calls share the context.
"""

from dataclasses import dataclass, field
from typing import Optional

from marketplace_oauth.credentials.resolver import AppCredentials
from marketplace_oauth.models.marketplace_account import MarketplaceAccount
from marketplace_oauth.models.oauth_token import OAuthToken


@dataclass
class InvocationContext:
    """
    Mutable state threaded through one health check or API call sequence.

    SECURITY: access_token is excluded from repr.
    """
    account: MarketplaceAccount
    token: OAuthToken
    credentials: AppCredentials
    redirect_uri: str
    access_token: str = field(default="", repr=False)
    observed_version: int = 0
    has_refreshed: bool = False
    refresh_count: int = 0
    probe_retries: int = 0
    correlation_id: Optional[str] = None

    @classmethod
    def start(
        cls,
        account: MarketplaceAccount,
        token: OAuthToken,
        credentials: AppCredentials,
        redirect_uri: str,
        correlation_id: Optional[str] = None,
    ) -> "InvocationContext":
        return cls(
            account=account,
            token=token,
            credentials=credentials,
            redirect_uri=redirect_uri,
            access_token=token.access_token or "",
            observed_version=token.version or 0,
            correlation_id=correlation_id,
        )

    @property
    def can_refresh(self) -> bool:
        return not self.has_refreshed

    def record_refresh(self, access_token: str, version: int, called_provider: bool = True) -> None:
        """Consume the refresh budget and switch to the new generation."""
        self.access_token = access_token
        self.observed_version = version
        self.has_refreshed = True
        if called_provider:
            self.refresh_count += 1

    def record_failed_refresh(self) -> None:
        """A refused refresh also consumes the budget."""
        self.has_refreshed = True
        self.refresh_count += 1
