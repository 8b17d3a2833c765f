"""
Database models for marketplace accounts, OAuth tokens and sync logs.
"""

from marketplace_oauth.models.base import TimestampMixin, generate_uuid
from marketplace_oauth.models.admin_user import AdminUser
from marketplace_oauth.models.marketplace_account import (
    MarketplaceAccount,
    MarketplaceEnvironment,
)
from marketplace_oauth.models.oauth_token import CONSUMED_ACCESS_TOKEN, OAuthToken
from marketplace_oauth.models.provider_app_credential import ProviderAppCredential
from marketplace_oauth.models.sync_log import SyncLog, SyncOutcome

__all__ = [
    "TimestampMixin",
    "generate_uuid",
    "AdminUser",
    "MarketplaceAccount",
    "MarketplaceEnvironment",
    "OAuthToken",
    "CONSUMED_ACCESS_TOKEN",
    "ProviderAppCredential",
    "SyncLog",
    "SyncOutcome",
]
