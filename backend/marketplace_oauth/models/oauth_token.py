"""
OAuthToken model - mutable credential state for one marketplace account.

SECURITY:
- refresh_token_encrypted is AES-256-GCM ciphertext (base64 of ciphertext||tag)
- encryption_iv holds the base64 IV; empty for the legacy JSON encoding
- access_token is short-lived and stored as issued by the provider
- Token values are NEVER included in repr or logs

One current row per account: readers take the most recently updated row and
writers overwrite it in place. ``version`` is bumped on every new token
generation and is used for compare-and-swap commits.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from marketplace_oauth.db_base import Base
from marketplace_oauth.models.base import TimestampMixin, as_utc, generate_uuid

# Marker written by other flows for rows that must no longer be used.
CONSUMED_ACCESS_TOKEN = "consumed"


class OAuthToken(Base, TimestampMixin):
    """Stored OAuth token generation for a marketplace account."""

    __tablename__ = "oauth_tokens"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    marketplace_account_id = Column(
        String(255),
        ForeignKey("marketplace_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )

    access_token = Column(
        Text,
        nullable=True,
        comment="Short-lived access token - NEVER log",
    )
    token_type = Column(String(50), nullable=True, default="Bearer")
    expires_at = Column(DateTime(timezone=True), nullable=True)

    refresh_token_encrypted = Column(
        Text,
        nullable=True,
        comment="Encrypted refresh token (current or legacy encoding) - NEVER log",
    )
    encryption_iv = Column(
        Text,
        nullable=True,
        comment="Base64 IV for refresh_token_encrypted; empty for legacy rows",
    )
    scope = Column(Text, nullable=True, comment="Space separated granted scopes")

    version = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Token generation counter used for compare-and-swap",
    )

    __table_args__ = (
        Index("ix_oauth_tokens_account_updated", "marketplace_account_id", "updated_at"),
    )

    def __repr__(self) -> str:
        """Safe repr - NEVER include token values."""
        return (
            f"<OAuthToken(id={self.id}, "
            f"marketplace_account_id={self.marketplace_account_id}, "
            f"expires_at={self.expires_at}, version={self.version})>"
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """A token without an expiry is treated as expired."""
        expires_at = as_utc(self.expires_at)
        if expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now >= expires_at

    @property
    def has_refresh_token(self) -> bool:
        """True when a refresh token in the current encoding is stored."""
        return bool(self.refresh_token_encrypted) and bool(self.encryption_iv)

    @property
    def normalized_scope(self) -> str:
        return (self.scope or "").strip()
