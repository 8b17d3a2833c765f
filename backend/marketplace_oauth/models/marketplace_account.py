"""
MarketplaceAccount model - one seller connection to one external provider.

Owned by the business layer. The token lifecycle code only reads active
accounts; it never creates or deactivates them.
"""

import enum

from sqlalchemy import Boolean, Column, Index, String

from marketplace_oauth.db_base import Base
from marketplace_oauth.models.base import TimestampMixin, generate_uuid


class MarketplaceEnvironment(str, enum.Enum):
    """Provider environment an account is bound to."""
    SANDBOX = "sandbox"
    PRODUCTION = "production"


class MarketplaceAccount(Base, TimestampMixin):
    """Connection of a seller to a marketplace provider in one environment."""

    __tablename__ = "marketplace_accounts"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    provider = Column(
        String(50),
        nullable=False,
        comment="Marketplace provider key (ebay, ...)",
    )
    environment = Column(
        String(20),
        nullable=False,
        default=MarketplaceEnvironment.SANDBOX.value,
        comment="sandbox or production",
    )
    display_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_marketplace_accounts_provider_env", "provider", "environment"),
    )

    @property
    def resolved_environment(self) -> MarketplaceEnvironment:
        """Environment as an enum; unknown or empty values fall back to sandbox."""
        try:
            return MarketplaceEnvironment(self.environment or MarketplaceEnvironment.SANDBOX.value)
        except ValueError:
            return MarketplaceEnvironment.SANDBOX

    def __repr__(self) -> str:
        return (
            f"<MarketplaceAccount(id={self.id}, provider={self.provider}, "
            f"environment={self.environment}, is_active={self.is_active})>"
        )
