"""
ProviderAppCredential model - per provider/environment OAuth client identity.

Both client_id and client_secret are encrypted with the same IV, matching the
format written by the admin settings screen.
"""

from sqlalchemy import Column, String, Text, UniqueConstraint

from marketplace_oauth.db_base import Base
from marketplace_oauth.models.base import TimestampMixin, generate_uuid


class ProviderAppCredential(Base, TimestampMixin):
    """Encrypted OAuth application credentials."""

    __tablename__ = "provider_app_credentials"

    id = Column(String(255), primary_key=True, default=generate_uuid)
    provider = Column(String(50), nullable=False)
    environment = Column(String(20), nullable=False)
    client_id_encrypted = Column(Text, nullable=True)
    client_secret_encrypted = Column(Text, nullable=True)
    encryption_iv = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "environment", name="uq_provider_app_credentials_provider_env"),
    )

    def __repr__(self) -> str:
        return f"<ProviderAppCredential(provider={self.provider}, environment={self.environment})>"
