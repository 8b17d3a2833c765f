"""AdminUser model - DB-backed administrator flag for callers."""

from sqlalchemy import Boolean, Column, String

from marketplace_oauth.db_base import Base
from marketplace_oauth.models.base import TimestampMixin


class AdminUser(Base, TimestampMixin):
    """
    Administrator flag keyed by the caller's identity subject.

    SECURITY: admin status is read from this table, never from JWT claims.
    """

    __tablename__ = "admin_users"

    id = Column(String(255), primary_key=True)
    is_admin = Column(Boolean, nullable=False, default=False)
