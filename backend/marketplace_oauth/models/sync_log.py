"""
SyncLog model - append-only outcome records for marketplace operations.

CRITICAL: rows are never updated or deleted by this service.
"""

import enum

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from marketplace_oauth.db_base import Base
from marketplace_oauth.models.base import generate_uuid, utcnow


class SyncOutcome(str, enum.Enum):
    """Outcome recorded for one operation attempt."""
    OK = "ok"
    RETRY = "retry"
    FAIL = "fail"


class SyncLog(Base):
    """One audit line for a marketplace operation."""

    __tablename__ = "sync_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    marketplace_account_id = Column(String(255), nullable=True, index=True)
    operation = Column(String(100), nullable=False)
    outcome = Column(String(20), nullable=False)
    http_status = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    log_metadata = Column(
        "metadata",
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
        default=dict,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_sync_logs_account_created", "marketplace_account_id", "created_at"),
    )
