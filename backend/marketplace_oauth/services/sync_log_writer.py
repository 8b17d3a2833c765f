"""
Append-only audit records for marketplace operations (sync_logs).

CRITICAL: writes are best effort. A failed insert is rolled back and sent to
the ``sync_logs.fallback`` logger; it never changes the result of the
operation being audited.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy.orm import Session

from marketplace_oauth.config.providers import EBAY_PROVIDER
from marketplace_oauth.credentials.redaction import redact_credential_value
from marketplace_oauth.models.sync_log import SyncLog, SyncOutcome

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("sync_logs.fallback")

OAUTH_TEST_OPERATION = "oauth_test"


class AuditLogger:
    """Writes one sync_logs row per operation attempt."""

    def __init__(self, db_session: Session, provider: str = EBAY_PROVIDER):
        self.db = db_session
        self.provider = provider

    def record(
        self,
        account_id: Optional[str],
        operation: str,
        outcome: Union[SyncOutcome, str],
        http_status: Optional[int],
        message: Optional[str] = None,
        retry_count: int = 0,
        refresh_count: int = 0,
        correlation_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> Optional[SyncLog]:
        """
        Append an audit record.

        ``details`` are merged into the metadata; keys with a None value are
        left out.

        Returns:
            The created SyncLog, or None if the fallback logger was used
        """
        outcome_value = outcome.value if isinstance(outcome, SyncOutcome) else outcome
        metadata = {
            "provider": self.provider,
            "retry_count": retry_count,
            "refresh_count": refresh_count,
        }
        if correlation_id:
            metadata["correlation_id"] = correlation_id
        for key, value in (details or {}).items():
            if value is not None:
                metadata[key] = value

        entry = SyncLog(
            id=str(uuid.uuid4()),
            marketplace_account_id=account_id,
            operation=operation,
            outcome=outcome_value,
            http_status=http_status,
            error_message=redact_credential_value(message) if message else None,
            log_metadata=metadata,
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except Exception as e:
            try:
                self.db.rollback()
            except Exception:
                logger.exception("Rollback after failed audit write also failed")
            self._write_fallback(entry, metadata, str(e))
            return None

        logger.info(
            "Sync log recorded",
            extra={
                "sync_log_id": entry.id,
                "marketplace_account_id": account_id,
                "operation": operation,
                "outcome": outcome_value,
                "http_status": http_status,
                "correlation_id": correlation_id,
            },
        )
        return entry

    @staticmethod
    def _write_fallback(entry: SyncLog, metadata: dict, error_reason: str) -> None:
        fallback_entry = {
            "sync_log_id": entry.id,
            "marketplace_account_id": entry.marketplace_account_id,
            "operation": entry.operation,
            "outcome": entry.outcome,
            "http_status": entry.http_status,
            "error_message": entry.error_message,
            "metadata": metadata,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "fallback_reason": redact_credential_value(error_reason),
        }
        fallback_logger.error(
            "Sync log fallback",
            extra={"sync_log_entry": json.dumps(fallback_entry)},
        )
