"""
Token persistence for marketplace accounts.

The token row is a per-account singleton that is read and overwritten in
place. Writes that start a new token generation use compare-and-swap on
``oauth_tokens.version`` so that two writers can never both commit on top of
the same generation; in-process callers are additionally serialized by a
per-account asyncio lock (see RefreshLockRegistry).

SECURITY:
- Only ciphertext is written for refresh tokens
- Token values are NEVER logged
"""

import asyncio
import logging
import weakref
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from marketplace_oauth.credentials.migration import MigratedRecord
from marketplace_oauth.models.base import utcnow
from marketplace_oauth.models.marketplace_account import MarketplaceAccount
from marketplace_oauth.models.oauth_token import CONSUMED_ACCESS_TOKEN, OAuthToken

logger = logging.getLogger(__name__)


class RefreshLockRegistry:
    """
    Per-account asyncio locks for single-flight refresh.

    Held for the whole refresh-and-persist sequence of one account. Entries
    are weak: a lock disappears once no holder or waiter references it.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


default_refresh_locks = RefreshLockRegistry()


class TokenStore:
    """Reads accounts and tokens; writes migrations and new generations."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_active_account(self, account_id: str, provider: str) -> Optional[MarketplaceAccount]:
        return self.db.query(MarketplaceAccount).filter(
            MarketplaceAccount.id == account_id,
            MarketplaceAccount.provider == provider,
            MarketplaceAccount.is_active == True,  # noqa: E712
        ).first()

    def get_current_token(self, account_id: str) -> Optional[OAuthToken]:
        """
        Most recently updated token row for the account.

        Rows marked consumed are skipped when a live row exists, but are
        still returned when they are the only rows.
        """
        base = self.db.query(OAuthToken).filter(
            OAuthToken.marketplace_account_id == account_id,
        )
        live = base.filter(
            or_(
                OAuthToken.access_token.is_(None),
                OAuthToken.access_token != CONSUMED_ACCESS_TOKEN,
            )
        ).order_by(OAuthToken.updated_at.desc()).first()
        if live is not None:
            return live
        return base.order_by(OAuthToken.updated_at.desc()).first()

    def reload(self, token: OAuthToken) -> OAuthToken:
        """Re-read a token row from the database."""
        self.db.refresh(token)
        return token

    def apply_migration(self, token: OAuthToken, migrated: MigratedRecord) -> bool:
        """
        Persist a migrated refresh token encoding.

        Only applies while the row is still in the legacy layout and at the
        same generation, so a concurrent writer is never overwritten.

        Returns:
            True if the row was updated
        """
        stmt = (
            update(OAuthToken)
            .where(
                OAuthToken.id == token.id,
                OAuthToken.version == token.version,
                or_(OAuthToken.encryption_iv.is_(None), OAuthToken.encryption_iv == ""),
            )
            .values(
                refresh_token_encrypted=migrated.refresh_token_encrypted,
                encryption_iv=migrated.encryption_iv,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        self.reload(token)

        applied = result.rowcount == 1
        logger.info(
            "Legacy refresh token encoding migrated" if applied else "Legacy migration skipped by concurrent writer",
            extra={
                "token_id": token.id,
                "marketplace_account_id": token.marketplace_account_id,
            },
        )
        return applied

    def commit_generation(
        self,
        token: OAuthToken,
        expected_version: int,
        access_token: str,
        expires_at: datetime,
        refresh_token_encrypted: Optional[str] = None,
        encryption_iv: Optional[str] = None,
    ) -> bool:
        """
        Compare-and-swap commit of a new token generation.

        Access token and expiry are always written; the refresh token only
        when the provider issued a new one.

        Returns:
            True if committed, False if another writer already advanced the row
        """
        values = {
            "access_token": access_token,
            "expires_at": expires_at,
            "version": OAuthToken.version + 1,
            "updated_at": utcnow(),
        }
        if refresh_token_encrypted and encryption_iv:
            values["refresh_token_encrypted"] = refresh_token_encrypted
            values["encryption_iv"] = encryption_iv

        stmt = (
            update(OAuthToken)
            .where(OAuthToken.id == token.id, OAuthToken.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        self.reload(token)

        committed = result.rowcount == 1
        if not committed:
            logger.warning(
                "Token generation commit lost to a concurrent writer",
                extra={
                    "token_id": token.id,
                    "marketplace_account_id": token.marketplace_account_id,
                    "expected_version": expected_version,
                    "current_version": token.version,
                },
            )
        return committed
