"""
Caller identity and administrator authorization.

SECURITY CRITICAL:
- Admin status is NEVER determined from JWT claims; only the ``sub`` claim
  is trusted, and is looked up in ``admin_users``
- Any lookup failure denies access

Usage:
    @router.get("/...")
    async def handler(caller_id: Optional[str] = Depends(get_caller_id)):
        if not AdminAuthorizer(db).is_admin(caller_id):
            ...
"""

import logging
from typing import Optional

import jwt
from fastapi import Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from marketplace_oauth.config.settings import MarketplaceSettings, get_settings
from marketplace_oauth.models.admin_user import AdminUser

logger = logging.getLogger(__name__)


class AdminAuthorizer:
    """DB-backed administrator check."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def is_admin(self, user_id: Optional[str]) -> bool:
        if not user_id:
            return False
        try:
            row = self.db.query(AdminUser).filter(AdminUser.id == user_id).first()
        except SQLAlchemyError:
            logger.warning(
                "Admin lookup failed; denying access",
                extra={"user_id": user_id},
                exc_info=True,
            )
            self.db.rollback()
            return False
        return bool(row is not None and row.is_admin)


def decode_caller_id(token: str, settings: MarketplaceSettings) -> Optional[str]:
    """
    Return the ``sub`` claim of a valid bearer JWT, or None.

    Expired, malformed and wrongly signed tokens all yield None.
    """
    if not settings.jwt_secret:
        logger.error("AUTH_JWT_SECRET not configured; rejecting caller token")
        return None
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError:
        logger.info("Caller token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.info("Caller token rejected", extra={"error_type": type(e).__name__})
        return None

    subject = payload.get("sub")
    return subject if isinstance(subject, str) and subject else None


def get_caller_id(
    request: Request,
    settings: MarketplaceSettings = Depends(get_settings),
) -> Optional[str]:
    """FastAPI dependency: caller subject from the Authorization header, if any."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return decode_caller_id(token.strip(), settings)
