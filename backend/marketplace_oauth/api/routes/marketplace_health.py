"""
Marketplace connection health check API.

GET /api/marketplaces/ebay/health-check?account_id=<id>

Admin only. Verifies the stored OAuth grant of one eBay account by calling
the identity and privileges endpoints, refreshing the access token once if
needed.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from marketplace_oauth.config.settings import MarketplaceSettings, get_settings
from marketplace_oauth.database.session import get_db_session
from marketplace_oauth.platform.admin import get_caller_id
from marketplace_oauth.platform.errors import get_correlation_id
from marketplace_oauth.services.connection_health_service import HealthCheckOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/marketplaces", tags=["marketplaces"])


@router.get("/ebay/health-check")
async def ebay_health_check(
    request: Request,
    account_id: Optional[str] = Query(default=None),
    caller_id: Optional[str] = Depends(get_caller_id),
    db: Session = Depends(get_db_session),
    settings: MarketplaceSettings = Depends(get_settings),
):
    """
    Run the connection health check for one eBay account.

    Always answers with JSON; failures use ``{"error": <code>}`` with an
    optional ``hint``.
    """
    orchestrator = HealthCheckOrchestrator(
        db,
        getattr(request.app.state, "token_cipher", None),
        settings,
        http_client=getattr(request.app.state, "http_client", None),
        correlation_id=get_correlation_id(request),
    )
    result = await orchestrator.run(caller_id, account_id)
    return JSONResponse(status_code=result.status_code, content=result.body)
