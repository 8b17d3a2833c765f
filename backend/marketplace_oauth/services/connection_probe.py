"""
Connection probe: verifies a marketplace grant against the identity and
privileges endpoints.

Classification:
- ok:        both calls succeeded
- soft_fail: privileges answered 401/403 after the refresh budget was spent;
             the grant works but lacks the selling scopes
- hard_fail: any other non-2xx, a 401 on identity after the retry, an
             unparseable body, or a transport error

Refresh outcomes (TokenUnrecoverable, RefreshFailed, InternalServerError)
are raised to the caller unchanged. An unreachable token endpoint is a
hard fail like any other provider outage.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from marketplace_oauth.config.providers import get_provider_endpoints
from marketplace_oauth.credentials.access import AuthorizedRequester
from marketplace_oauth.credentials.context import InvocationContext
from marketplace_oauth.platform.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

INSUFFICIENT_PERMISSION_STATUSES = (401, 403)


class ProbeStatus(str, enum.Enum):
    OK = "ok"
    SOFT_FAIL = "soft_fail"
    HARD_FAIL = "hard_fail"


@dataclass
class ProbeOutcome:
    """Result of probing one account."""
    status: ProbeStatus
    http_status: int
    retry_count: int = 0
    refresh_count: int = 0
    message: str = ""
    identity: Optional[dict] = None
    privileges: Optional[dict] = None
    details: dict = field(default_factory=dict)


def project_identity(payload: Any) -> dict:
    payload = payload if isinstance(payload, dict) else {}
    return {
        "userId": payload.get("userId") or "",
        "username": payload.get("username") or "",
        "registrationMarketplaceId": payload.get("registrationMarketplaceId") or "",
    }


def project_privileges(payload: Any) -> dict:
    payload = payload if isinstance(payload, dict) else {}
    return {
        "sellerRegistrationCompleted": bool(payload.get("sellerRegistrationCompleted", False)),
        "sellingLimit": payload.get("sellingLimit") or None,
    }


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        raise UpstreamUnavailable(
            "Unparseable provider response",
            provider_status=response.status_code,
        )


class ConnectionProbe:
    """Runs identity then privileges for an invocation context."""

    def __init__(self, requester: AuthorizedRequester):
        self.requester = requester

    async def probe(self, ctx: InvocationContext) -> ProbeOutcome:
        account = ctx.account
        endpoints = get_provider_endpoints(account.provider, account.resolved_environment.value)

        try:
            identity_response = await self.requester.get(ctx, endpoints.identity_url)
            if not identity_response.is_success:
                raise UpstreamUnavailable(
                    f"Identity API failed: {identity_response.status_code}",
                    provider_status=identity_response.status_code,
                )
            identity = project_identity(_json_body(identity_response))

            privileges_response = await self.requester.get(ctx, endpoints.privileges_url)
            if privileges_response.status_code in INSUFFICIENT_PERMISSION_STATUSES:
                logger.info(
                    "Grant lacks selling privileges",
                    extra={
                        "marketplace_account_id": account.id,
                        "http_status": privileges_response.status_code,
                        "correlation_id": ctx.correlation_id,
                    },
                )
                return self._outcome(
                    ctx,
                    ProbeStatus.SOFT_FAIL,
                    privileges_response.status_code,
                    "insufficient_permissions",
                )
            if not privileges_response.is_success:
                raise UpstreamUnavailable(
                    f"Privilege API failed: {privileges_response.status_code}",
                    provider_status=privileges_response.status_code,
                )
            privileges = project_privileges(_json_body(privileges_response))

        except UpstreamUnavailable as e:
            logger.warning(
                "Connection probe failed",
                extra={
                    "marketplace_account_id": account.id,
                    "provider_status": e.provider_status,
                    "retry_count": ctx.probe_retries,
                    "correlation_id": ctx.correlation_id,
                },
            )
            outcome = self._outcome(ctx, ProbeStatus.HARD_FAIL, e.status_code, e.message)
            outcome.details.update(provider_status=e.provider_status, retryable=e.retryable)
            return outcome

        outcome = self._outcome(ctx, ProbeStatus.OK, 200, "Connection test successful")
        outcome.identity = identity
        outcome.privileges = privileges
        return outcome

    @staticmethod
    def _outcome(ctx: InvocationContext, status: ProbeStatus, http_status: int, message: str) -> ProbeOutcome:
        return ProbeOutcome(
            status=status,
            http_status=http_status,
            retry_count=ctx.probe_retries,
            refresh_count=ctx.refresh_count,
            message=message,
        )
