"""
Bearer calls to a marketplace API with a single refresh-and-retry on 401.

Shared by the connection probe and any other caller that talks to the
provider on behalf of an account. The refresh budget lives on the
InvocationContext, so several calls made with the same context trigger at
most one refresh between them.
"""

import logging
from typing import Optional

import httpx

from marketplace_oauth.config.settings import MarketplaceSettings
from marketplace_oauth.credentials.context import InvocationContext
from marketplace_oauth.credentials.refresh import TokenRefresher
from marketplace_oauth.platform.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class AuthorizedRequester:
    """Issues bearer requests for an invocation context."""

    def __init__(
        self,
        refresher: TokenRefresher,
        settings: MarketplaceSettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.refresher = refresher
        self.settings = settings
        self.http_client = http_client

    async def get(self, ctx: InvocationContext, url: str) -> httpx.Response:
        """
        GET ``url`` with the context's access token.

        On a 401 while the refresh budget is unspent, refreshes once and
        retries once. The retried response is returned as is, whatever its
        status.

        Raises:
            UpstreamUnavailable: On transport failures and timeouts, including
                the token endpoint during the refresh
            TokenUnrecoverable, RefreshFailed, InternalServerError: From the refresh
        """
        response = await self._send(url, ctx.access_token)
        if response.status_code != 401 or not ctx.can_refresh:
            return response

        logger.info(
            "Bearer call rejected; refreshing once",
            extra={
                "marketplace_account_id": ctx.account.id,
                "url": url,
                "correlation_id": ctx.correlation_id,
            },
        )
        await self.refresher.refresh_and_persist(ctx)
        ctx.probe_retries += 1
        return await self._send(url, ctx.access_token)

    async def _send(self, url: str, access_token: str) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        timeout = httpx.Timeout(self.settings.http_timeout_seconds)
        try:
            if self.http_client is not None:
                return await self.http_client.get(url, headers=headers, timeout=timeout)
            async with httpx.AsyncClient(timeout=timeout) as client:
                return await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(
                "Marketplace API unreachable",
                extra={"url": url, "error_type": type(e).__name__},
            )
            raise UpstreamUnavailable("eBay API error") from e
