"""
OAuth refresh-token grant and persistence of new token generations.

Token state per account:
    Valid (now < expires_at) -> Expired -> Refreshing -> Valid (new generation)
                                                      -> RefreshFailed (terminal for this invocation)
    Expired without a refresh token -> Unrecoverable (human re-consent needed)

SECURITY REQUIREMENTS:
- Refresh tokens are decrypted only in memory
- New refresh tokens are encrypted before storage
- No plaintext tokens in logs
- Crypto failures collapse to a generic server error

Persistence of a new generation happens before its access token is handed
back to any caller. Once the provider response has been received, the
encrypt and commit steps run without awaiting, so a cancelled caller cannot
interrupt a persist that has started and a rotated refresh token is never
dropped.

Usage:
    refresher = TokenRefresher(TokenStore(db), cipher, settings)
    await refresher.refresh_if_expired(ctx)      # pre-emptive
    await refresher.refresh_and_persist(ctx)     # after a 401
"""

import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import httpx

from marketplace_oauth.config.providers import get_provider_endpoints
from marketplace_oauth.config.settings import MarketplaceSettings
from marketplace_oauth.credentials.cipher import CryptoError, TokenCipher
from marketplace_oauth.credentials.context import InvocationContext
from marketplace_oauth.credentials.migration import LegacyMigrator, MigratedRecord
from marketplace_oauth.credentials.resolver import AppCredentials
from marketplace_oauth.credentials.store import (
    RefreshLockRegistry,
    TokenStore,
    default_refresh_locks,
)
from marketplace_oauth.models.marketplace_account import MarketplaceAccount
from marketplace_oauth.platform.errors import (
    InternalServerError,
    RefreshFailed,
    TokenUnrecoverable,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN_SECONDS = 7200
# Anything longer is treated as a malformed answer
MAX_EXPIRES_IN_SECONDS = 366 * 24 * 3600
GENERIC_REFRESH_ERROR = "refresh_failed"
UNREACHABLE_REFRESH_ERROR = "refresh_unreachable"


@dataclass(frozen=True)
class NewTokenSet:
    """
    Tokens issued by a successful refresh grant.

    SECURITY: token values are excluded from repr.
    """
    access_token: str = field(repr=False)
    expires_at: datetime
    refresh_token: Optional[str] = field(default=None, repr=False)
    scope: Optional[str] = None


@dataclass(frozen=True)
class RefreshFailure:
    """Provider refused the refresh grant, or could not be reached (no status)."""
    code: str
    http_status: Optional[int]


RefreshOutcome = Union[NewTokenSet, RefreshFailure]


def basic_auth_header(credentials: AppCredentials) -> str:
    raw = f"{credentials.client_id}:{credentials.client_secret}"
    return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")


def _provider_error_code(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return GENERIC_REFRESH_ERROR
    if isinstance(payload, dict) and isinstance(payload.get("error"), str) and payload["error"]:
        return payload["error"]
    return GENERIC_REFRESH_ERROR


def _expires_in_seconds(value) -> int:
    """Access token lifetime from the grant response, or the default when unusable."""
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    try:
        seconds = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_EXPIRES_IN_SECONDS
    if seconds <= 0 or seconds > MAX_EXPIRES_IN_SECONDS:
        return DEFAULT_EXPIRES_IN_SECONDS
    return seconds


def _text(value) -> Optional[str]:
    return value if isinstance(value, str) and value else None


class TokenRefresher:
    """
    Executes refresh grants and commits new token generations.

    Refreshes of one account are serialized by a per-account lock, and the
    commit itself is a compare-and-swap on the token version.
    """

    def __init__(
        self,
        store: TokenStore,
        cipher: TokenCipher,
        settings: MarketplaceSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        locks: Optional[RefreshLockRegistry] = None,
        migrator: Optional[LegacyMigrator] = None,
    ):
        self.store = store
        self.cipher = cipher
        self.settings = settings
        self.http_client = http_client
        self.locks = locks if locks is not None else default_refresh_locks
        self.migrator = migrator or LegacyMigrator(cipher)

    async def refresh(
        self,
        account: MarketplaceAccount,
        credentials: AppCredentials,
        refresh_token: str,
        redirect_uri: str,
        scope: Optional[str],
    ) -> RefreshOutcome:
        """
        Perform the refresh-token grant against the provider.

        Transport failures and timeouts are reported as a RefreshFailure
        with code ``refresh_unreachable`` and no HTTP status. A 2xx answer is
        never turned into an exception: an unusable ``expires_in`` falls back
        to the default lifetime so a rotated refresh token still gets stored.
        """
        endpoints = get_provider_endpoints(account.provider, account.resolved_environment.value)
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "redirect_uri": redirect_uri,
            "scope": self.settings.scope_for(account.provider, scope),
        }
        headers = {
            "Authorization": basic_auth_header(credentials),
            "Content-Type": "application/x-www-form-urlencoded",
        }

        try:
            response = await self._post(endpoints.token_url, data=data, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(
                "Token endpoint unreachable",
                extra={
                    "marketplace_account_id": account.id,
                    "provider": account.provider,
                    "error_type": type(e).__name__,
                },
            )
            return RefreshFailure(code=UNREACHABLE_REFRESH_ERROR, http_status=None)

        if not response.is_success:
            code = _provider_error_code(response)
            logger.warning(
                "Refresh grant refused by provider",
                extra={
                    "marketplace_account_id": account.id,
                    "provider": account.provider,
                    "http_status": response.status_code,
                    "error_code": code,
                },
            )
            return RefreshFailure(code=code, http_status=response.status_code)

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict) or not _text(payload.get("access_token")):
            return RefreshFailure(code="invalid_token_response", http_status=response.status_code)

        expires_in = _expires_in_seconds(payload.get("expires_in"))
        return NewTokenSet(
            access_token=payload["access_token"],
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            refresh_token=_text(payload.get("refresh_token")),
            scope=_text(payload.get("scope")),
        )

    async def refresh_if_expired(self, ctx: InvocationContext) -> bool:
        """
        Refresh pre-emptively when the stored access token has expired.

        Returns:
            True if a refresh happened
        """
        if not ctx.token.is_expired():
            return False
        if not ctx.can_refresh:
            return False
        await self.refresh_and_persist(ctx)
        return True

    async def refresh_and_persist(self, ctx: InvocationContext) -> str:
        """
        Refresh the context's account and commit the new generation.

        Consumes the invocation's refresh budget. If a concurrent invocation
        already committed a newer, unexpired generation, that generation is
        adopted without calling the provider.

        Returns:
            The access token to use from now on

        Raises:
            TokenUnrecoverable: No usable refresh token stored
            RefreshFailed: Provider refused the grant
            UpstreamUnavailable: Token endpoint unreachable or timed out
            InternalServerError: Stored refresh token could not be decrypted
        """
        account = ctx.account
        async with self.locks.get(account.id):
            token = self.store.reload(ctx.token)

            if token.version != ctx.observed_version and not token.is_expired():
                logger.info(
                    "Adopting token generation committed by a concurrent refresh",
                    extra={"marketplace_account_id": account.id, "version": token.version},
                )
                ctx.record_refresh(token.access_token or "", token.version, called_provider=False)
                return ctx.access_token

            self._migrate_legacy(token)

            if not token.has_refresh_token:
                raise TokenUnrecoverable()

            try:
                refresh_token = self.cipher.decrypt_from_storage(
                    token.refresh_token_encrypted, token.encryption_iv
                )
            except CryptoError as e:
                logger.error(
                    "Stored refresh token could not be decrypted",
                    extra={"marketplace_account_id": account.id, "error_type": type(e).__name__},
                )
                raise InternalServerError("Refresh error") from e

            expected_version = token.version
            outcome = await self.refresh(
                account,
                ctx.credentials,
                refresh_token,
                ctx.redirect_uri,
                token.scope,
            )

            if isinstance(outcome, RefreshFailure):
                ctx.record_failed_refresh()
                if outcome.code == UNREACHABLE_REFRESH_ERROR:
                    raise UpstreamUnavailable("Token endpoint unreachable")
                raise RefreshFailed(outcome.code, outcome.http_status)

            # No awaits from here on: persistence completes even if the caller is cancelled
            access_token = self._persist(token, expected_version, outcome)
            ctx.record_refresh(access_token, token.version)
            return access_token

    def _migrate_legacy(self, token) -> None:
        result = self.migrator.migrate(token.refresh_token_encrypted, token.encryption_iv)
        if isinstance(result, MigratedRecord):
            self.store.apply_migration(token, result)

    def _persist(self, token, expected_version: int, new_tokens: NewTokenSet) -> str:
        refresh_ct = iv = None
        if new_tokens.refresh_token:
            try:
                refresh_ct, iv = self.cipher.encrypt_to_storage(new_tokens.refresh_token)
            except CryptoError as e:
                raise InternalServerError("Refresh error") from e

        committed = self.store.commit_generation(
            token,
            expected_version=expected_version,
            access_token=new_tokens.access_token,
            expires_at=new_tokens.expires_at,
            refresh_token_encrypted=refresh_ct,
            encryption_iv=iv,
        )
        if committed:
            logger.info(
                "Token refreshed and persisted",
                extra={
                    "marketplace_account_id": token.marketplace_account_id,
                    "version": token.version,
                    "refresh_token_rotated": refresh_ct is not None,
                    "new_expires_at": new_tokens.expires_at.isoformat(),
                },
            )
            return new_tokens.access_token

        # Another writer committed first; its generation is the current one
        return token.access_token or ""

    async def _post(self, url: str, data: dict, headers: dict) -> httpx.Response:
        timeout = httpx.Timeout(self.settings.http_timeout_seconds)
        if self.http_client is not None:
            return await self.http_client.post(url, data=data, headers=headers, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, data=data, headers=headers)
