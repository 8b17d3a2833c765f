"""
Marketplace connection health check.

Runs one invocation end to end and turns every outcome into a response plus
exactly one sync_logs record. The admin check, a missing account id and an
unknown account are answered without a record, since there is no account to
attribute one to.

Order:
    admin -> account_id -> account -> token -> redirect identifier ->
    client credentials -> [expired: migrate + refresh] -> probe -> audit

SECURITY:
- Tokens and client secrets never appear in responses, audit rows or logs
- Crypto failures are reported as a generic server_error
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from marketplace_oauth.config.providers import EBAY_PROVIDER
from marketplace_oauth.config.settings import MarketplaceSettings
from marketplace_oauth.credentials.access import AuthorizedRequester
from marketplace_oauth.credentials.cipher import TokenCipher
from marketplace_oauth.credentials.context import InvocationContext
from marketplace_oauth.credentials.refresh import TokenRefresher
from marketplace_oauth.credentials.resolver import CredentialResolver
from marketplace_oauth.credentials.store import (
    RefreshLockRegistry,
    TokenStore,
    default_refresh_locks,
)
from marketplace_oauth.models.sync_log import SyncOutcome
from marketplace_oauth.platform.admin import AdminAuthorizer
from marketplace_oauth.platform.errors import (
    AccountNotFound,
    AppError,
    ConfigurationMissing,
    InternalServerError,
    MissingAccountId,
    RedirectIdentifierMissing,
    TokenMissing,
    Unauthorized,
)
from marketplace_oauth.services.connection_probe import ConnectionProbe, ProbeOutcome, ProbeStatus
from marketplace_oauth.services.sync_log_writer import OAUTH_TEST_OPERATION, AuditLogger

logger = logging.getLogger(__name__)

INSUFFICIENT_PERMISSIONS_REASON = "insufficient_permissions"
INSUFFICIENT_PERMISSIONS_HINT = (
    "Reconnect the account through the authorization code flow with the sell.* scopes"
)


@dataclass
class HealthCheckResponse:
    """HTTP status and JSON body returned to the caller."""
    status_code: int
    body: dict


class HealthCheckOrchestrator:
    """
    Runs the admin-only connection health check for one account.

    Usage:
        orchestrator = HealthCheckOrchestrator(db, cipher, settings)
        result = await orchestrator.run(caller_id, account_id)
    """

    def __init__(
        self,
        db_session: Session,
        cipher: Optional[TokenCipher],
        settings: MarketplaceSettings,
        http_client: Optional[httpx.AsyncClient] = None,
        locks: Optional[RefreshLockRegistry] = None,
        correlation_id: Optional[str] = None,
        provider: str = EBAY_PROVIDER,
    ):
        self.db = db_session
        self.cipher = cipher
        self.settings = settings
        self.http_client = http_client
        self.locks = locks if locks is not None else default_refresh_locks
        self.correlation_id = correlation_id
        self.provider = provider

        self.store = TokenStore(db_session)
        self.admins = AdminAuthorizer(db_session)
        self.audit = AuditLogger(db_session, provider=provider)

    async def run(self, caller_id: Optional[str], account_id: Optional[str]) -> HealthCheckResponse:
        # No account to attribute an audit record to yet
        if not self.admins.is_admin(caller_id):
            logger.warning("Health check refused for non-admin caller", extra={"user_id": caller_id})
            return self._error_response(Unauthorized())
        if not account_id:
            return self._error_response(MissingAccountId())

        ctx: Optional[InvocationContext] = None
        try:
            ctx = self._prepare(account_id)

            refresher = TokenRefresher(
                self.store,
                self.cipher,
                self.settings,
                http_client=self.http_client,
                locks=self.locks,
            )
            await refresher.refresh_if_expired(ctx)

            requester = AuthorizedRequester(refresher, self.settings, http_client=self.http_client)
            outcome = await ConnectionProbe(requester).probe(ctx)

        except AccountNotFound as e:
            return self._error_response(e)
        except AppError as e:
            self._audit_failure(account_id, e, ctx)
            return self._error_response(e)
        except Exception:
            logger.exception(
                "Unexpected error during health check",
                extra={"marketplace_account_id": account_id, "correlation_id": self.correlation_id},
            )
            error = InternalServerError("Unexpected error")
            self._audit_failure(account_id, error, ctx)
            return self._error_response(error)

        return self._probe_response(ctx, outcome)

    def _prepare(self, account_id: str) -> InvocationContext:
        account = self.store.get_active_account(account_id, self.provider)
        if account is None:
            raise AccountNotFound(account_id)

        token = self.store.get_current_token(account.id)
        if token is None:
            raise TokenMissing()

        environment = account.resolved_environment.value
        redirect_uri = self.settings.redirect_identifier(environment)
        if not redirect_uri:
            raise RedirectIdentifierMissing(environment)

        if self.cipher is None:
            logger.error("Master key unavailable; cannot decrypt stored secrets")
            raise ConfigurationMissing(message="Master key not configured")

        credentials = CredentialResolver(self.db, self.cipher, self.settings).resolve(
            account.provider, environment
        )
        return InvocationContext.start(
            account=account,
            token=token,
            credentials=credentials,
            redirect_uri=redirect_uri,
            correlation_id=self.correlation_id,
        )

    def _probe_response(self, ctx: InvocationContext, outcome: ProbeOutcome) -> HealthCheckResponse:
        account = ctx.account
        environment = account.resolved_environment.value

        if outcome.status == ProbeStatus.OK:
            self._audit(
                account.id,
                SyncOutcome.RETRY if outcome.retry_count > 0 else SyncOutcome.OK,
                200,
                outcome.message,
                outcome,
            )
            return HealthCheckResponse(
                status_code=200,
                body={
                    "ok": True,
                    "scopes": ctx.token.normalized_scope,
                    "environment": environment,
                    "identity": outcome.identity,
                    "privileges": outcome.privileges,
                },
            )

        if outcome.status == ProbeStatus.SOFT_FAIL:
            self._audit(account.id, SyncOutcome.FAIL, outcome.http_status, outcome.message, outcome)
            return HealthCheckResponse(
                status_code=200,
                body={
                    "ok": False,
                    "reason": INSUFFICIENT_PERMISSIONS_REASON,
                    "hint": INSUFFICIENT_PERMISSIONS_HINT,
                    "environment": environment,
                },
            )

        self._audit(account.id, SyncOutcome.FAIL, outcome.http_status, outcome.message, outcome)
        return HealthCheckResponse(status_code=outcome.http_status, body={"error": "ebay_unavailable"})

    def _audit(
        self,
        account_id: str,
        outcome: SyncOutcome,
        http_status: int,
        message: str,
        probe: ProbeOutcome,
    ) -> None:
        self.audit.record(
            account_id=account_id,
            operation=OAUTH_TEST_OPERATION,
            outcome=outcome,
            http_status=http_status,
            message=message,
            retry_count=probe.retry_count,
            refresh_count=probe.refresh_count,
            correlation_id=self.correlation_id,
            details=probe.details,
        )

    def _audit_failure(self, account_id: str, error: AppError, ctx: Optional[InvocationContext]) -> None:
        self.audit.record(
            account_id=account_id,
            operation=OAUTH_TEST_OPERATION,
            outcome=SyncOutcome.FAIL,
            http_status=error.status_code,
            message=error.message,
            retry_count=ctx.probe_retries if ctx else 0,
            refresh_count=ctx.refresh_count if ctx else 0,
            correlation_id=self.correlation_id,
            details=dict(error.details, retryable=error.retryable),
        )

    @staticmethod
    def _error_response(error: AppError) -> HealthCheckResponse:
        body: dict[str, Any] = error.to_dict()
        return HealthCheckResponse(status_code=error.status_code, body=body)
