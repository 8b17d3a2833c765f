"""
ConnectionProbe and AuthorizedRequester tests.

CRITICAL: at most one refresh per invocation, whichever endpoint answers 401.
"""

import httpx
import pytest

from marketplace_oauth.credentials.access import AuthorizedRequester
from marketplace_oauth.credentials.context import InvocationContext
from marketplace_oauth.credentials.refresh import TokenRefresher
from marketplace_oauth.credentials.resolver import SOURCE_FALLBACK, AppCredentials
from marketplace_oauth.credentials.store import TokenStore
from marketplace_oauth.platform.errors import RefreshFailed, TokenUnrecoverable, UpstreamUnavailable
from marketplace_oauth.services.connection_probe import (
    ConnectionProbe,
    ProbeStatus,
    project_identity,
    project_privileges,
)
from marketplace_oauth.tests.fakes import (
    IDENTITY_PAYLOAD,
    PRIVILEGES_PAYLOAD,
    SANDBOX,
    FakeEbay,
    token_payload,
)

CREDENTIALS = AppCredentials("client-id", "client-secret", SOURCE_FALLBACK)


@pytest.fixture
def requester(db_session, cipher, settings, http_client, locks):
    refresher = TokenRefresher(TokenStore(db_session), cipher, settings, http_client=http_client, locks=locks)
    return AuthorizedRequester(refresher, settings, http_client=http_client)


@pytest.fixture
def probe(requester):
    return ConnectionProbe(requester)


@pytest.fixture
def ctx(make_account, make_token):
    account = make_account()
    token = make_token(account, access_token="access-old", expires_in=3600)
    return InvocationContext.start(account, token, CREDENTIALS, "Test_Seller-TestApp-SBX-runame")


class TestAuthorizedRequester:

    @pytest.mark.asyncio
    async def test_bearer_header(self, requester, ebay, ctx):
        ebay.on(SANDBOX.identity_url, (200, IDENTITY_PAYLOAD))

        response = await requester.get(ctx, SANDBOX.identity_url)

        assert response.status_code == 200
        assert FakeEbay.bearer(ebay.calls(SANDBOX.identity_url)[0]) == "access-old"
        assert ctx.probe_retries == 0

    @pytest.mark.asyncio
    async def test_401_refreshes_and_retries_once(self, requester, ebay, ctx):
        ebay.on(SANDBOX.identity_url, (401, None), (200, IDENTITY_PAYLOAD))
        ebay.on(SANDBOX.token_url, (200, token_payload("access-new")))

        response = await requester.get(ctx, SANDBOX.identity_url)

        assert response.status_code == 200
        calls = ebay.calls(SANDBOX.identity_url)
        assert [FakeEbay.bearer(c) for c in calls] == ["access-old", "access-new"]
        assert ctx.probe_retries == 1
        assert ctx.refresh_count == 1

    @pytest.mark.asyncio
    async def test_second_401_returned_without_refresh(self, requester, ebay, ctx):
        ebay.on(SANDBOX.identity_url, (401, None))
        ebay.on(SANDBOX.token_url, (200, token_payload("access-new")))

        response = await requester.get(ctx, SANDBOX.identity_url)

        assert response.status_code == 401
        assert len(ebay.calls(SANDBOX.identity_url)) == 2
        assert len(ebay.calls(SANDBOX.token_url)) == 1

    @pytest.mark.asyncio
    async def test_spent_budget_never_refreshes(self, requester, ebay, ctx):
        ebay.on(SANDBOX.identity_url, (401, None))
        ctx.has_refreshed = True

        response = await requester.get(ctx, SANDBOX.identity_url)

        assert response.status_code == 401
        assert ebay.calls(SANDBOX.token_url) == []

    @pytest.mark.asyncio
    async def test_transport_error(self, requester, ebay, ctx):
        ebay.on(SANDBOX.identity_url, httpx.ReadTimeout("slow"))

        with pytest.raises(UpstreamUnavailable) as exc_info:
            await requester.get(ctx, SANDBOX.identity_url)

        assert exc_info.value.status_code == 502
        assert exc_info.value.code == "ebay_unavailable"


class TestProbe:

    @pytest.mark.asyncio
    async def test_ok(self, probe, ebay, ctx):
        ebay.healthy()

        outcome = await probe.probe(ctx)

        assert outcome.status == ProbeStatus.OK
        assert outcome.http_status == 200
        assert outcome.retry_count == 0
        assert outcome.identity == {
            "userId": "user-123",
            "username": "test_seller",
            "registrationMarketplaceId": "EBAY_FR",
        }
        assert outcome.privileges == {
            "sellerRegistrationCompleted": True,
            "sellingLimit": PRIVILEGES_PAYLOAD["sellingLimit"],
        }

    @pytest.mark.asyncio
    async def test_identity_failure_is_hard(self, probe, ebay, ctx):
        ebay.on(SANDBOX.identity_url, (500, {"errors": []}))

        outcome = await probe.probe(ctx)

        assert outcome.status == ProbeStatus.HARD_FAIL
        assert outcome.http_status == 502
        assert outcome.details["provider_status"] == 500
        assert outcome.details["retryable"] is True
        assert ebay.calls(SANDBOX.privileges_url) == []

    @pytest.mark.asyncio
    async def test_identity_401_after_retry_is_hard(self, probe, ebay, ctx):
        ebay.on(SANDBOX.identity_url, (401, None))
        ebay.on(SANDBOX.token_url, (200, token_payload("access-new")))

        outcome = await probe.probe(ctx)

        assert outcome.status == ProbeStatus.HARD_FAIL
        assert outcome.retry_count == 1
        assert len(ebay.calls(SANDBOX.token_url)) == 1

    @pytest.mark.asyncio
    async def test_identity_unparseable_body_is_hard(self, probe, ebay, ctx):
        ebay.on(SANDBOX.identity_url, lambda request: (200, None))

        outcome = await probe.probe(ctx)

        assert outcome.status == ProbeStatus.HARD_FAIL

    @pytest.mark.asyncio
    async def test_privileges_403_is_soft(self, probe, ebay, ctx):
        ebay.on(SANDBOX.identity_url, (200, IDENTITY_PAYLOAD))
        ebay.on(SANDBOX.privileges_url, (403, {"errors": [{"errorId": 1100}]}))

        outcome = await probe.probe(ctx)

        assert outcome.status == ProbeStatus.SOFT_FAIL
        assert outcome.http_status == 403
        assert outcome.message == "insufficient_permissions"
        # 403 is not an expired token
        assert ebay.calls(SANDBOX.token_url) == []

    @pytest.mark.asyncio
    async def test_privileges_401_after_retry_is_soft(self, probe, ebay, ctx):
        ebay.on(SANDBOX.identity_url, (200, IDENTITY_PAYLOAD))
        ebay.on(SANDBOX.privileges_url, (401, None))
        ebay.on(SANDBOX.token_url, (200, token_payload("access-new")))

        outcome = await probe.probe(ctx)

        assert outcome.status == ProbeStatus.SOFT_FAIL
        assert outcome.http_status == 401
        assert outcome.retry_count == 1
        assert len(ebay.calls(SANDBOX.privileges_url)) == 2

    @pytest.mark.asyncio
    async def test_privileges_server_error_is_hard(self, probe, ebay, ctx):
        ebay.on(SANDBOX.identity_url, (200, IDENTITY_PAYLOAD))
        ebay.on(SANDBOX.privileges_url, (500, None))

        outcome = await probe.probe(ctx)

        assert outcome.status == ProbeStatus.HARD_FAIL
        assert outcome.http_status == 502

    @pytest.mark.asyncio
    async def test_one_refresh_shared_by_both_calls(self, probe, ebay, ctx):
        # Identity consumes the budget; privileges 401 must not refresh again
        ebay.on(SANDBOX.identity_url, (401, None), (200, IDENTITY_PAYLOAD))
        ebay.on(SANDBOX.privileges_url, (401, None))
        ebay.on(SANDBOX.token_url, (200, token_payload("access-new")))

        outcome = await probe.probe(ctx)

        assert outcome.status == ProbeStatus.SOFT_FAIL
        assert len(ebay.calls(SANDBOX.token_url)) == 1
        assert len(ebay.calls(SANDBOX.privileges_url)) == 1
        assert FakeEbay.bearer(ebay.calls(SANDBOX.privileges_url)[0]) == "access-new"
        assert outcome.refresh_count == 1

    @pytest.mark.asyncio
    async def test_refresh_already_done_before_probe(self, probe, ebay, ctx):
        ctx.record_refresh("access-pre", ctx.observed_version)
        ebay.on(SANDBOX.identity_url, (401, None))

        outcome = await probe.probe(ctx)

        assert outcome.status == ProbeStatus.HARD_FAIL
        assert outcome.retry_count == 0
        assert ebay.calls(SANDBOX.token_url) == []

    @pytest.mark.asyncio
    async def test_401_without_refresh_token_is_unrecoverable(self, probe, ebay, make_account, make_token):
        account = make_account()
        token = make_token(account, refresh_token=None)
        ctx = InvocationContext.start(account, token, CREDENTIALS, "runame")
        ebay.on(SANDBOX.identity_url, (401, None))

        with pytest.raises(TokenUnrecoverable):
            await probe.probe(ctx)

    @pytest.mark.asyncio
    async def test_refused_refresh_raises(self, probe, ebay, ctx):
        ebay.on(SANDBOX.identity_url, (401, None))
        ebay.on(SANDBOX.token_url, (400, {"error": "invalid_grant"}))

        with pytest.raises(RefreshFailed) as exc_info:
            await probe.probe(ctx)

        assert exc_info.value.code == "invalid_grant"


class TestProjections:

    def test_identity_missing_fields(self):
        assert project_identity({}) == {"userId": "", "username": "", "registrationMarketplaceId": ""}

    def test_identity_extra_fields_dropped(self):
        assert "accountType" not in project_identity(IDENTITY_PAYLOAD)

    def test_privileges_defaults(self):
        assert project_privileges(None) == {"sellerRegistrationCompleted": False, "sellingLimit": None}
