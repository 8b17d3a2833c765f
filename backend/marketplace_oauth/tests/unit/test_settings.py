"""
Configuration tests.
"""

import pytest
from pydantic import ValidationError

from marketplace_oauth.config.providers import (
    DEFAULT_SCOPES,
    UnknownProviderError,
    get_provider_endpoints,
)
from marketplace_oauth.config.settings import DEFAULT_HTTP_TIMEOUT_SECONDS, MarketplaceSettings
from marketplace_oauth.database.session import normalize_database_url


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "MARKETPLACE_MASTER_KEY", "EBAY_RUNAME_SANDBOX", "EBAY_RUNAME_PROD",
        "EBAY_CLIENT_ID", "EBAY_CLIENT_SECRET", "EBAY_DEFAULT_SCOPES",
        "MARKETPLACE_HTTP_TIMEOUT_SECONDS", "AUTH_JWT_SECRET", "AUTH_JWT_ALGORITHM",
        "DATABASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestFromEnv:

    def test_defaults(self, clean_env):
        settings = MarketplaceSettings.from_env()

        assert settings.master_key is None
        assert settings.redirect_identifier("sandbox") is None
        assert settings.fallback_for("ebay").is_complete is False
        assert settings.http_timeout_seconds == DEFAULT_HTTP_TIMEOUT_SECONDS
        assert settings.jwt_algorithm == "HS256"

    def test_values_read(self, clean_env):
        clean_env.setenv("MARKETPLACE_MASTER_KEY", "a2V5")
        clean_env.setenv("EBAY_RUNAME_SANDBOX", "sbx-runame")
        clean_env.setenv("EBAY_RUNAME_PROD", " prd-runame ")
        clean_env.setenv("EBAY_CLIENT_ID", "cid")
        clean_env.setenv("EBAY_CLIENT_SECRET", "csecret")
        clean_env.setenv("MARKETPLACE_HTTP_TIMEOUT_SECONDS", "2.5")

        settings = MarketplaceSettings.from_env()

        assert settings.master_key == "a2V5"
        assert settings.redirect_identifier("sandbox") == "sbx-runame"
        assert settings.redirect_identifier("production") == "prd-runame"
        assert settings.fallback_for("ebay").is_complete is True
        assert settings.http_timeout_seconds == 2.5

    def test_scope_override(self, clean_env):
        clean_env.setenv("EBAY_DEFAULT_SCOPES", "https://api.ebay.com/oauth/api_scope")

        settings = MarketplaceSettings.from_env()

        assert settings.scope_for("ebay", None) == "https://api.ebay.com/oauth/api_scope"

    def test_settings_are_immutable(self, clean_env):
        settings = MarketplaceSettings.from_env()
        with pytest.raises(ValidationError):
            settings.master_key = "changed"


class TestScopes:

    def test_stored_scope_wins(self):
        assert MarketplaceSettings().scope_for("ebay", "  custom scope ") == "custom scope"

    def test_default_scope_set(self):
        scope = MarketplaceSettings().scope_for("ebay", "")
        assert scope == DEFAULT_SCOPES["ebay"]
        assert "sell.inventory" in scope
        assert "sell.fulfillment" in scope


class TestProviders:

    def test_sandbox_hosts(self):
        endpoints = get_provider_endpoints("ebay", "sandbox")
        assert endpoints.token_url == "https://api.sandbox.ebay.com/identity/v1/oauth2/token"
        assert endpoints.identity_url.startswith("https://apiz.sandbox.ebay.com/")

    def test_production_hosts(self):
        endpoints = get_provider_endpoints("ebay", "production")
        assert endpoints.privileges_url == "https://api.ebay.com/sell/account/v1/privilege"

    def test_unknown_provider(self):
        with pytest.raises(UnknownProviderError):
            get_provider_endpoints("amazon", "sandbox")


class TestDatabaseUrl:

    def test_postgres_alias_rewritten(self):
        assert normalize_database_url("postgres://u:p@h/db") == "postgresql://u:p@h/db"

    def test_other_urls_untouched(self):
        assert normalize_database_url("sqlite:///x.db") == "sqlite:///x.db"
