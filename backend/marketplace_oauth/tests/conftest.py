"""
Shared fixtures: in-memory database, cipher, settings and a fake eBay API.

NOTE: token values are obviously fake to avoid secret scanners.
"""

import base64
import json
import uuid
from datetime import timedelta
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import marketplace_oauth.models  # noqa: F401  (registers tables)
from marketplace_oauth.config.settings import FallbackClientCredentials, MarketplaceSettings
from marketplace_oauth.credentials.cipher import TAG_SIZE, TokenCipher
from marketplace_oauth.credentials.store import RefreshLockRegistry
from marketplace_oauth.db_base import Base
from marketplace_oauth.models.admin_user import AdminUser
from marketplace_oauth.models.base import utcnow
from marketplace_oauth.models.marketplace_account import MarketplaceAccount
from marketplace_oauth.models.oauth_token import OAuthToken
from marketplace_oauth.tests.fakes import TEST_SCOPE, FakeEbay

TEST_KEY = bytes(range(32))


@pytest.fixture
def ebay():
    return FakeEbay()


@pytest.fixture
def http_client(ebay):
    return ebay.client()


# ============================================================================
# Configuration and crypto
# ============================================================================

@pytest.fixture
def cipher():
    return TokenCipher(TEST_KEY)


@pytest.fixture
def settings():
    return MarketplaceSettings(
        master_key=base64.b64encode(TEST_KEY).decode("ascii"),
        redirect_identifiers={
            "sandbox": "Test_Seller-TestApp-SBX-runame",
            "production": "Test_Seller-TestApp-PRD-runame",
        },
        fallback_credentials={
            "ebay": FallbackClientCredentials(
                client_id="fallback-client-id",
                client_secret="fallback-client-secret",
            ),
        },
        http_timeout_seconds=5.0,
        jwt_secret="test-jwt-secret-not-real-0123456789abcdef",
        database_url="sqlite://",
    )


@pytest.fixture
def locks():
    return RefreshLockRegistry()


@pytest.fixture
def legacy_encode(cipher):
    """Encode a refresh token in the legacy JSON hex layout."""
    def _encode(plaintext: str) -> str:
        ciphertext, iv = cipher.encrypt(plaintext)
        return json.dumps({
            "iv": iv.hex(),
            "data": ciphertext[:-TAG_SIZE].hex(),
            "tag": ciphertext[-TAG_SIZE:].hex(),
        })
    return _encode


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_admin(db_session):
    def _make(user_id: str = "admin-user", is_admin: bool = True) -> AdminUser:
        admin = AdminUser(id=user_id, is_admin=is_admin)
        db_session.add(admin)
        db_session.commit()
        return admin
    return _make


@pytest.fixture
def make_account(db_session):
    def _make(
        environment: Optional[str] = "sandbox",
        is_active: bool = True,
        provider: str = "ebay",
        account_id: Optional[str] = None,
    ) -> MarketplaceAccount:
        account = MarketplaceAccount(
            id=account_id or str(uuid.uuid4()),
            provider=provider,
            environment=environment,
            is_active=is_active,
            display_name="Test seller",
        )
        db_session.add(account)
        db_session.commit()
        return account
    return _make


@pytest.fixture
def make_token(db_session, cipher, legacy_encode):
    def _make(
        account: MarketplaceAccount,
        access_token: Optional[str] = "access-old",
        expires_in: Optional[int] = 3600,
        refresh_token: Optional[str] = "refresh-old",
        legacy: bool = False,
        scope: Optional[str] = TEST_SCOPE,
        refresh_token_encrypted: Optional[str] = None,
        encryption_iv: Optional[str] = None,
        updated_at=None,
    ) -> OAuthToken:
        if refresh_token_encrypted is None and refresh_token is not None:
            if legacy:
                refresh_token_encrypted, encryption_iv = legacy_encode(refresh_token), ""
            else:
                refresh_token_encrypted, encryption_iv = cipher.encrypt_to_storage(refresh_token)

        token = OAuthToken(
            marketplace_account_id=account.id,
            access_token=access_token,
            expires_at=utcnow() + timedelta(seconds=expires_in) if expires_in is not None else None,
            refresh_token_encrypted=refresh_token_encrypted,
            encryption_iv=encryption_iv,
            scope=scope,
            version=0,
        )
        if updated_at is not None:
            token.updated_at = updated_at
        db_session.add(token)
        db_session.commit()
        return token
    return _make
