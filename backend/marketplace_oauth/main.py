"""
FastAPI application factory.

Usage:
    uvicorn marketplace_oauth.main:app
"""

import logging
from typing import Optional

from fastapi import FastAPI

from marketplace_oauth import __version__
from marketplace_oauth.api.routes import marketplace_health
from marketplace_oauth.config.settings import MarketplaceSettings, get_settings
from marketplace_oauth.credentials.cipher import CryptoError, TokenCipher
from marketplace_oauth.credentials.redaction import setup_credential_logging
from marketplace_oauth.platform.errors import ErrorHandlerMiddleware

logger = logging.getLogger(__name__)


def build_cipher(settings: MarketplaceSettings) -> Optional[TokenCipher]:
    """
    Cipher for the configured master key, or None when it is unusable.

    The service still starts without a key; requests that need to decrypt
    fail with a configuration error instead.
    """
    try:
        return TokenCipher.from_base64_key(settings.master_key)
    except CryptoError as e:
        logger.error(
            "Master key unusable; encrypted secrets cannot be read",
            extra={"error_type": type(e).__name__, "operation": e.operation},
        )
        return None


def create_app(settings: Optional[MarketplaceSettings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_credential_logging()

    app = FastAPI(title="Marketplace OAuth", version=__version__)
    app.add_middleware(ErrorHandlerMiddleware)
    app.include_router(marketplace_health.router)

    app.state.settings = settings
    app.state.token_cipher = build_cipher(settings)
    app.state.http_client = None

    if settings is not get_settings():
        app.dependency_overrides[get_settings] = lambda: settings

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
