"""
Consistent error handling for the marketplace OAuth service.

All API errors MUST use these error classes. Response bodies have the shape
``{"error": <code>}`` with an optional ``"hint"``. Stack traces and
cryptographic details are NEVER returned to clients.

HTTP status codes used by the health check:
- 400: Missing account id
- 403: Caller is not an administrator
- 404: Unknown or inactive account
- 424: Token missing, expired without refresh token, or refresh refused
- 500: Missing server configuration or unexpected internal error
- 502: Provider unreachable or erroring after the retry budget
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

HTTP_FAILED_DEPENDENCY = 424


class AppError(Exception):
    """
    Base application error with consistent error shape.

    Attributes:
        code: Machine readable error code returned to the client
        message: Operator facing message (logged and audited, not returned)
        status_code: HTTP status for the response
        hint: Optional client facing hint
        retryable: Whether a later, independent attempt may succeed
    """

    retryable = False

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        hint: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.hint = hint
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to API error response format."""
        body: dict[str, Any] = {"error": self.code}
        if self.hint:
            body["hint"] = self.hint
        return body


class MissingAccountId(AppError):
    """account_id query parameter absent (400)."""

    def __init__(self):
        super().__init__(
            code="missing_account_id",
            message="Missing account_id",
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class Unauthorized(AppError):
    """Caller is not an administrator (403). Terminal."""

    def __init__(self, message: str = "Administrator privilege required"):
        super().__init__(
            code="forbidden",
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
        )


class AccountNotFound(AppError):
    """Unknown or inactive marketplace account (404). Terminal."""

    def __init__(self, account_id: Optional[str] = None):
        message = "Marketplace account not found"
        if account_id:
            message = f"Marketplace account '{account_id}' not found or inactive"
        super().__init__(
            code="account_not_found",
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class TokenMissing(AppError):
    """No token row for the account (424). Requires re-consent."""

    def __init__(self):
        super().__init__(
            code="token_missing",
            message="Token missing",
            status_code=HTTP_FAILED_DEPENDENCY,
        )


class TokenUnrecoverable(AppError):
    """Token expired or rejected and no refresh token is stored (424)."""

    def __init__(self, message: str = "Token expired, no refresh token"):
        super().__init__(
            code="token_expired",
            message=message,
            status_code=HTTP_FAILED_DEPENDENCY,
            hint="Reconnect the marketplace account",
        )


class ConfigurationMissing(AppError):
    """Operator configuration missing (500). Terminal until fixed."""

    def __init__(self, code: str = "server_error", message: str = "Server configuration missing"):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


class RedirectIdentifierMissing(ConfigurationMissing):
    """No RUName configured for the account's environment."""

    def __init__(self, environment: str):
        super().__init__(
            code="missing_runame_for_environment",
            message=f"Missing RUName for environment {environment}",
        )


class CredentialsMissing(ConfigurationMissing):
    """Neither stored nor fallback OAuth client credentials are usable."""

    def __init__(self):
        super().__init__(code="server_error", message="Credentials missing")


class RefreshFailed(AppError):
    """
    Provider refused the refresh grant (424).

    The provider error code is surfaced because it is actionable for an
    operator. A later independent invocation may succeed.
    """

    retryable = True

    def __init__(self, provider_code: str, provider_status: Optional[int] = None):
        super().__init__(
            code=provider_code,
            message=f"Token refresh failed: {provider_code}",
            status_code=HTTP_FAILED_DEPENDENCY,
            hint="Token refresh failed",
            details={"provider_status": provider_status},
        )
        self.provider_code = provider_code
        self.provider_status = provider_status


class UpstreamUnavailable(AppError):
    """Provider unreachable or erroring after the retry budget (502). Transient."""

    retryable = True

    def __init__(self, message: str = "eBay API error", provider_status: Optional[int] = None):
        super().__init__(
            code="ebay_unavailable",
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"provider_status": provider_status},
        )
        self.provider_status = provider_status


class InternalServerError(AppError):
    """Generic 500. Used for crypto failures so nothing about keys leaks."""

    def __init__(self, message: str = "Internal error"):
        super().__init__(
            code="server_error",
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """
    Get correlation ID from request or generate new one.

    Checks X-Correlation-ID header first, then request state.
    """
    correlation_id = request.headers.get("X-Correlation-ID")
    if correlation_id:
        return correlation_id

    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id

    return generate_correlation_id()


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Middleware that catches all exceptions and returns consistent error responses.

    IMPORTANT: Stack traces are NEVER returned to clients.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except AppError as e:
            logger.warning(
                "Application error",
                extra={
                    "correlation_id": correlation_id,
                    "error_code": e.code,
                    "status_code": e.status_code,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=e.status_code,
                content=e.to_dict(),
                headers={"X-Correlation-ID": correlation_id},
            )

        except HTTPException as e:
            logger.warning(
                "HTTP exception",
                extra={
                    "correlation_id": correlation_id,
                    "status_code": e.status_code,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=e.status_code,
                content={"error": str(e.detail)},
                headers={"X-Correlation-ID": correlation_id},
            )

        except Exception as e:
            logger.exception(
                "Unhandled exception",
                extra={
                    "correlation_id": correlation_id,
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "server_error"},
                headers={"X-Correlation-ID": correlation_id},
            )
