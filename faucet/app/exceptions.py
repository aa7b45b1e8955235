"""Custom exceptions for the faucet application."""

from typing import Any

from faucet.app.core.utils import ms_to_iso, now_ms


class FaucetException(Exception):
    """Base class for faucet exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code and error code for consistent HTTP
    response handling.
    """
    status_code: int = 500
    error: str = "internal_error"

    def __init__(self, message: str = "Faucet error"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict[str, Any]:
        """Convert to API response body."""
        return {"error": self.error, "message": self.message}

    def headers(self) -> dict[str, str] | None:
        return None


class ValidationError(FaucetException):
    """Raised for malformed or missing request fields.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    error = "validation_error"

    def __init__(self, message: str, error: str | None = None, **details: Any):
        self.details = details
        if error:
            self.error = error
        super().__init__(message)

    def to_response(self) -> dict[str, Any]:
        return {**super().to_response(), **self.details}


class AuthenticationError(FaucetException):
    """Raised when the shared secret or a caller credential is rejected.

    ``check`` names the check that failed; it is what gets audited.
    Maps to HTTP 401 Unauthorized.
    """
    status_code = 401
    error = "authentication_failed"

    def __init__(self, message: str = "Invalid password", check: str = "invalid_password"):
        self.check = check
        super().__init__(message)


class InvalidCredentialFormatError(AuthenticationError):
    """Raised when a BYO credential is syntactically malformed.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    error = "invalid_api_key"

    def __init__(
        self,
        message: str = "API key format is invalid. Expected: TEST_API_KEY:xxx:xxx",
    ):
        super().__init__(message, check="invalid_api_key_format")


class CredentialRevokedError(AuthenticationError):
    """Raised when a BYO credential digest is on the revoked list.

    Maps to HTTP 403 Forbidden.
    """
    status_code = 403
    error = "api_key_revoked"

    def __init__(
        self,
        message: str = "This API key has been revoked. Please contact support.",
    ):
        super().__init__(message, check="revoked_key_attempt")


class QuotaExceededError(FaucetException):
    """Raised when a limiter trips (infrastructure, wallet or IP quota).

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    error = "rate_limit_exceeded"

    def __init__(
        self,
        scope: str,
        reset_at: int | None = None,
        detail: str | None = None,
    ):
        self.scope = scope
        self.reset_at = reset_at
        super().__init__(detail or "Rate limit exceeded. Please try again later.")

    @property
    def retry_after(self) -> int:
        """Seconds until the limiter admits a new event (at least 1)."""
        if self.reset_at is None:
            return 1
        return max(1, -(-(self.reset_at - now_ms()) // 1000))

    def to_response(self) -> dict[str, Any]:
        return {
            **super().to_response(),
            "scope": self.scope,
            "resetTime": ms_to_iso(self.reset_at),
        }

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class ServiceDisabledError(FaucetException):
    """Raised while the faucet is switched off for maintenance.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503
    error = "faucet_disabled"

    def __init__(
        self,
        message: str = "The faucet is currently under maintenance. Please try again later.",
    ):
        super().__init__(message)


class NoCredentialsError(FaucetException):
    """Raised when the shared credential pool is empty.

    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503
    error = "no_api_keys_configured"

    def __init__(
        self,
        message: str = "Default faucet is not available. Please use your own API key.",
    ):
        super().__init__(message)


class CredentialPoolExhaustedError(FaucetException):
    """Raised when every pooled credential reported exhaustion or failed.

    Carries the last upstream response for diagnostics.
    Maps to HTTP 503 Service Unavailable.
    """
    status_code = 503
    error = "credentials_exhausted"

    def __init__(
        self,
        attempts: int,
        last_status: int | None = None,
        last_body: Any = None,
        message: str = "All faucet API keys are currently exhausted. Please try again later.",
    ):
        self.attempts = attempts
        self.last_status = last_status
        self.last_body = last_body
        super().__init__(message)

    def to_response(self) -> dict[str, Any]:
        return {
            **super().to_response(),
            "attempts": self.attempts,
            "upstreamStatus": self.last_status,
        }


class UpstreamError(FaucetException):
    """Raised for a non-quota failure reported by the upstream provider.

    The upstream status code is passed through.
    """
    error = "upstream_error"

    def __init__(self, status_code: int, body: Any = None):
        self.status_code = status_code if status_code >= 400 else 502
        self.body = body
        message = "Failed to claim tokens"
        if isinstance(body, dict) and body.get("message"):
            message = str(body["message"])
        super().__init__(message)

    def to_response(self) -> dict[str, Any]:
        code = self.body.get("code") if isinstance(self.body, dict) else None
        return {
            **super().to_response(),
            "code": code,
            "details": self.body,
        }


class TransportError(FaucetException):
    """Raised when the upstream provider could not be reached.

    Maps to HTTP 504 on timeout and 502 otherwise.
    """
    error = "upstream_unreachable"

    def __init__(self, detail: str = "Upstream request failed", timed_out: bool = False):
        self.timed_out = timed_out
        self.status_code = 504 if timed_out else 502
        super().__init__(detail)


class InternalError(FaucetException):
    """Raised for unexpected internal failures.

    Maps to HTTP 500 Internal Server Error.
    """
    status_code = 500
    error = "internal_error"
