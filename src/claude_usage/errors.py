"""Categorized error handling with actionable messages.

Every failure the poller can observe is a ``ClaudeUsageError`` subclass. API
errors additionally carry class-level classification (``kind``, ``category``,
``retryable``, ``action_hint``) so the retry loop and the poller never have to
inspect messages or status codes themselves.
"""

from __future__ import annotations

import errno
import json
import socket
import ssl
from enum import Enum, IntEnum
from typing import ClassVar


class ExitCode(IntEnum):
    """Exit codes for scripting integration.

    Standard categories:
    - 0: Success
    - 1-9: Usage/config errors (user can fix)
    - 10-19: Authentication errors
    - 20-29: Network errors
    - 30-39: API errors
    - 40-49: System errors
    """

    SUCCESS = 0

    USAGE_ERROR = 1
    INVALID_ARGUMENT = 4

    AUTH_EXPIRED = 10
    AUTH_INVALID = 11
    AUTH_MISSING = 12
    AUTH_PERMISSION = 13

    NETWORK_OFFLINE = 20
    NETWORK_TIMEOUT = 21
    NETWORK_DNS = 22
    NETWORK_TLS = 23

    API_ERROR = 30
    API_RATE_LIMIT = 31
    API_SERVER_ERROR = 32
    API_DATA_INVALID = 33

    SYSTEM_ERROR = 49


class ErrorCategory(str, Enum):
    """User-facing grouping of failures."""

    AUTHENTICATION = "authentication"
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    PERMISSION = "permission"
    SERVER = "server"
    UNKNOWN = "unknown"

    @property
    def recoverable(self) -> bool:
        """Whether retrying later can succeed without user action."""
        return self not in (ErrorCategory.AUTHENTICATION, ErrorCategory.PERMISSION)


class ClaudeUsageError(Exception):
    """Base exception for claude-usage with structured error info.

    Attributes:
        message: Human-readable error message.
        code: Exit code for scripting.
        suggestion: Actionable recovery suggestion.
        details: Optional additional context.
    """

    code: ClassVar[ExitCode] = ExitCode.USAGE_ERROR
    suggestion: ClassVar[str] = ""

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        details: str | None = None,
    ):
        self.message = message
        self._suggestion = suggestion
        self.details = details
        super().__init__(message)

    def get_suggestion(self) -> str:
        """Get the recovery suggestion."""
        return self._suggestion or self.suggestion

    def format_full(self) -> str:
        """Format the complete error message with suggestion."""
        parts = [f"Error: {self.message}"]
        if self.details:
            parts.append(f"Details: {self.details}")
        suggestion = self.get_suggestion()
        if suggestion:
            parts.append(f"Suggestion: {suggestion}")
        return "\n".join(parts)


# Credential source errors
#
# Raised by the individual credential sources. The resolver collects them so
# diagnostics can tell "absent" from "present but corrupt" from "store
# unreachable".


class CredentialError(ClaudeUsageError):
    """A credential source could not produce OAuth credentials."""

    code = ExitCode.AUTH_INVALID
    reason: ClassVar[str] = "unknown"


class CredentialsFileNotFoundError(CredentialError):
    """Credentials file does not exist."""

    code = ExitCode.AUTH_MISSING
    reason = "file_not_found"
    suggestion = "Run 'claude' and sign in to create the credentials file."


class CredentialsFileUnreadableError(CredentialError):
    """Credentials file exists but cannot be read."""

    reason = "file_unreadable"
    suggestion = "Check the permissions of ~/.claude/.credentials.json."


class InvalidCredentialsError(CredentialError):
    """Credentials payload is not valid JSON."""

    reason = "invalid_json"
    suggestion = "Your credentials appear corrupted. Run 'claude' to re-authenticate."


class MissingOAuthDataError(CredentialError):
    """Credentials payload has no usable claudeAiOauth section."""

    reason = "missing_oauth_data"
    suggestion = "Run 'claude' and sign in with your Claude account."


class SecretStoreAccessError(CredentialError):
    """The secret-store lookup command failed or could not be started."""

    reason = "secret_store_unavailable"
    suggestion = "Unlock the keychain or sign in with 'claude' again."

    def __init__(self, message: str, status: int = -1, **kwargs):
        self.status = status
        super().__init__(message, **kwargs)


class SecretStoreDataCorruptedError(CredentialError):
    """The secret-store lookup returned nothing usable."""

    reason = "secret_store_corrupted"
    suggestion = "Run 'claude' to re-authenticate."


class MissingCredentialsError(CredentialError):
    """No credential source produced credentials."""

    code = ExitCode.AUTH_MISSING
    reason = "missing_credentials"
    suggestion = "Run 'claude' to install and authenticate with Claude Code first."

    def __init__(self, message: str, failures: list[tuple[str, CredentialError]] | None = None):
        self.failures = list(failures or [])
        details = "; ".join(f"{name}: {err.message}" for name, err in self.failures) or None
        super().__init__(message, details=details)


# API errors


class APIError(ClaudeUsageError):
    """Base class for failures surfaced by the API client."""

    code = ExitCode.API_ERROR
    kind: ClassVar[str] = "unknown"
    category: ClassVar[ErrorCategory] = ErrorCategory.UNKNOWN
    retryable: ClassVar[bool] = False
    action_hint: ClassVar[str | None] = None

    @property
    def recoverable(self) -> bool:
        return self.category.recoverable


class AuthenticationError(APIError):
    """Credentials are missing, expired or unusable."""

    code = ExitCode.AUTH_INVALID
    category = ErrorCategory.AUTHENTICATION
    action_hint = "Run: claude login"
    suggestion = "Re-authenticate with Claude Code by running 'claude' and signing in again."


class NoTokenError(AuthenticationError):
    code = ExitCode.AUTH_MISSING
    kind = "no_token"

    def __init__(self, message: str = "No credentials found. Start Claude to login", **kwargs):
        super().__init__(message, **kwargs)


class TokenExpiredError(AuthenticationError):
    code = ExitCode.AUTH_EXPIRED
    kind = "token_expired"

    def __init__(self, message: str = "Session expired. Start Claude to refresh", **kwargs):
        super().__init__(message, **kwargs)


class CredentialsCorruptedError(AuthenticationError):
    kind = "credentials_corrupted"

    def __init__(self, message: str = "Credentials corrupted. Start Claude to login", **kwargs):
        super().__init__(message, **kwargs)


class NoRefreshTokenError(AuthenticationError):
    kind = "no_refresh_token"

    def __init__(self, message: str = "No refresh token. Start Claude to refresh", **kwargs):
        super().__init__(message, **kwargs)


class TokenRefreshFailedError(AuthenticationError):
    kind = "token_refresh_failed"

    def __init__(self, status_code: int, **kwargs):
        self.status_code = status_code
        super().__init__(
            f"Token refresh failed ({status_code}). Start Claude to refresh", **kwargs
        )


class ForbiddenError(APIError):
    """API access denied (HTTP 403)."""

    code = ExitCode.AUTH_PERMISSION
    kind = "forbidden"
    category = ErrorCategory.PERMISSION
    action_hint = "Check your subscription status"

    def __init__(self, message: str = "Access denied. Check your subscription.", **kwargs):
        super().__init__(message, **kwargs)


class RateLimitedError(APIError):
    """API rate limit exceeded (HTTP 429)."""

    code = ExitCode.API_RATE_LIMIT
    kind = "rate_limited"
    category = ErrorCategory.RATE_LIMIT
    action_hint = "Please wait a moment"
    suggestion = "You've hit the API rate limit. Wait a few minutes before trying again."

    def __init__(self, message: str = "Rate limited. Please wait.", **kwargs):
        super().__init__(message, **kwargs)


class NotFoundError(APIError):
    kind = "not_found"

    def __init__(self, message: str = "API endpoint not found", **kwargs):
        super().__init__(message, **kwargs)


class ClientError(APIError):
    """Any other 4xx response."""

    kind = "client_error"

    def __init__(self, status_code: int, server_message: str | None = None, **kwargs):
        self.status_code = status_code
        self.server_message = server_message
        if server_message:
            message = f"Request failed ({status_code}): {server_message}"
        else:
            message = f"Request failed: {status_code}"
        super().__init__(message, **kwargs)


class ServerError(APIError):
    """API server error (5xx)."""

    code = ExitCode.API_SERVER_ERROR
    kind = "server_error"
    category = ErrorCategory.SERVER
    retryable = True
    action_hint = "Try again later"
    suggestion = "The Anthropic API is experiencing issues. Check status.anthropic.com."

    def __init__(self, status_code: int, **kwargs):
        self.status_code = status_code
        super().__init__(f"Server error ({status_code}). Try again later.", **kwargs)


class HTTPStatusError(APIError):
    """A status code outside the 2xx-5xx ranges handled above."""

    kind = "http_error"

    def __init__(self, status_code: int, **kwargs):
        self.status_code = status_code
        super().__init__(f"HTTP error: {status_code}", **kwargs)


class DecodingError(APIError):
    """Response body did not match the expected schema."""

    code = ExitCode.API_DATA_INVALID
    kind = "decoding_error"

    def __init__(self, reason: str, **kwargs):
        super().__init__(f"Failed to parse response: {reason}", **kwargs)


# Transport errors


class TransportError(APIError):
    """Failure below HTTP: the request never produced a response."""

    code = ExitCode.NETWORK_OFFLINE
    category = ErrorCategory.NETWORK
    action_hint = "Check your internet connection"
    suggestion = "Check your internet connection and try again."


class NetworkError(TransportError):
    kind = "network_error"
    retryable = True

    def __init__(self, reason: str, **kwargs):
        super().__init__(f"Network error: {reason}", **kwargs)


class NetworkUnavailableError(TransportError):
    kind = "network_unavailable"
    retryable = True

    def __init__(self, message: str = "No internet connection", **kwargs):
        super().__init__(message, **kwargs)


class HostUnreachableError(TransportError):
    code = ExitCode.NETWORK_DNS
    kind = "host_unreachable"
    retryable = True
    action_hint = "Server may be temporarily unavailable"

    def __init__(self, message: str = "Cannot reach server", **kwargs):
        super().__init__(message, **kwargs)


class RequestTimeoutError(TransportError):
    code = ExitCode.NETWORK_TIMEOUT
    kind = "timeout"
    retryable = True
    action_hint = "Server may be temporarily unavailable"

    def __init__(self, message: str = "Request timed out", **kwargs):
        super().__init__(message, **kwargs)


class SSLConnectionError(TransportError):
    code = ExitCode.NETWORK_TLS
    kind = "ssl_error"
    action_hint = "Check proxy or certificate settings"

    def __init__(self, message: str = "Secure connection failed", **kwargs):
        super().__init__(message, **kwargs)


class RequestCancelledError(APIError):
    """The request was abandoned because its refresh was superseded.

    Not a failure: callers must not report it to the user.
    """

    kind = "cancelled"

    def __init__(self, message: str = "Request cancelled", **kwargs):
        super().__init__(message, **kwargs)


def extract_error_message(body: bytes | str | None) -> str | None:
    """Pull a server-provided message out of an error body.

    Tries ``{"error": {"message": ...}}`` first, then ``{"message": ...}``.
    """
    if not body:
        return None
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None

    error = payload.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(payload.get("message"), str):
        return payload["message"]
    return None


def categorize_http_error(status_code: int, body: bytes | str | None = None) -> APIError:
    """Convert a non-2xx HTTP status code to the matching error type.

    Args:
        status_code: HTTP status code.
        body: Raw response body, used for 4xx server messages.

    Returns:
        Appropriate APIError subclass instance.
    """
    if status_code == 401:
        return TokenExpiredError()
    elif status_code == 403:
        return ForbiddenError()
    elif status_code == 404:
        return NotFoundError()
    elif status_code == 429:
        return RateLimitedError()
    elif 400 <= status_code < 500:
        return ClientError(status_code, extract_error_message(body))
    elif 500 <= status_code < 600:
        return ServerError(status_code)
    else:
        return HTTPStatusError(status_code)


_UNAVAILABLE_ERRNOS = {errno.ENETDOWN, errno.ENETUNREACH, errno.ENETRESET}


def categorize_network_error(error: BaseException) -> APIError:
    """Convert a transport-level exception to the matching error type.

    Args:
        error: Exception raised by urllib/socket, or the ``reason`` of a
            ``URLError``.

    Returns:
        Appropriate TransportError subclass instance.
    """
    reason = getattr(error, "reason", None)
    if isinstance(reason, BaseException):
        error = reason

    if isinstance(error, (socket.timeout, TimeoutError)):
        return RequestTimeoutError()
    if isinstance(error, ssl.SSLError):
        return SSLConnectionError(details=str(error))
    if isinstance(error, socket.gaierror):
        return HostUnreachableError(details=str(error))
    if isinstance(error, ConnectionRefusedError):
        return HostUnreachableError(details=str(error))
    if isinstance(error, (ConnectionResetError, ConnectionAbortedError)):
        return NetworkUnavailableError(details=str(error))
    if isinstance(error, OSError) and error.errno in _UNAVAILABLE_ERRNOS:
        return NetworkUnavailableError(details=str(error))

    text = str(reason if reason is not None else error)
    lowered = text.lower()
    if "timed out" in lowered or "timeout" in lowered:
        return RequestTimeoutError()
    if "name or service not known" in lowered or "getaddrinfo" in lowered:
        return HostUnreachableError(details=text)
    if "certificate" in lowered or "ssl" in lowered:
        return SSLConnectionError(details=text)
    return NetworkError(text)


def format_error_for_user(error: Exception, verbose: bool = False) -> str:
    """Format any exception for user display.

    Args:
        error: Exception to format.
        verbose: If True, include details and suggestions.

    Returns:
        Formatted error message string.
    """
    if isinstance(error, ClaudeUsageError):
        if verbose:
            return error.format_full()
        return f"Error: {error.message}"
    return f"Error: {error}"


def get_exit_code(error: Exception) -> int:
    """Get the exit code for an exception."""
    if isinstance(error, ClaudeUsageError):
        return error.code
    elif isinstance(error, ValueError):
        return ExitCode.INVALID_ARGUMENT
    return ExitCode.SYSTEM_ERROR


__all__ = [
    "ExitCode",
    "ErrorCategory",
    "ClaudeUsageError",
    # Credential sources
    "CredentialError",
    "CredentialsFileNotFoundError",
    "CredentialsFileUnreadableError",
    "InvalidCredentialsError",
    "MissingOAuthDataError",
    "SecretStoreAccessError",
    "SecretStoreDataCorruptedError",
    "MissingCredentialsError",
    # API
    "APIError",
    "AuthenticationError",
    "NoTokenError",
    "TokenExpiredError",
    "CredentialsCorruptedError",
    "NoRefreshTokenError",
    "TokenRefreshFailedError",
    "ForbiddenError",
    "RateLimitedError",
    "NotFoundError",
    "ClientError",
    "ServerError",
    "HTTPStatusError",
    "DecodingError",
    # Transport
    "TransportError",
    "NetworkError",
    "NetworkUnavailableError",
    "HostUnreachableError",
    "RequestTimeoutError",
    "SSLConnectionError",
    "RequestCancelledError",
    # Utilities
    "extract_error_message",
    "categorize_http_error",
    "categorize_network_error",
    "format_error_for_user",
    "get_exit_code",
]
