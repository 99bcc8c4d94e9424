"""API client for the Claude Code OAuth usage endpoints.

Fetches the usage and profile snapshots with bearer authentication, retries
transient failures with linear backoff and converts every failure into an
``APIError`` subclass.
"""

from __future__ import annotations

import http.client
import json
import logging
import threading
import time
from typing import Any, Callable, TypeVar
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from claude_usage.api.models import ProfileSnapshot, UsageSnapshot
from claude_usage.api.retry import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_TIMEOUT,
    retry_request,
)
from claude_usage.config.audit import log_api_request, log_api_retry
from claude_usage.config.credentials import CredentialResolver, OAuthCredentials
from claude_usage.config.settings import API_BETA_HEADER, DEFAULT_BASE_URL, DEFAULT_USER_AGENT
from claude_usage.errors import (
    APIError,
    CredentialsCorruptedError,
    DecodingError,
    MissingCredentialsError,
    NoRefreshTokenError,
    NoTokenError,
    RequestCancelledError,
    TokenExpiredError,
    TokenRefreshFailedError,
    categorize_http_error,
    categorize_network_error,
)

logger = logging.getLogger(__name__)

# API endpoints
USAGE_ENDPOINT = "/api/oauth/usage"
PROFILE_ENDPOINT = "/api/oauth/profile"
TOKEN_ENDPOINT = "/api/oauth/token"

T = TypeVar("T")


def _check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise RequestCancelledError()


class UsageClient:
    """Authenticated client for ``/api/oauth/usage`` and ``/api/oauth/profile``.

    The client holds no state besides its configuration and the credential
    resolver, so one instance can serve concurrent requests.

    Args:
        resolver: Source of the OAuth access token.
        base_url: API host, without trailing slash.
        user_agent: Value of the User-Agent header.
        timeout: Per-request timeout in seconds.
        max_attempts: Total attempts per fetch, including the first.
        retry_base_delay: Linear backoff unit in seconds.
    """

    def __init__(
        self,
        resolver: CredentialResolver | None = None,
        base_url: str = DEFAULT_BASE_URL,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = DEFAULT_TIMEOUT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
    ):
        self.resolver = resolver or CredentialResolver()
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay

    @classmethod
    def from_config(cls, config: dict, resolver: CredentialResolver | None = None) -> "UsageClient":
        return cls(
            resolver or CredentialResolver.from_config(config),
            base_url=config["base_url"],
            user_agent=config["user_agent"],
            timeout=config["request_timeout_seconds"],
            max_attempts=config["max_attempts"],
            retry_base_delay=config["retry_base_delay_seconds"],
        )

    def fetch_usage(self, cancel_event: threading.Event | None = None) -> UsageSnapshot:
        """Fetch current utilization of the rolling quota windows.

        Raises:
            APIError: Classified failure after retries are exhausted.
        """
        return self._perform_request(USAGE_ENDPOINT, UsageSnapshot.from_dict, cancel_event)

    def fetch_profile(self, cancel_event: threading.Event | None = None) -> ProfileSnapshot:
        """Fetch account and organization metadata.

        Raises:
            APIError: Classified failure after retries are exhausted.
        """
        return self._perform_request(PROFILE_ENDPOINT, ProfileSnapshot.from_dict, cancel_event)

    def get_token(self) -> str:
        """Return a usable access token.

        Raises:
            NoTokenError: No credentials and no credentials file.
            CredentialsCorruptedError: The file exists but yields no token.
            TokenExpiredError: The token expires within the safety buffer.
        """
        # Resolve once so the expiry check sees the same credentials
        try:
            credentials = self.resolver.get_credentials()
        except MissingCredentialsError as e:
            if self.resolver.credentials_file_exists():
                raise CredentialsCorruptedError(details=e.details) from e
            raise NoTokenError(details=e.details) from e

        if self.resolver.is_expired(credentials):
            raise TokenExpiredError()

        return credentials.access_token

    def build_request(self, endpoint: str, token: str) -> Request:
        return Request(
            f"{self.base_url}{endpoint}",
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
                "anthropic-beta": API_BETA_HEADER,
                "User-Agent": self.user_agent,
            },
            method="GET",
        )

    def _perform_request(
        self,
        endpoint: str,
        decode: Callable[[Any], T],
        cancel_event: threading.Event | None,
    ) -> T:
        _check_cancelled(cancel_event)
        token = self.get_token()
        request = self.build_request(endpoint, token)
        attempt = 0

        def make_request() -> T:
            nonlocal attempt
            attempt += 1
            _check_cancelled(cancel_event)
            try:
                payload = self._execute(request, cancel_event)
                result = decode(payload)
            except RequestCancelledError:
                raise
            except APIError as e:
                log_api_request(
                    endpoint,
                    success=False,
                    status_code=getattr(e, "status_code", None),
                    error=e.kind,
                    attempt=attempt,
                )
                raise
            log_api_request(endpoint, success=True, status_code=200, attempt=attempt)
            return result

        def on_retry(failed_attempt: int, error: Exception, delay: float) -> None:
            logger.info(
                "%s attempt %d failed: %s; retrying in %.0fs",
                endpoint,
                failed_attempt,
                error,
                delay,
            )
            log_api_retry(endpoint, failed_attempt, delay, str(error))

        return retry_request(
            make_request,
            max_attempts=self.max_attempts,
            base_delay=self.retry_base_delay,
            on_retry=on_retry,
            sleep=lambda delay: self._sleep(delay, cancel_event),
        )

    def _execute(self, request: Request, cancel_event: threading.Event | None) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            APIError: Classified HTTP, transport or decoding failure.
        """
        try:
            with urlopen(request, timeout=self.timeout) as response:
                status = response.status
                body = response.read()
        except HTTPError as e:
            _check_cancelled(cancel_event)
            raise categorize_http_error(e.code, _read_error_body(e)) from e
        except URLError as e:
            _check_cancelled(cancel_event)
            raise categorize_network_error(e) from e
        except (OSError, http.client.HTTPException) as e:
            _check_cancelled(cancel_event)
            raise categorize_network_error(e) from e

        _check_cancelled(cancel_event)

        if not 200 <= status < 300:
            raise categorize_http_error(status, body)

        try:
            return json.loads(body)
        except ValueError as e:
            raise DecodingError(str(e)) from e

    def _sleep(self, delay: float, cancel_event: threading.Event | None) -> None:
        """Backoff wait that wakes up early when the refresh is cancelled."""
        if cancel_event is None:
            time.sleep(delay)
        elif cancel_event.wait(delay):
            raise RequestCancelledError()

    def refresh_access_token(self) -> OAuthCredentials:
        """Exchange the stored refresh token for a new access token.

        The result is returned to the caller only; it is never written back
        to the credentials file or the secret store.

        Raises:
            NoRefreshTokenError: The stored credentials carry no refresh token.
            TokenRefreshFailedError: The token endpoint answered non-200.
            APIError: Transport or decoding failure.
        """
        try:
            current = self.resolver.get_credentials()
        except MissingCredentialsError as e:
            raise NoTokenError(details=e.details) from e
        if not current.refresh_token:
            raise NoRefreshTokenError()

        body = json.dumps(
            {"grant_type": "refresh_token", "refresh_token": current.refresh_token}
        ).encode()
        request = Request(
            f"{self.base_url}{TOKEN_ENDPOINT}",
            data=body,
            headers={"Content-Type": "application/json", "User-Agent": self.user_agent},
            method="POST",
        )

        try:
            with urlopen(request, timeout=self.timeout) as response:
                status = response.status
                raw = response.read()
        except HTTPError as e:
            log_api_request(TOKEN_ENDPOINT, "POST", success=False, status_code=e.code)
            raise TokenRefreshFailedError(e.code) from e
        except (URLError, OSError, http.client.HTTPException) as e:
            raise categorize_network_error(e) from e

        if status != 200:
            raise TokenRefreshFailedError(status)

        try:
            payload = json.loads(raw)
            access_token = payload["access_token"]
        except (ValueError, KeyError, TypeError) as e:
            raise DecodingError(f"token response: {e}") from e

        expires_in = payload.get("expires_in")
        expires_at = None
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            expires_at = int((time.time() + expires_in) * 1000)

        log_api_request(TOKEN_ENDPOINT, "POST", success=True, status_code=status)
        logger.info("Access token refreshed in memory; stored credentials are unchanged")
        return OAuthCredentials(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or current.refresh_token,
            expires_at=expires_at,
            subscription_type=current.subscription_type,
            rate_limit_tier=current.rate_limit_tier,
            source="refresh",
        )


def _read_error_body(error: HTTPError) -> bytes:
    if getattr(error, "fp", None) is None:
        return b""
    try:
        return error.read()
    except OSError:
        return b""


__all__ = [
    "USAGE_ENDPOINT",
    "PROFILE_ENDPOINT",
    "TOKEN_ENDPOINT",
    "UsageClient",
]
