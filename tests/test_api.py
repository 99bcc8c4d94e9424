"""
Tests for the API client.

Tests cover:
- fetch_usage() / fetch_profile() - request building and decoding
- Token checks before any request is made
- Status and transport error classification
- Attempt limit and linear backoff
- Cancellation
- refresh_access_token()
"""

import io
import json
import socket
import ssl
import threading
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import pytest

from claude_usage.api.client import UsageClient
from claude_usage.config.credentials import CredentialResolver
from claude_usage.errors import (
    ClientError,
    CredentialsCorruptedError,
    CredentialsFileNotFoundError,
    DecodingError,
    ForbiddenError,
    HostUnreachableError,
    MissingCredentialsError,
    NetworkError,
    NoRefreshTokenError,
    NoTokenError,
    NotFoundError,
    RateLimitedError,
    RequestCancelledError,
    RequestTimeoutError,
    ServerError,
    SSLConnectionError,
    TokenExpiredError,
    TokenRefreshFailedError,
)

USAGE_URL = "https://api.anthropic.com/api/oauth/usage"


def http_error(code, body=b"", url=USAGE_URL):
    return HTTPError(url=url, code=code, msg="error", hdrs={}, fp=io.BytesIO(body))


@pytest.fixture
def client(mock_resolver):
    return UsageClient(resolver=mock_resolver)


@pytest.fixture
def mock_urlopen():
    with patch("claude_usage.api.client.urlopen") as mock:
        yield mock


@pytest.fixture
def mock_sleep():
    with patch.object(UsageClient, "_sleep") as mock:
        yield mock


# ═══════════════════════════════════════════════════════════════════════════════
# Successful fetches
# ═══════════════════════════════════════════════════════════════════════════════


class TestFetchUsage:
    def test_successful_fetch(self, client, mock_urlopen, make_response, usage_normal):
        mock_urlopen.return_value = make_response(usage_normal)

        result = client.fetch_usage()

        assert result.five_hour.utilization == 34.5
        assert result.seven_day.utilization == 12.3
        assert result.seven_day_opus is None

    def test_wire_values_round_trip(self, client, mock_urlopen, make_response):
        mock_urlopen.return_value = make_response(
            {"five_hour": {"utilization": 42.5, "resets_at": "2025-01-01T00:00:00Z"}}
        )

        result = client.fetch_usage()

        assert result.five_hour.utilization == 42.5
        assert result.five_hour.resets_at == "2025-01-01T00:00:00Z"

    def test_request_headers(self, client, mock_urlopen, make_response, usage_normal):
        mock_urlopen.return_value = make_response(usage_normal)

        client.fetch_usage()

        request = mock_urlopen.call_args[0][0]
        assert request.full_url == USAGE_URL
        assert request.get_method() == "GET"
        assert request.get_header("Authorization") == "Bearer sk-ant-REDACTED"
        assert request.get_header("Anthropic-beta") == "oauth-2025-04-20"
        assert request.get_header("Content-type") == "application/json"
        assert request.get_header("User-agent") == "claude-code/2.1.7"
        assert mock_urlopen.call_args[1]["timeout"] == 30

    def test_custom_base_url(self, mock_resolver, mock_urlopen, make_response, usage_normal):
        client = UsageClient(resolver=mock_resolver, base_url="http://localhost:8080/")
        mock_urlopen.return_value = make_response(usage_normal)

        client.fetch_usage()

        assert mock_urlopen.call_args[0][0].full_url == "http://localhost:8080/api/oauth/usage"


class TestFetchProfile:
    def test_successful_fetch(self, client, mock_urlopen, make_response, profile_normal):
        mock_urlopen.return_value = make_response(profile_normal)

        result = client.fetch_profile()

        assert mock_urlopen.call_args[0][0].full_url.endswith("/api/oauth/profile")
        assert result.account.display_name == "Tester"
        assert result.account.has_max_plan is True
        assert result.organization.rate_limit_tier == "default_claude_max_20x"

    def test_empty_profile(self, client, mock_urlopen, make_response):
        mock_urlopen.return_value = make_response({})

        result = client.fetch_profile()

        assert result.account is None
        assert result.organization is None


# ═══════════════════════════════════════════════════════════════════════════════
# Token checks
# ═══════════════════════════════════════════════════════════════════════════════


class TestTokenChecks:
    def test_no_token_and_no_file(self, client, mock_resolver, mock_urlopen):
        mock_resolver.get_credentials.side_effect = MissingCredentialsError("none")
        mock_resolver.credentials_file_exists.return_value = False

        with pytest.raises(NoTokenError):
            client.fetch_usage()

        mock_urlopen.assert_not_called()

    def test_no_token_but_file_exists(self, client, mock_resolver, mock_urlopen):
        mock_resolver.get_credentials.side_effect = MissingCredentialsError("none")
        mock_resolver.credentials_file_exists.return_value = True

        with pytest.raises(CredentialsCorruptedError):
            client.fetch_usage()

        mock_urlopen.assert_not_called()

    def test_expired_token(self, client, mock_resolver, mock_urlopen):
        mock_resolver.is_expired.return_value = True

        with pytest.raises(TokenExpiredError):
            client.fetch_profile()

        mock_urlopen.assert_not_called()

    def test_credentials_resolved_once(self, client, mock_resolver, oauth_credentials):
        assert client.get_token() == oauth_credentials.access_token

        mock_resolver.get_credentials.assert_called_once_with()
        mock_resolver.is_expired.assert_called_once_with(oauth_credentials)

    def test_cache_expiry_between_checks_is_not_reported_as_expired(self, oauth_credentials):
        source = MagicMock()
        source.name = "file"
        source.load.side_effect = [oauth_credentials, CredentialsFileNotFoundError("gone")]
        client = UsageClient(resolver=CredentialResolver([source], cache_ttl=0))

        assert client.get_token() == oauth_credentials.access_token
        assert source.load.call_count == 1


# ═══════════════════════════════════════════════════════════════════════════════
# Error classification and retries
# ═══════════════════════════════════════════════════════════════════════════════


class TestNonRetryableErrors:
    @pytest.mark.parametrize(
        "status, error_type",
        [
            (401, TokenExpiredError),
            (403, ForbiddenError),
            (404, NotFoundError),
            (429, RateLimitedError),
            (400, ClientError),
            (422, ClientError),
        ],
    )
    def test_single_attempt(self, client, mock_urlopen, mock_sleep, status, error_type):
        mock_urlopen.side_effect = http_error(status)

        with pytest.raises(error_type):
            client.fetch_usage()

        assert mock_urlopen.call_count == 1
        mock_sleep.assert_not_called()

    def test_client_error_nested_message(self, client, mock_urlopen, mock_sleep):
        body = json.dumps({"error": {"type": "invalid_request", "message": "bad scope"}}).encode()
        mock_urlopen.side_effect = http_error(400, body)

        with pytest.raises(ClientError) as exc_info:
            client.fetch_usage()

        assert exc_info.value.status_code == 400
        assert exc_info.value.server_message == "bad scope"
        assert str(exc_info.value) == "Request failed (400): bad scope"

    def test_client_error_flat_message(self, client, mock_urlopen, mock_sleep):
        mock_urlopen.side_effect = http_error(418, b'{"message": "teapot"}')

        with pytest.raises(ClientError) as exc_info:
            client.fetch_usage()

        assert exc_info.value.server_message == "teapot"

    def test_client_error_without_message(self, client, mock_urlopen, mock_sleep):
        mock_urlopen.side_effect = http_error(400, b"<html>bad request</html>")

        with pytest.raises(ClientError) as exc_info:
            client.fetch_usage()

        assert exc_info.value.server_message is None
        assert str(exc_info.value) == "Request failed: 400"

    def test_invalid_json_body(self, client, mock_urlopen, mock_sleep, make_response):
        mock_urlopen.return_value = make_response("not json")

        with pytest.raises(DecodingError):
            client.fetch_usage()

        assert mock_urlopen.call_count == 1
        mock_sleep.assert_not_called()

    def test_schema_mismatch(self, client, mock_urlopen, mock_sleep, make_response):
        mock_urlopen.return_value = make_response({"five_hour": {"utilization": "high"}})

        with pytest.raises(DecodingError):
            client.fetch_usage()

        assert mock_urlopen.call_count == 1

    def test_ssl_error(self, client, mock_urlopen, mock_sleep):
        mock_urlopen.side_effect = URLError(ssl.SSLError("certificate verify failed"))

        with pytest.raises(SSLConnectionError):
            client.fetch_usage()

        assert mock_urlopen.call_count == 1


class TestRetryableErrors:
    def test_server_error_exhausts_three_attempts(self, client, mock_urlopen, mock_sleep):
        mock_urlopen.side_effect = http_error(500)

        with pytest.raises(ServerError) as exc_info:
            client.fetch_usage()

        assert exc_info.value.status_code == 500
        assert mock_urlopen.call_count == 3
        assert [c[0][0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    def test_recovers_on_third_attempt(
        self, client, mock_urlopen, mock_sleep, make_response, usage_normal
    ):
        mock_urlopen.side_effect = [
            http_error(503),
            http_error(503),
            make_response(usage_normal),
        ]

        result = client.fetch_usage()

        assert result.five_hour.utilization == 34.5
        assert mock_urlopen.call_count == 3
        assert [c[0][0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    def test_timeout_is_retried(self, client, mock_urlopen, mock_sleep):
        mock_urlopen.side_effect = URLError(socket.timeout("timed out"))

        with pytest.raises(RequestTimeoutError):
            client.fetch_usage()

        assert mock_urlopen.call_count == 3

    def test_read_timeout_outside_urlerror(self, client, mock_urlopen, mock_sleep):
        mock_urlopen.side_effect = TimeoutError("The read operation timed out")

        with pytest.raises(RequestTimeoutError):
            client.fetch_usage()

        assert mock_urlopen.call_count == 3

    def test_dns_failure_is_retried(self, client, mock_urlopen, mock_sleep):
        mock_urlopen.side_effect = URLError(socket.gaierror(-2, "Name or service not known"))

        with pytest.raises(HostUnreachableError):
            client.fetch_usage()

        assert mock_urlopen.call_count == 3

    def test_last_error_is_surfaced(self, client, mock_urlopen, mock_sleep):
        mock_urlopen.side_effect = [
            http_error(502),
            URLError(socket.timeout("timed out")),
            URLError("something odd"),
        ]

        with pytest.raises(NetworkError):
            client.fetch_usage()

    def test_retry_stops_at_non_retryable(self, client, mock_urlopen, mock_sleep):
        mock_urlopen.side_effect = [http_error(500), http_error(429)]

        with pytest.raises(RateLimitedError):
            client.fetch_usage()

        assert mock_urlopen.call_count == 2
        assert [c[0][0] for c in mock_sleep.call_args_list] == [1.0]

    def test_custom_max_attempts(self, mock_resolver, mock_urlopen, mock_sleep):
        client = UsageClient(resolver=mock_resolver, max_attempts=1)
        mock_urlopen.side_effect = http_error(500)

        with pytest.raises(ServerError):
            client.fetch_usage()

        assert mock_urlopen.call_count == 1
        mock_sleep.assert_not_called()


# ═══════════════════════════════════════════════════════════════════════════════
# Cancellation
# ═══════════════════════════════════════════════════════════════════════════════


class TestCancellation:
    def test_cancelled_before_request(self, client, mock_urlopen):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(RequestCancelledError):
            client.fetch_usage(cancel_event=cancel)

        mock_urlopen.assert_not_called()

    def test_cancel_during_backoff(self, client, mock_urlopen):
        cancel = threading.Event()

        def fail_then_cancel(*args, **kwargs):
            cancel.set()
            raise http_error(500)

        mock_urlopen.side_effect = fail_then_cancel

        with pytest.raises(RequestCancelledError):
            client.fetch_usage(cancel_event=cancel)

        assert mock_urlopen.call_count == 1

    def test_response_after_cancel_is_discarded(
        self, client, mock_urlopen, make_response, usage_normal
    ):
        cancel = threading.Event()
        response = make_response(usage_normal)

        def respond_after_cancel(*args, **kwargs):
            cancel.set()
            return response

        mock_urlopen.side_effect = respond_after_cancel

        with pytest.raises(RequestCancelledError):
            client.fetch_usage(cancel_event=cancel)

    def test_backoff_waits_on_event(self, client):
        cancel = threading.Event()

        with patch.object(cancel, "wait", return_value=False) as mock_wait:
            client._sleep(2.0, cancel)

        mock_wait.assert_called_once_with(2.0)


# ═══════════════════════════════════════════════════════════════════════════════
# Token refresh
# ═══════════════════════════════════════════════════════════════════════════════


class TestRefreshAccessToken:
    def test_success_returns_new_credentials(self, client, mock_urlopen, make_response):
        mock_urlopen.return_value = make_response(
            {"access_token": "new-access", "refresh_token": "new-refresh", "expires_in": 3600}
        )

        result = client.refresh_access_token()

        request = mock_urlopen.call_args[0][0]
        assert request.get_method() == "POST"
        assert request.full_url.endswith("/api/oauth/token")
        assert json.loads(request.data) == {
            "grant_type": "refresh_token",
            "refresh_token": "sk-ant-REDACTED",
        }
        assert result.access_token == "new-access"
        assert result.refresh_token == "new-refresh"
        assert result.expires_at is not None
        assert result.source == "refresh"

    def test_keeps_old_refresh_token_when_not_rotated(self, client, mock_urlopen, make_response):
        mock_urlopen.return_value = make_response({"access_token": "new-access"})

        result = client.refresh_access_token()

        assert result.refresh_token == "sk-ant-REDACTED"
        assert result.expires_at is None

    def test_no_refresh_token(self, client, mock_resolver, mock_urlopen, oauth_credentials):
        mock_resolver.get_credentials.return_value = type(oauth_credentials)(
            access_token="only-access"
        )

        with pytest.raises(NoRefreshTokenError):
            client.refresh_access_token()

        mock_urlopen.assert_not_called()

    def test_endpoint_rejects(self, client, mock_urlopen):
        mock_urlopen.side_effect = http_error(400)

        with pytest.raises(TokenRefreshFailedError) as exc_info:
            client.refresh_access_token()

        assert exc_info.value.status_code == 400

    def test_malformed_response(self, client, mock_urlopen, make_response):
        mock_urlopen.return_value = make_response({"token": "x"})

        with pytest.raises(DecodingError):
            client.refresh_access_token()
