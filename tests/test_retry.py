"""
Tests for retry logic.
"""

from unittest.mock import MagicMock

import pytest

from claude_usage.api.retry import calculate_backoff_delay, is_retryable_error, retry_request
from claude_usage.errors import (
    DecodingError,
    ForbiddenError,
    NetworkError,
    RequestCancelledError,
    ServerError,
    SSLConnectionError,
)


class TestCalculateBackoffDelay:
    def test_linear(self):
        assert [calculate_backoff_delay(a) for a in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_custom_base(self):
        assert calculate_backoff_delay(2, base_delay=0.5) == 1.0


class TestIsRetryableError:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (ServerError(500), True),
            (NetworkError("reset"), True),
            (ForbiddenError(), False),
            (SSLConnectionError(), False),
            (DecodingError("bad"), False),
            (RequestCancelledError(), False),
            (ValueError("plain"), False),
        ],
    )
    def test_classification(self, error, expected):
        assert is_retryable_error(error) is expected


class TestRetryRequest:
    def test_success_first_try(self):
        func = MagicMock(return_value="ok")
        sleep = MagicMock()

        assert retry_request(func, sleep=sleep) == "ok"
        assert func.call_count == 1
        sleep.assert_not_called()

    def test_exhausts_attempts(self):
        func = MagicMock(side_effect=ServerError(500))
        sleep = MagicMock()

        with pytest.raises(ServerError):
            retry_request(func, max_attempts=3, sleep=sleep)

        assert func.call_count == 3
        assert [c[0][0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_non_retryable_raises_immediately(self):
        func = MagicMock(side_effect=ForbiddenError())
        sleep = MagicMock()

        with pytest.raises(ForbiddenError):
            retry_request(func, sleep=sleep)

        assert func.call_count == 1
        sleep.assert_not_called()

    def test_on_retry_callback(self):
        error = NetworkError("reset")
        func = MagicMock(side_effect=[error, "ok"])
        on_retry = MagicMock()

        assert retry_request(func, on_retry=on_retry, sleep=MagicMock()) == "ok"
        on_retry.assert_called_once_with(1, error, 1.0)

    def test_sleep_may_abort(self):
        func = MagicMock(side_effect=ServerError(500))
        sleep = MagicMock(side_effect=RequestCancelledError())

        with pytest.raises(RequestCancelledError):
            retry_request(func, sleep=sleep)

        assert func.call_count == 1
