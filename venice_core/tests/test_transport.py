import time

import httpx
import pytest

from venice_core.domain.exceptions import (
    ApiError,
    AuthenticationError,
    RateLimitError,
    ServerError,
)
from venice_core.providers.transport import check_response, parse_rate_limit_headers


def test_check_response_ok():
    check_response(httpx.Response(200, json={"ok": True}))


def test_check_response_auth():
    with pytest.raises(AuthenticationError) as exc:
        check_response(httpx.Response(401, json={"error": "Invalid API key"}))
    assert exc.value.http_status == 401
    assert "Invalid API key" in exc.value.message


def test_check_response_rate_limit_with_retry_after():
    resp = httpx.Response(429, headers={"retry-after": "3"}, json={"error": {"message": "Too many requests"}})
    with pytest.raises(RateLimitError) as exc:
        check_response(resp)
    assert exc.value.retry_after == 3.0
    assert "Too many requests" in exc.value.message


def test_check_response_rate_limit_epoch_reset():
    reset_at = int(time.time()) + 10
    resp = httpx.Response(429, headers={"x-ratelimit-reset-requests": str(reset_at)}, text="limited")
    with pytest.raises(RateLimitError) as exc:
        check_response(resp)
    assert 0.0 <= exc.value.retry_after <= 10.0


def test_check_response_server_and_client_errors():
    with pytest.raises(ServerError) as exc:
        check_response(httpx.Response(503, text="unavailable"))
    assert exc.value.message == "API Error: 503 - unavailable"

    with pytest.raises(ApiError) as exc:
        check_response(httpx.Response(400, json={"message": "bad prompt"}))
    assert not isinstance(exc.value, (ServerError, AuthenticationError, RateLimitError))
    assert exc.value.http_status == 400
    assert exc.value.message == "API Error: 400 - bad prompt"


def test_parse_rate_limit_headers():
    headers = httpx.Headers(
        {
            "x-ratelimit-limit-requests": "50",
            "x-ratelimit-remaining-requests": "3",
            "x-ratelimit-remaining-tokens": "12000",
            "x-ratelimit-reset-requests": "30",
            "x-venice-balance-usd": "4.25",
        }
    )
    info = parse_rate_limit_headers(headers)
    assert info.limit_requests == 50
    assert info.remaining_requests == 3
    assert info.remaining_tokens == 12000
    assert info.reset_requests == 30.0
    assert info.balance_usd == 4.25
    assert info.balance_diem is None


def test_parse_rate_limit_headers_absent():
    assert parse_rate_limit_headers(httpx.Headers({"content-type": "application/json"})) is None
