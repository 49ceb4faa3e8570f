"""Tests for the signed LN Markets REST client against a mocked transport."""

from unittest.mock import patch

import httpx
import pytest

from btc_monitor.schemas.credential import LNMarketsCredentials
from btc_monitor.services.lnmarkets_client import ErrorKind, LNMarketsClient
from btc_monitor.services.signature import sign


def _make_client(handler, credentials: LNMarketsCredentials) -> LNMarketsClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LNMarketsClient(credentials, http_client=http)


@pytest.mark.asyncio
async def test_request_sends_wire_headers_and_valid_signature(credentials):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(200, json={"uid": "u1"})

    client = _make_client(handler, credentials)
    result = await client.test_connection()

    assert result.success is True
    assert result.data == {"uid": "u1"}
    request = seen["request"]
    assert request.method == "GET"
    assert request.url.host == "api.lnmarkets.com"
    assert request.url.path == "/v2/user"
    assert request.headers["LNM-ACCESS-KEY"] == credentials.key
    assert request.headers["LNM-ACCESS-PASSPHRASE"] == credentials.passphrase
    timestamp = request.headers["LNM-ACCESS-TIMESTAMP"]
    assert timestamp.isdigit() and len(timestamp) == 13
    expected = sign(credentials.secret, timestamp, "GET", "/v2/user", "")
    assert request.headers["LNM-ACCESS-SIGNATURE"] == expected
    assert "content-type" not in request.headers


@pytest.mark.asyncio
async def test_testnet_uses_testnet_host(credentials):
    seen = {}

    def handler(request):
        seen["host"] = request.url.host
        return httpx.Response(200, json=[])

    testnet = credentials.model_copy(update={"network": "testnet"})
    await _make_client(handler, testnet).get_deposits()
    assert seen["host"] == "api.testnet.lnmarkets.com"


@pytest.mark.asyncio
async def test_get_trades_signs_query_string(credentials):
    seen = {}

    def handler(request):
        seen["request"] = request
        return httpx.Response(200, json=[{"id": "t1"}])

    result = await _make_client(handler, credentials).get_trades(limit=50)

    request = seen["request"]
    assert request.url.path == "/v2/futures/trades"
    assert request.url.params["type"] == "closed"
    assert request.url.params["limit"] == "50"
    query = request.url.query.decode()
    expected = sign(
        credentials.secret, request.headers["LNM-ACCESS-TIMESTAMP"], "GET", "/v2/futures/trades", query
    )
    assert request.headers["LNM-ACCESS-SIGNATURE"] == expected
    assert result.data == [{"id": "t1"}]


@pytest.mark.asyncio
async def test_post_sends_json_body_and_content_type(credentials):
    seen = {}

    def handler(request):
        seen["request"] = request
        return httpx.Response(200, json={"ok": True})

    await _make_client(handler, credentials).request("POST", "/futures", {"a": 1})

    request = seen["request"]
    assert request.content == b'{"a":1}'
    assert request.headers["Content-Type"] == "application/json"
    expected = sign(
        credentials.secret, request.headers["LNM-ACCESS-TIMESTAMP"], "POST", "/v2/futures", '{"a":1}'
    )
    assert request.headers["LNM-ACCESS-SIGNATURE"] == expected


@pytest.mark.asyncio
async def test_every_call_uses_a_fresh_timestamp(credentials):
    stamps = []

    def handler(request):
        stamps.append(request.headers["LNM-ACCESS-TIMESTAMP"])
        return httpx.Response(200, json={})

    client = _make_client(handler, credentials)
    with patch("btc_monitor.services.lnmarkets_client.time") as fake_time:
        fake_time.time.side_effect = [1700000000.0, 1700000001.5]
        await client.test_connection()
        await client.test_connection()

    assert stamps == ["1700000000000", "1700000001500"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, kind, retryable, fragment",
    [
        (401, ErrorKind.INVALID_CREDENTIALS, False, "Invalid LN Markets credentials"),
        (403, ErrorKind.FORBIDDEN, False, "Insufficient permissions"),
        (429, ErrorKind.RATE_LIMITED, True, "rate limit"),
        (500, ErrorKind.UPSTREAM_UNAVAILABLE, True, "try again later"),
        (503, ErrorKind.UPSTREAM_UNAVAILABLE, True, "Try again later"),
    ],
)
async def test_http_errors_map_to_categories(credentials, status, kind, retryable, fragment):
    client = _make_client(lambda request: httpx.Response(status, text="nope"), credentials)

    result = await client.get_withdrawals()

    assert result.success is False
    assert result.status_code == status
    assert result.error_kind == kind
    assert result.retryable is retryable
    assert fragment in result.error


@pytest.mark.asyncio
async def test_other_http_error_includes_raw_body(credentials):
    client = _make_client(lambda request: httpx.Response(418, text="teapot says no"), credentials)

    result = await client.get_trades()

    assert result.error_kind == ErrorKind.HTTP_ERROR
    assert result.error == "HTTP 418: teapot says no"
    assert result.retryable is False


@pytest.mark.asyncio
async def test_timeout_is_returned_not_raised(credentials):
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    result = await _make_client(handler, credentials).get_deposits()

    assert result.success is False
    assert result.error_kind == ErrorKind.TIMEOUT
    assert result.retryable is True


@pytest.mark.asyncio
async def test_connection_error_is_returned_not_raised(credentials):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    result = await _make_client(handler, credentials).get_deposits()

    assert result.error_kind == ErrorKind.NETWORK
    assert "ConnectError" in result.error


@pytest.mark.asyncio
async def test_non_json_success_body(credentials):
    client = _make_client(lambda request: httpx.Response(200, text="<html>"), credentials)

    result = await client.test_connection()

    assert result.success is False
    assert result.error_kind == ErrorKind.INVALID_RESPONSE


@pytest.mark.asyncio
async def test_empty_secret_is_never_sent():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    creds = LNMarketsCredentials.model_construct(key="k", secret="", passphrase="p", network="mainnet")
    result = await _make_client(handler, creds).test_connection()

    assert result.success is False
    assert result.error_kind == ErrorKind.SIGNATURE
    assert calls == []
