"""Authenticated LN Markets REST client.

Every call is signed with a fresh millisecond timestamp. Failures are
returned as ``ApiResult(success=False, ...)`` and never raised; retry
policy belongs to the caller (see ``services.importer.fetch_with_backoff``).
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlparse

import httpx

from btc_monitor.config import settings
from btc_monitor.schemas.credential import LNMarketsCredentials
from btc_monitor.services.signature import SignatureError, encode_params, sign
from btc_monitor.utils.constants import (
    ENDPOINT_DEPOSITS,
    ENDPOINT_TRADES,
    ENDPOINT_USER,
    ENDPOINT_WITHDRAWALS,
    HEADER_ACCESS_KEY,
    HEADER_PASSPHRASE,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
)
from btc_monitor.utils.logging import mask_secret

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    HTTP_ERROR = "http_error"
    NETWORK = "network"
    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"
    SIGNATURE = "signature"


RETRYABLE_KINDS = {
    ErrorKind.RATE_LIMITED,
    ErrorKind.UPSTREAM_UNAVAILABLE,
    ErrorKind.NETWORK,
    ErrorKind.TIMEOUT,
}

_STATUS_ERRORS: dict[int, tuple[ErrorKind, str]] = {
    401: (
        ErrorKind.INVALID_CREDENTIALS,
        "Invalid LN Markets credentials. Check the API key, secret and passphrase.",
    ),
    403: (
        ErrorKind.FORBIDDEN,
        "Insufficient permissions: this LN Markets API key lacks the required scope.",
    ),
    429: (
        ErrorKind.RATE_LIMITED,
        "LN Markets rate limit reached (about 1 request per second). Wait a moment and retry.",
    ),
    500: (
        ErrorKind.UPSTREAM_UNAVAILABLE,
        "LN Markets internal error. The service is temporarily unavailable, try again later.",
    ),
    503: (
        ErrorKind.UPSTREAM_UNAVAILABLE,
        "LN Markets is temporarily unavailable. Try again later.",
    ),
}


@dataclass
class ApiResult:
    success: bool
    data: Any = None
    error: str | None = None
    status_code: int | None = None
    error_kind: ErrorKind | None = None

    @property
    def retryable(self) -> bool:
        return not self.success and self.error_kind in RETRYABLE_KINDS


def base_url_for(network: str) -> str:
    if network == "testnet":
        return settings.lnm_testnet_url.rstrip("/")
    return settings.lnm_mainnet_url.rstrip("/")


def error_for_response(status_code: int, body: str) -> ApiResult:
    """Map a non-2xx upstream response to a typed failure."""
    kind, message = _STATUS_ERRORS.get(
        status_code, (ErrorKind.HTTP_ERROR, f"HTTP {status_code}: {body}")
    )
    return ApiResult(success=False, error=message, status_code=status_code, error_kind=kind)


class LNMarketsClient:
    """Signed HTTP access to the LN Markets v2 API for one credential set."""

    def __init__(
        self,
        credentials: LNMarketsCredentials,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self.credentials = credentials
        self.base_url = base_url_for(credentials.network)
        self._path_prefix = urlparse(self.base_url).path.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.lnm_timeout_seconds
        self._http = http_client
        self._owns_http = http_client is None

    def _ensure_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self._http

    def build_headers(self, method: str, endpoint: str, params: str, timestamp: str) -> dict[str, str]:
        signature = sign(
            self.credentials.secret,
            timestamp,
            method,
            self._path_prefix + endpoint,
            params,
        )
        headers = {
            HEADER_ACCESS_KEY: self.credentials.key,
            HEADER_SIGNATURE: signature,
            HEADER_PASSPHRASE: self.credentials.passphrase,
            HEADER_TIMESTAMP: timestamp,
        }
        if method in ("POST", "PUT"):
            headers["Content-Type"] = "application/json"
        return headers

    async def request(self, method: str, endpoint: str, data: dict | None = None) -> ApiResult:
        """Send one signed request and return an ``ApiResult``; never raises."""
        method = method.upper()
        params = encode_params(method, data)
        timestamp = str(int(time.time() * 1000))

        try:
            headers = self.build_headers(method, endpoint, params, timestamp)
        except SignatureError as e:
            logger.error(f"Cannot sign {method} {endpoint}: {e}")
            return ApiResult(success=False, error=str(e), error_kind=ErrorKind.SIGNATURE)

        url = f"{self.base_url}{endpoint}"
        content = None
        if params and method in ("GET", "DELETE"):
            url = f"{url}?{params}"
        elif params:
            content = params

        logger.debug(
            f"LN Markets {method} {endpoint} network={self.credentials.network} "
            f"key={mask_secret(self.credentials.key)}"
        )
        try:
            response = await self._ensure_http().request(
                method, url, headers=headers, content=content, timeout=self.timeout
            )
        except httpx.TimeoutException:
            logger.warning(f"LN Markets {method} {endpoint} timed out after {self.timeout}s")
            return ApiResult(
                success=False,
                error=f"LN Markets did not respond within {self.timeout:g}s. Try again later.",
                error_kind=ErrorKind.TIMEOUT,
            )
        except httpx.RequestError as e:
            logger.warning(f"LN Markets {method} {endpoint} network error: {e}")
            return ApiResult(
                success=False,
                error=f"Could not reach LN Markets: {type(e).__name__}",
                error_kind=ErrorKind.NETWORK,
            )

        if not response.is_success:
            result = error_for_response(response.status_code, response.text)
            logger.warning(f"LN Markets {method} {endpoint} failed: HTTP {response.status_code}")
            return result

        try:
            payload = response.json()
        except ValueError:
            return ApiResult(
                success=False,
                error="LN Markets returned a response that is not JSON",
                status_code=response.status_code,
                error_kind=ErrorKind.INVALID_RESPONSE,
            )
        return ApiResult(success=True, data=payload, status_code=response.status_code)

    async def get_trades(self, trade_type: str = "closed", **params) -> ApiResult:
        """Futures trades; closed positions by default."""
        return await self.request("GET", ENDPOINT_TRADES, {"type": trade_type, **params})

    async def get_deposits(self, **params) -> ApiResult:
        return await self.request("GET", ENDPOINT_DEPOSITS, params or None)

    async def get_withdrawals(self, **params) -> ApiResult:
        return await self.request("GET", ENDPOINT_WITHDRAWALS, params or None)

    async def test_connection(self) -> ApiResult:
        """Authenticated read of the user profile; validates credentials without side effects."""
        return await self.request("GET", ENDPOINT_USER)

    async def close(self):
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()


def create_client(credentials: LNMarketsCredentials) -> LNMarketsClient:
    return LNMarketsClient(credentials)


async def check_credentials(credentials: LNMarketsCredentials) -> ApiResult:
    """Run the connectivity test with a throwaway client."""
    async with create_client(credentials) as client:
        return await client.test_connection()
