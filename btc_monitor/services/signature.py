"""HMAC-SHA256 request signing for the LN Markets REST API.

The signed payload is ``timestamp + METHOD + path + params`` where
``params`` is the URL-encoded query string for GET/DELETE or the raw JSON
body for POST/PUT. The signature is the Base64 of the HMAC digest.
"""

import base64
import hashlib
import hmac
import json
from urllib.parse import urlencode


class SignatureError(ValueError):
    """Raised when a request cannot be signed."""


def sign(secret: str, timestamp: str, method: str, path: str, params: str = "") -> str:
    """Return the Base64 HMAC-SHA256 signature for one request."""
    if not secret:
        raise SignatureError("API secret is empty; refusing to sign request")
    if not timestamp:
        raise SignatureError("timestamp is required")
    payload = f"{timestamp}{method.upper()}{path}{params}"
    mac = hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        digestmod=hashlib.sha256,
    )
    return base64.b64encode(mac.digest()).decode("ascii")


def encode_params(method: str, data: dict | None) -> str:
    """Serialise request data the way it is both signed and sent.

    GET/DELETE data becomes a query string, POST/PUT data a compact JSON body.
    """
    if not data:
        return ""
    if method.upper() in ("GET", "DELETE"):
        return urlencode(data)
    return json.dumps(data, separators=(",", ":"))
