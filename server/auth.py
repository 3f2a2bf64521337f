"""API tokens: signed bearer token (HMAC) carrying the user id and an expiry."""

from __future__ import annotations

import base64
import hmac
import hashlib
import json
import time
from typing import Optional

DEFAULT_TOKEN_MAX_AGE_DAYS = 30


def _b64_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64_decode(s: str) -> bytes:
    pad = 4 - (len(s) % 4)
    if pad != 4:
        s += "=" * pad
    return base64.urlsafe_b64decode(s)


def create_token(user_id: str, secret: str, max_age_days: int = DEFAULT_TOKEN_MAX_AGE_DAYS) -> str:
    """Build token value: base64(payload).base64(hmac)."""
    expiry = int(time.time()) + max_age_days * 24 * 3600
    payload = {"u": user_id, "e": expiry}
    payload_bytes = json.dumps(payload, sort_keys=True).encode("utf-8")
    sig = hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha256).digest()
    return f"{_b64_encode(payload_bytes)}.{_b64_encode(sig)}"


def verify_token(token: Optional[str], secret: str) -> Optional[str]:
    """Return the user id if the token is well-formed, signed and unexpired, else None."""
    if not token or not secret:
        return None
    parts = token.split(".")
    if len(parts) != 2:
        return None
    try:
        payload_bytes = _b64_decode(parts[0])
    except ValueError:
        return None
    expected_sig = hmac.new(secret.encode("utf-8"), payload_bytes, hashlib.sha256).digest()
    if not hmac.compare_digest(_b64_encode(expected_sig).encode("ascii"), parts[1].encode("utf-8")):
        return None

    # Signed by us from here on; the shape is still checked
    try:
        payload = json.loads(payload_bytes.decode("utf-8"))
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    expiry = payload.get("e")
    user_id = payload.get("u")
    if not isinstance(expiry, int) or not isinstance(user_id, str) or not user_id:
        return None
    if int(time.time()) > expiry:
        return None
    return user_id


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an `Authorization: Bearer ...` header value."""
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()
