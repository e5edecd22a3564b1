"""
``auth_token`` cookie encoding.

Tokens are base64-encoded JSON claims signed with HMAC-SHA256:
``<base64(json)>.<hexdigest>``.  Secret key is loaded from
``config.session_secret`` (env var: ``SESSION_SECRET``).

Older clients carry an *unsigned* base64-JSON cookie.  Those claims are
forgeable by anyone, so they are only honoured when
``config.accept_legacy_auth_tokens`` is set, and every use is logged.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import json
import logging
import time
from base64 import b64decode, b64encode
from typing import Any, Dict, Optional

from config.settings import config

logger = logging.getLogger(__name__)


class TokenError(ValueError):
    """Raised for any cookie token that cannot be trusted."""


def _sign(raw: bytes) -> str:
    return hmac.new(config.session_secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(claims: Dict[str, Any], *, ttl_seconds: Optional[int] = None) -> str:
    """Create a signed token carrying ``claims`` plus an ``exp`` timestamp."""
    ttl = config.session_ttl_seconds if ttl_seconds is None else ttl_seconds
    payload = dict(claims)
    payload["exp"] = int(time.time()) + ttl
    raw = json.dumps(payload, separators=(",", ":")).encode()
    return b64encode(raw).decode() + "." + _sign(raw)


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify a signed token and return its claims.

    Raises ``TokenError`` on bad format, bad signature or expiry.
    """
    parts = token.split(".", 1)
    if len(parts) != 2:
        raise TokenError("bad format")
    try:
        raw = b64decode(parts[0], validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TokenError("bad encoding") from exc
    if not hmac.compare_digest(parts[1], _sign(raw)):
        raise TokenError("bad signature")
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise TokenError("bad payload") from exc
    if not isinstance(payload, dict):
        raise TokenError("bad payload")
    if payload.get("exp", 0) < time.time():
        raise TokenError("token expired")
    return payload


def decode_legacy_token(token: str) -> Dict[str, Any]:
    """
    Decode an unsigned base64 → UTF-8 → JSON cookie.

    No authenticity check is possible; callers must gate this behind
    ``config.accept_legacy_auth_tokens``.
    """
    try:
        payload = json.loads(b64decode(token, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise TokenError("undecodable legacy token") from exc
    if not isinstance(payload, dict) or not payload.get("id"):
        raise TokenError("legacy token has no id")
    return payload


def decode_cookie_token(token: str) -> Dict[str, Any]:
    """Signed tokens first; legacy unsigned tokens only when explicitly enabled."""
    if "." in token:
        return verify_token(token)
    if not config.accept_legacy_auth_tokens:
        raise TokenError("unsigned token rejected")
    claims = decode_legacy_token(token)
    logger.warning("Accepted unsigned legacy auth_token for user %s", claims.get("id"))
    return claims
