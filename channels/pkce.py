"""
PKCE (RFC 7636) verifier / challenge helpers.
"""

from __future__ import annotations

import hashlib
import secrets
from base64 import urlsafe_b64encode


def _b64url(raw: bytes) -> str:
    return urlsafe_b64encode(raw).decode().rstrip("=")


def generate_code_verifier() -> str:
    """32 random bytes, base64url-encoded without padding (43 chars)."""
    return _b64url(secrets.token_bytes(32))


def code_challenge(verifier: str) -> str:
    """S256 challenge: base64url(SHA-256(verifier)) without padding."""
    return _b64url(hashlib.sha256(verifier.encode("ascii")).digest())
