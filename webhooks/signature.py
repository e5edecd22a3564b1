"""
HMAC verification for inbound webhook bodies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Optional

from config.settings import config
from utils.errors import ConfigurationMissing, InvalidSignature

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Channex-Signature"


def sign_payload(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: Optional[str], secret: Optional[str] = None) -> None:
    """
    Raise unless ``signature`` is the HMAC of ``payload``.

    An unset secret is a deployment error, not a reason to accept
    unsigned events.
    """
    secret = config.channex_webhook_secret if secret is None else secret
    if not secret:
        raise ConfigurationMissing("Webhook secret not configured")
    if not signature:
        logger.warning("Webhook rejected: missing %s header", SIGNATURE_HEADER)
        raise InvalidSignature("Missing webhook signature")

    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    if not hmac.compare_digest(provided.lower(), sign_payload(payload, secret)):
        logger.warning("Webhook rejected: signature mismatch")
        raise InvalidSignature()
