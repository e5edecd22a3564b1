"""
Secret encryption — encrypt / decrypt channel tokens and API keys at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
Keys come from ``config.token_encryption_key`` (env var:
``TOKEN_ENCRYPTION_KEY``) as a comma-separated list, newest first: the
first key encrypts, every key is tried on decrypt, so a key can be rotated
without rewriting stored rows.

If no key is configured, encryption is **disabled** and secrets are stored
as plaintext (with a warning).  Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from config.settings import config

logger = logging.getLogger(__name__)

_cipher: Optional[MultiFernet] = None
_initialised = False


def _configured_keys() -> List[str]:
    return [k.strip() for k in (config.token_encryption_key or "").split(",") if k.strip()]


def _init_cipher() -> None:
    """Lazy-initialise the cipher once."""
    global _cipher, _initialised

    _initialised = True
    keys = _configured_keys()
    if not keys:
        logger.warning(
            "TOKEN_ENCRYPTION_KEY not set — channel tokens will be stored as plaintext."
        )
        _cipher = None
        return

    try:
        _cipher = MultiFernet([Fernet(key.encode()) for key in keys])
        logger.info("Token encryption enabled (Fernet, %d key(s))", len(keys))
    except (ValueError, TypeError) as exc:
        logger.error("Failed to initialise Fernet with provided key: %s", exc)
        _cipher = None


def reset() -> None:
    """Forget the cached cipher so the next call re-reads the config."""
    global _cipher, _initialised
    _cipher = None
    _initialised = False


def encrypt_token(plaintext: str) -> str:
    """
    Encrypt a secret for database storage.

    Returns the Fernet ciphertext (URL-safe base64), or the plaintext
    unchanged when encryption is disabled.
    """
    if not _initialised:
        _init_cipher()

    if _cipher is None:
        return plaintext

    return _cipher.encrypt(plaintext.encode()).decode()


def decrypt_token(ciphertext: str) -> str:
    """
    Decrypt a secret read from the database.

    Values stored before encryption was enabled are not valid Fernet
    tokens and are returned as-is.
    """
    if not _initialised:
        _init_cipher()

    if _cipher is None:
        return ciphertext

    try:
        return _cipher.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        return ciphertext


def rotate_token(ciphertext: str) -> str:
    """Re-encrypt a stored value under the newest key."""
    if not _initialised:
        _init_cipher()

    if _cipher is None:
        return ciphertext

    try:
        return _cipher.rotate(ciphertext.encode()).decode()
    except InvalidToken:
        # Plaintext from before encryption was enabled
        return encrypt_token(ciphertext)


def is_encryption_enabled() -> bool:
    """Check whether token encryption is active."""
    if not _initialised:
        _init_cipher()
    return _cipher is not None
