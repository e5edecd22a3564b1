"""
bcrypt password hashing.

bcrypt only looks at the first 72 bytes of a password and newer releases
refuse longer input, so both sides truncate explicitly.  The work factor
comes from ``config.password_hash_rounds``.
"""

from __future__ import annotations

from typing import Optional

import bcrypt

from config.settings import config

_BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str, *, rounds: Optional[int] = None) -> str:
    rounds = rounds or config.password_hash_rounds
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """False for a wrong password and for rows without a usable hash."""
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode())
    except ValueError:
        return False
