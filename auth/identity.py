"""
Session resolution — one place that turns a request into a user identity.

Two sources are accepted, in order:

1. A managed session: an opaque token (``Authorization: Bearer`` header or
   the ``wellhost_session`` cookie) looked up in ``auth_sessions``.
2. The ``auth_token`` cookie carrying signed claims (see ``auth.tokens``).
"""

from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Request
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth.tokens import TokenError, decode_cookie_token
from config.settings import config
from database.models import AuthSession, User
from utils.errors import Unauthenticated

logger = logging.getLogger(__name__)

SESSION_COOKIE = "wellhost_session"
AUTH_TOKEN_COOKIE = "auth_token"


@dataclass(frozen=True)
class SessionIdentity:
    id: str
    email: Optional[str]
    full_name: Optional[str]
    is_premium: bool = False
    source: str = "session"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("source")
        return data


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[7:].strip() or None
    return None


async def _from_managed_session(session: AsyncSession, token: str) -> Optional[SessionIdentity]:
    now = datetime.now(timezone.utc)
    result = await session.execute(
        select(AuthSession, User)
        .join(User, AuthSession.user_id == User.user_id)
        .where(AuthSession.session_token == token, AuthSession.is_active.is_(True))
    )
    row = result.first()
    if row is None:
        return None
    auth_session, user = row
    expires_at = auth_session.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at <= now:
        return None
    return SessionIdentity(
        id=str(user.user_id),
        email=user.email,
        full_name=user.full_name,
        is_premium=bool(user.is_premium),
        source="session",
    )


def _from_cookie_token(token: str) -> Optional[SessionIdentity]:
    try:
        claims = decode_cookie_token(token)
        user_id = str(uuid.UUID(str(claims.get("id"))))
    except (TokenError, ValueError) as exc:
        logger.debug("auth_token cookie rejected: %s", exc)
        return None
    return SessionIdentity(
        id=user_id,
        email=claims.get("email"),
        full_name=claims.get("full_name"),
        is_premium=bool(claims.get("is_premium", False)),
        source="cookie",
    )


async def resolve_identity(request: Request, session: AsyncSession) -> SessionIdentity:
    """Return the caller's identity, or raise ``Unauthenticated``."""
    managed = _bearer_token(request) or request.cookies.get(SESSION_COOKIE)
    if managed:
        identity = await _from_managed_session(session, managed)
        if identity is not None:
            return identity

    cookie_token = request.cookies.get(AUTH_TOKEN_COOKIE)
    if cookie_token:
        identity = _from_cookie_token(cookie_token)
        if identity is not None:
            return identity

    raise Unauthenticated()


async def open_session(session: AsyncSession, user: User) -> AuthSession:
    """Create a managed session row for ``user``."""
    auth_session = AuthSession(
        session_token=secrets.token_urlsafe(32),
        user_id=user.user_id,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=config.session_ttl_seconds),
        is_active=True,
    )
    session.add(auth_session)
    await session.flush()
    return auth_session


async def close_session(session: AsyncSession, token: str) -> None:
    await session.execute(
        update(AuthSession)
        .where(AuthSession.session_token == token)
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
