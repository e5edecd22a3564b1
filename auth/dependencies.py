"""
FastAPI dependencies for authentication and authorization.

Provides ``db_session``, ``get_current_identity`` and
``require_resource_owner``; every protected route goes through these
rather than checking sessions or comparing user ids inline.
"""

from __future__ import annotations

import json
import uuid
from typing import AsyncGenerator, Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from auth.identity import SessionIdentity, resolve_identity
from database.session import get_db_session
from utils.errors import BadRequest, Unauthenticated, Unauthorized


async def db_session(
    session: AsyncSession = Depends(get_db_session),
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a DB session for route handlers."""
    yield session


async def get_current_identity(
    request: Request,
    session: AsyncSession = Depends(db_session),
) -> SessionIdentity:
    """Resolve the caller or fail with 401."""
    return await resolve_identity(request, session)


async def get_optional_identity(
    request: Request,
    session: AsyncSession = Depends(db_session),
) -> Optional[SessionIdentity]:
    """Resolve the caller, or ``None`` when the route orders its own checks."""
    try:
        return await resolve_identity(request, session)
    except Unauthenticated:
        return None


async def require_resource_owner(
    request: Request,
    identity: SessionIdentity = Depends(get_current_identity),
) -> SessionIdentity:
    """
    Authorize access to a user-scoped resource named by ``userId`` in the
    JSON body.

    400 when the body has no usable ``userId``, 403 when it names someone
    else.  Ids compare as UUIDs, so letter case does not matter.
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise BadRequest("Malformed JSON body") from exc

    user_id = body.get("userId") if isinstance(body, dict) else None
    if not user_id:
        raise BadRequest("Missing user ID")
    try:
        requested = uuid.UUID(str(user_id))
    except ValueError as exc:
        raise BadRequest("Invalid user ID") from exc
    if requested != uuid.UUID(identity.id):
        raise Unauthorized()
    return identity
