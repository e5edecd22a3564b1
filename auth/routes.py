"""
Auth API routes — register, login, check, logout.

Route prefix: /api/auth
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session, get_optional_identity
from auth.identity import (
    AUTH_TOKEN_COOKIE,
    SESSION_COOKIE,
    SessionIdentity,
    close_session,
    open_session,
)
from auth.models import User
from auth.password import hash_password, verify_password
from auth.tokens import create_token
from config.settings import config
from utils.errors import BadRequest, Unauthenticated
from utils.schemas import AuthResponse, LoginRequest, RegisterRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


def _user_out(user: User) -> Dict[str, Any]:
    return {
        "id": str(user.user_id),
        "email": user.email,
        "full_name": user.full_name,
        "is_premium": bool(user.is_premium),
        "avatar_url": user.avatar_url,
    }


async def _issue_session(session: AsyncSession, response: Response, user: User) -> str:
    """Open a managed session and set both session cookies."""
    auth_session = await open_session(session, user)
    cookie_token = create_token(
        {
            "id": str(user.user_id),
            "email": user.email,
            "full_name": user.full_name,
            "is_premium": bool(user.is_premium),
        }
    )
    for name, value in (
        (SESSION_COOKIE, auth_session.session_token),
        (AUTH_TOKEN_COOKIE, cookie_token),
    ):
        response.set_cookie(
            name,
            value,
            max_age=config.session_ttl_seconds,
            httponly=True,
            secure=config.secure_cookies,
            samesite="lax",
            path="/",
        )
    return auth_session.session_token


@router.post("/register", response_model=AuthResponse)
async def register(
    req: RegisterRequest,
    response: Response,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Register a new user and sign them in."""
    email = req.email.strip().lower()
    result = await session.execute(select(User).where(User.email == email))
    if result.scalar_one_or_none() is not None:
        raise BadRequest("Email already exists")

    user = User(
        user_id=uuid.uuid4(),
        email=email,
        full_name=req.full_name,
        password_hash=hash_password(req.password),
        is_premium=False,
    )
    session.add(user)
    await session.flush()

    token = await _issue_session(session, response, user)
    logger.info("Registered user %s", user.user_id)
    return {"success": True, "user": _user_out(user), "token": token}


@router.post("/login", response_model=AuthResponse)
async def login(
    req: LoginRequest,
    response: Response,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Login with email + password."""
    result = await session.execute(select(User).where(User.email == req.email.strip().lower()))
    user = result.scalar_one_or_none()

    if user is None or not verify_password(req.password, user.password_hash):
        raise Unauthenticated("Invalid email or password")

    token = await _issue_session(session, response, user)
    logger.info("Login: %s", user.user_id)
    return {"success": True, "user": _user_out(user), "token": token}


@router.get("/check")
async def check(
    identity: Optional[SessionIdentity] = Depends(get_optional_identity),
    session: AsyncSession = Depends(db_session),
) -> Any:
    """
    Return the signed-in user with premium / profile fields re-read from the
    users table, since the cookie claims are only a snapshot from login.
    """
    if identity is None:
        return JSONResponse({"user": None}, status_code=401)

    user = await session.get(User, uuid.UUID(identity.id))
    if user is None:
        # Cookie names a user we no longer have; fall back to its claims.
        return {"user": identity.to_dict()}
    return {"user": _user_out(user)}


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    token = request.cookies.get(SESSION_COOKIE)
    header = request.headers.get("Authorization", "")
    if not token and header.startswith("Bearer "):
        token = header[7:].strip()
    if token:
        await close_session(session, token)
    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(AUTH_TOKEN_COOKIE, path="/")
    return {"success": True}
