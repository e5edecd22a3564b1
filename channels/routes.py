"""
Channel API routes — Airbnb OAuth (PKCE), token retrieval, disconnect,
connection listing, and Channex API-key connections.

Route prefix: /api
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import (
    db_session,
    get_current_identity,
    get_optional_identity,
    require_resource_owner,
)
from auth.identity import SessionIdentity
from channels.channex import ChannexClient, summarize_properties
from channels.channex_sync import sync_channex_data
from channels.encryption import encrypt_token
from channels.pkce import code_challenge, generate_code_verifier
from channels.registry import ChannelRegistry
from channels.token_manager import (
    disconnect,
    get_active_token,
    get_user_accounts,
    store_external_account,
)
from config.settings import config
from database.models import ChannexConnection, ExternalAccount, Platform
from utils.errors import (
    BadRequest,
    PersistenceFailure,
    TokenExchangeFailed,
    Unauthenticated,
    WellhostError,
)
from utils.schemas import (
    AccessTokenResponse,
    ChannexConnectRequest,
    CodeExchangeRequest,
    CodeExchangeResponse,
    ConnectionOut,
    MessageResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["channels"])

VERIFIER_COOKIE = "airbnb_code_verifier"


# ── Shared exchange step ───────────────────────────────────────────────


async def _exchange_and_store(
    request: Request,
    code: Optional[str],
    identity: Optional[SessionIdentity],
    session: AsyncSession,
) -> ExternalAccount:
    """
    Turn ``code`` + the verifier cookie into a stored Airbnb connection.

    The caller is resolved before the provider call so an anonymous
    request never consumes a grant.  If the grant is issued but cannot be
    stored, the new token is revoked at the provider (when supported).
    """
    verifier = request.cookies.get(VERIFIER_COOKIE)
    if not code or not verifier:
        raise BadRequest("Missing authorization code or verifier")
    if identity is None:
        raise Unauthenticated()

    channel = ChannelRegistry().get(Platform.AIRBNB.value)
    token_data = await channel.exchange_code(code, verifier)

    try:
        return await store_external_account(
            identity.id, channel.provider_name, token_data, db_session=session
        )
    except PersistenceFailure:
        revoked = await channel.revoke_token(token_data["access_token"])
        logger.error(
            "Airbnb grant for user %s could not be stored (provider grant %s)",
            identity.id,
            "revoked" if revoked else "still valid",
        )
        raise


def _dashboard_redirect(query: str) -> RedirectResponse:
    return RedirectResponse(f"{config.dashboard_channels_url}?{query}", status_code=302)


# ── Airbnb ─────────────────────────────────────────────────────────────


@router.get("/airbnb/auth")
async def airbnb_authorize() -> RedirectResponse:
    """Start the PKCE flow: remember a verifier, send the browser to Airbnb."""
    channel = ChannelRegistry().get(Platform.AIRBNB.value)

    verifier = generate_code_verifier()
    response = RedirectResponse(channel.get_auth_url(code_challenge(verifier)), status_code=302)
    response.set_cookie(
        VERIFIER_COOKIE,
        verifier,
        max_age=config.pkce_cookie_ttl_seconds,
        httponly=True,
        secure=config.secure_cookies,
        samesite="lax",
        path="/",
    )
    return response


@router.post("/airbnb/auth", response_model=CodeExchangeResponse)
async def airbnb_exchange(
    request: Request,
    response: Response,
    req: Optional[CodeExchangeRequest] = None,
    identity: Optional[SessionIdentity] = Depends(get_optional_identity),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Exchange an authorization code for tokens and store the connection."""
    account = await _exchange_and_store(request, req.code if req else None, identity, session)
    response.delete_cookie(VERIFIER_COOKIE, path="/")

    expires_at = account.token_expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return {
        "success": True,
        "message": "Airbnb account connected successfully",
        "expiresAt": expires_at.isoformat(),
    }


@router.get("/airbnb/callback")
async def airbnb_callback(
    request: Request,
    code: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    identity: Optional[SessionIdentity] = Depends(get_optional_identity),
    session: AsyncSession = Depends(db_session),
) -> RedirectResponse:
    """
    Airbnb redirects the browser here after consent.

    Always answers with a redirect to the dashboard carrying ``success=`` or
    ``error=<reason>``.
    """
    if error:
        logger.error("Airbnb OAuth error: %s (%s)", error, error_description)
        return _dashboard_redirect("error=airbnb_auth_failed")
    if not code:
        logger.error("No authorization code received from Airbnb")
        return _dashboard_redirect("error=no_auth_code")

    try:
        await _exchange_and_store(request, code, identity, session)
    except Unauthenticated:
        return _dashboard_redirect("error=not_authenticated")
    except (BadRequest, TokenExchangeFailed) as exc:
        logger.error("Failed to exchange code for tokens: %s", exc.message)
        return _dashboard_redirect("error=token_exchange_failed")
    except WellhostError as exc:
        logger.error("Error in Airbnb callback: %s", exc.message)
        return _dashboard_redirect("error=internal_error")
    except Exception:
        logger.exception("Error in Airbnb callback")
        return _dashboard_redirect("error=internal_error")

    response = _dashboard_redirect("success=airbnb_connected")
    response.delete_cookie(VERIFIER_COOKIE, path="/")
    return response


@router.post("/airbnb/disconnect", response_model=MessageResponse)
async def airbnb_disconnect(
    identity: SessionIdentity = Depends(get_current_identity),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """Deactivate the caller's Airbnb connection (history is kept)."""
    await disconnect(identity.id, Platform.AIRBNB.value, db_session=session)
    return {"success": True, "message": "Airbnb account disconnected successfully"}


@router.post("/airbnb/token", response_model=AccessTokenResponse)
async def airbnb_token(
    identity: SessionIdentity = Depends(require_resource_owner),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, str]:
    """Return a usable access token, refreshing it first if it has expired."""
    token = await get_active_token(identity.id, Platform.AIRBNB.value, db_session=session)
    return {"accessToken": token}


# ── Connections overview ───────────────────────────────────────────────


@router.get("/channels/providers")
async def list_providers() -> List[Dict[str, object]]:
    """
    List all channel providers and their configuration status.
    No auth required — used by the dashboard to show available channels.
    """
    return ChannelRegistry().list_providers()


@router.get("/channels/connections", response_model=List[ConnectionOut])
async def list_connections(
    identity: SessionIdentity = Depends(get_current_identity),
    session: AsyncSession = Depends(db_session),
) -> List[Dict[str, Any]]:
    """List all external accounts (active and historical) for the caller."""
    return await get_user_accounts(identity.id, db_session=session)


# ── Channex ────────────────────────────────────────────────────────────


def _connection_out(conn: ChannexConnection) -> Dict[str, Any]:
    return {
        "id": str(conn.id),
        "user_id": str(conn.user_id),
        "is_active": conn.is_active,
        "properties": conn.properties or [],
        "last_sync_at": conn.last_sync_at.isoformat() if conn.last_sync_at else None,
    }


@router.post("/channex/connect")
async def channex_connect(
    req: ChannexConnectRequest,
    identity: SessionIdentity = Depends(require_resource_owner),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    """
    Validate a Channex API key, store it as the caller's connection and
    mirror the account's properties, room types, rate plans and channels.
    """
    if not req.channex_api_key:
        raise BadRequest("Missing required fields")

    client = ChannexClient(req.channex_api_key)
    if not await client.validate_api_key():
        raise Unauthenticated("Invalid Channex API key")
    properties = summarize_properties(client.properties)

    uid = uuid.UUID(identity.id)
    result = await session.execute(select(ChannexConnection).where(ChannexConnection.user_id == uid))
    conn = result.scalar_one_or_none()
    if conn is None:
        conn = ChannexConnection(id=uuid.uuid4(), user_id=uid)
        session.add(conn)
    conn.api_key = encrypt_token(req.channex_api_key)
    conn.is_active = True
    conn.properties = properties
    conn.connected_at = datetime.now(timezone.utc)
    await session.flush()

    await sync_channex_data(session, conn, client, properties)

    logger.info("Channex connected for user %s (%d properties)", uid, len(properties))
    return {
        "success": True,
        "message": "Channex connected successfully",
        "connection": _connection_out(conn),
    }


@router.post("/channex/disconnect", response_model=MessageResponse)
async def channex_disconnect(
    identity: SessionIdentity = Depends(require_resource_owner),
    session: AsyncSession = Depends(db_session),
) -> Dict[str, Any]:
    await session.execute(
        update(ChannexConnection)
        .where(ChannexConnection.user_id == uuid.UUID(identity.id))
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    logger.info("Channex disconnected for user %s", identity.id)
    return {"success": True, "message": "Channex disconnected successfully"}
