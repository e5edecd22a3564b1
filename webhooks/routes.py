"""
Webhook receiver routes.

Route prefix: /api
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth.dependencies import db_session
from utils.errors import BadRequest
from utils.schemas import WebhookAck
from webhooks.handlers import dispatcher
from webhooks.signature import verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/channex/webhook", response_model=WebhookAck)
async def channex_webhook(
    request: Request,
    x_channex_signature: Optional[str] = Header(None),
    session: AsyncSession = Depends(db_session),
) -> Any:
    """
    Receive a Channex event.

    Unknown ``event_type`` values are acknowledged with 200 so Channex
    does not keep redelivering them.
    """
    raw = await request.body()
    verify_signature(raw, x_channex_signature)

    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise BadRequest("Malformed JSON body") from exc
    if not isinstance(payload, dict):
        raise BadRequest("Webhook body must be a JSON object")

    logger.info("Received Channex webhook: %s", payload.get("event_type"))
    try:
        await dispatcher.dispatch(session, payload)
    except Exception:
        logger.exception("Error processing Channex webhook")
        await session.rollback()
        return JSONResponse({"error": "Webhook processing failed"}, status_code=500)

    return {"success": True}
