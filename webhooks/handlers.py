"""
Channex event handlers.

Reservation events upsert ``channel_reservations``; rate and availability
changes are recorded in the event log only, since local rates and calendars
are owned by the dashboard rather than the channel manager.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import ChannelReservation
from utils.schemas import ReservationEvent
from webhooks.dispatcher import EventDispatcher

logger = logging.getLogger(__name__)

CHANNEX = "channex"

dispatcher = EventDispatcher(CHANNEX)


async def _upsert_reservation(
    session: AsyncSession,
    payload: Dict[str, Any],
    status: str,
) -> None:
    event = ReservationEvent.from_payload(payload)
    if not event.external_id:
        logger.warning("%s event without reservation id ignored", payload.get("event_type"))
        return

    result = await session.execute(
        select(ChannelReservation).where(
            ChannelReservation.channel == CHANNEX,
            ChannelReservation.external_id == event.external_id,
        )
    )
    reservation = result.scalar_one_or_none()
    if reservation is None:
        reservation = ChannelReservation(channel=CHANNEX, external_id=event.external_id)
        session.add(reservation)

    for field in ("property_id", "guest_name", "arrival_date", "departure_date", "total_price", "currency"):
        value = getattr(event, field)
        if value is not None:
            setattr(reservation, field, value)
    reservation.status = status
    reservation.raw = payload
    logger.info("Reservation %s → %s", event.external_id, status)


@dispatcher.on("new_reservation")
async def handle_new_reservation(session: AsyncSession, payload: Dict[str, Any]) -> None:
    await _upsert_reservation(session, payload, "new")


@dispatcher.on("reservation_updated")
async def handle_reservation_updated(session: AsyncSession, payload: Dict[str, Any]) -> None:
    await _upsert_reservation(session, payload, "modified")


@dispatcher.on("reservation_cancelled")
async def handle_reservation_cancelled(session: AsyncSession, payload: Dict[str, Any]) -> None:
    await _upsert_reservation(session, payload, "cancelled")


@dispatcher.on("rate_changed")
async def handle_rate_changed(session: AsyncSession, payload: Dict[str, Any]) -> None:
    logger.info("Rate change for property %s", payload.get("property_id"))


@dispatcher.on("availability_changed")
async def handle_availability_changed(session: AsyncSession, payload: Dict[str, Any]) -> None:
    logger.info("Availability change for property %s", payload.get("property_id"))
