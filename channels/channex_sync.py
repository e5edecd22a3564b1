"""
Mirror a Channex account into local tables after a connect.

For each property the room types, rate plans and property channels are
fetched and upserted by their Channex id.  Each listing is fetched on its
own: a failure is logged and the remaining data is still synced, so a
partial sync never fails the connect.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from channels.channex import ChannexClient
from database.models import (
    Base,
    ChannexConnection,
    ChannexProperty,
    ChannexPropertyChannel,
    ChannexRatePlan,
    ChannexRoomType,
)
from utils.errors import UpstreamFailure

logger = logging.getLogger(__name__)


def _attributes(item: Dict[str, Any]) -> Dict[str, Any]:
    attrs = item.get("attributes")
    return attrs if isinstance(attrs, dict) else item


def _item_id(item: Dict[str, Any]) -> Optional[str]:
    value = item.get("id") or _attributes(item).get("id")
    return str(value) if value else None


def _room_type_of(plan: Dict[str, Any]) -> Optional[str]:
    value = _attributes(plan).get("room_type_id")
    if not value:
        related = ((plan.get("relationships") or {}).get("room_type") or {}).get("data") or {}
        value = related.get("id")
    return str(value) if value else None


async def _upsert(
    session: AsyncSession,
    model: Type[Base],
    key: str,
    value: str,
    **fields: Any,
) -> None:
    column = getattr(model, key)
    result = await session.execute(select(model).where(column == value))
    row = result.scalar_one_or_none()
    if row is None:
        row = model(id=uuid.uuid4(), **{key: value})
        session.add(row)
    for name, field_value in fields.items():
        setattr(row, name, field_value)


async def _sync_room_types(session: AsyncSession, client: ChannexClient, property_id: str) -> int:
    count = 0
    for room_type in await client.get_room_types(property_id):
        room_type_id = _item_id(room_type)
        if room_type_id is None:
            continue
        attrs = _attributes(room_type)
        await _upsert(
            session,
            ChannexRoomType,
            "channex_room_type_id",
            room_type_id,
            channex_property_id=property_id,
            name=attrs.get("title") or attrs.get("name"),
            description=attrs.get("description"),
        )
        count += 1
    return count


async def _sync_rate_plans(session: AsyncSession, client: ChannexClient, property_id: str) -> int:
    count = 0
    for plan in await client.get_rate_plans(property_id):
        plan_id = _item_id(plan)
        if plan_id is None:
            continue
        attrs = _attributes(plan)
        await _upsert(
            session,
            ChannexRatePlan,
            "channex_rate_plan_id",
            plan_id,
            channex_property_id=property_id,
            channex_room_type_id=_room_type_of(plan),
            name=attrs.get("title") or attrs.get("name"),
            description=attrs.get("description"),
        )
        count += 1
    return count


async def _sync_property_channels(
    session: AsyncSession, client: ChannexClient, property_id: str
) -> int:
    count = 0
    for channel in await client.get_property_channels(property_id):
        channel_row_id = _item_id(channel)
        if channel_row_id is None:
            continue
        attrs = _attributes(channel)
        channel_id = attrs.get("channel_id")
        await _upsert(
            session,
            ChannexPropertyChannel,
            "channex_property_channel_id",
            channel_row_id,
            channex_property_id=property_id,
            channel_id=str(channel_id) if channel_id else None,
            channel_name=attrs.get("channel_name") or attrs.get("title"),
            is_enabled=bool(attrs.get("is_enabled", True)),
        )
        count += 1
    return count


_SECTIONS = (
    ("room types", _sync_room_types),
    ("rate plans", _sync_rate_plans),
    ("property channels", _sync_property_channels),
)


async def sync_channex_data(
    session: AsyncSession,
    connection: ChannexConnection,
    client: ChannexClient,
    properties: List[Dict[str, Any]],
) -> Dict[str, int]:
    """
    Upsert ``properties`` (as produced by ``summarize_properties``) and
    everything Channex lists under them, then stamp ``last_sync_at``.

    Returns per-section counts of rows written.
    """
    counts = {"properties": 0, "room types": 0, "rate plans": 0, "property channels": 0}
    for prop in properties:
        property_id = prop.get("id")
        if not property_id:
            continue
        property_id = str(property_id)
        await _upsert(
            session,
            ChannexProperty,
            "channex_property_id",
            property_id,
            user_id=connection.user_id,
            name=prop.get("name"),
            currency_code=prop.get("currency_code"),
            timezone=prop.get("timezone"),
        )
        counts["properties"] += 1

        for label, sync in _SECTIONS:
            try:
                counts[label] += await sync(session, client, property_id)
            except (UpstreamFailure, httpx.HTTPError) as exc:
                logger.error("Error syncing Channex %s for property %s: %s", label, property_id, exc)

    connection.last_sync_at = datetime.now(timezone.utc)
    await session.flush()
    logger.info("Channex sync for user %s: %s", connection.user_id, counts)
    return counts
