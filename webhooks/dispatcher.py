"""
EventDispatcher — route webhook events to handlers by exact ``event_type``.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import WebhookEvent

logger = logging.getLogger(__name__)

Handler = Callable[[AsyncSession, Dict[str, Any]], Awaitable[None]]


def event_id_of(payload: Dict[str, Any]) -> Optional[str]:
    """Delivery id used for de-duplication; a resource ``id`` never counts."""
    value = payload.get("event_id")
    return str(value) if value else None


class EventDispatcher:
    """Fixed table of handlers for one provider's events."""

    def __init__(self, provider: str) -> None:
        self.provider = provider
        self._handlers: Dict[str, Handler] = {}

    def on(self, event_type: str) -> Callable[[Handler], Handler]:
        """Decorator: register ``fn`` for ``event_type``."""

        def decorator(fn: Handler) -> Handler:
            self._handlers[event_type] = fn
            return fn

        return decorator

    @property
    def event_types(self) -> List[str]:
        return sorted(self._handlers)

    async def dispatch(self, session: AsyncSession, payload: Dict[str, Any]) -> bool:
        """
        Record and handle one event.

        Returns False for unknown event types, which are logged and left
        without any persisted trace.  A repeated ``event_id`` is skipped.
        """
        event_type = payload.get("event_type")
        handler = self._handlers.get(event_type) if isinstance(event_type, str) else None
        if handler is None:
            logger.info("Unknown %s event type: %s", self.provider, event_type)
            return False

        event_id = event_id_of(payload)
        if event_id is not None:
            result = await session.execute(
                select(WebhookEvent.id).where(
                    WebhookEvent.provider == self.provider,
                    WebhookEvent.event_id == event_id,
                )
            )
            if result.first() is not None:
                logger.info("Duplicate %s event %s skipped", self.provider, event_id)
                return True

        session.add(
            WebhookEvent(
                provider=self.provider,
                event_type=event_type,
                event_id=event_id,
                payload=payload,
            )
        )
        await handler(session, payload)
        await session.flush()
        return True
