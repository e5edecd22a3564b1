"""
ChannexClient — thin async client for the Channex channel-manager API.

Authenticates with a per-user API key sent in the ``user-api-key`` header.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from config.settings import config
from utils.errors import UpstreamFailure

logger = logging.getLogger(__name__)


class ChannexClient:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = (base_url or config.channex_base_url).rstrip("/")
        self._transport = transport
        self.properties: List[Dict[str, Any]] = []

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> Dict[str, Any]:
        async with httpx.AsyncClient(transport=self._transport) as client:
            resp = await client.request(
                method,
                f"{self.base_url}{endpoint}",
                headers={"user-api-key": self.api_key},
                **kwargs,
            )
        if not resp.is_success:
            raise UpstreamFailure(
                f"Channex API error: {resp.status_code}",
                details=resp.text,
            )
        return resp.json()

    async def get_properties(self) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/properties")
        return data.get("data") or []

    async def get_room_types(self, property_id: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/room-types", params={"property_id": property_id})
        return data.get("data") or []

    async def get_rate_plans(self, property_id: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/rate-plans", params={"property_id": property_id})
        return data.get("data") or []

    async def get_property_channels(self, property_id: str) -> List[Dict[str, Any]]:
        data = await self._request(
            "GET", "/property-channels", params={"property_id": property_id}
        )
        return data.get("data") or []

    async def validate_api_key(self) -> bool:
        """
        An API key is valid when the property listing succeeds.

        The listing is kept on ``self.properties`` so callers need not
        fetch it again.
        """
        try:
            self.properties = await self.get_properties()
            return True
        except (UpstreamFailure, httpx.HTTPError) as exc:
            logger.info("Channex API key validation failed: %s", exc)
            return False


def summarize_properties(properties: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the fields stored on the connection row."""
    summary = []
    for prop in properties:
        attrs = prop.get("attributes") or prop
        summary.append(
            {
                "id": prop.get("id") or attrs.get("id"),
                "name": attrs.get("title") or attrs.get("name"),
                "currency_code": attrs.get("currency") or attrs.get("currency_code"),
                "timezone": attrs.get("timezone"),
            }
        )
    return summary
