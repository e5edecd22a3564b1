"""
ChannelRegistry — provides access to all OAuth channels.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from channels.airbnb import AirbnbChannel
from channels.base import BaseChannel
from utils.errors import ConfigurationMissing

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Singleton registry for all OAuth channels."""

    _instance: Optional["ChannelRegistry"] = None

    def __new__(cls) -> "ChannelRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._channels = {}
            cls._instance.register(AirbnbChannel())
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def register(self, channel: BaseChannel) -> None:
        """Add or replace a channel (tests swap in mock-transport instances)."""
        self._channels[channel.provider_name] = channel
        logger.debug("Channel registered: %s", channel.provider_name)

    def get(self, provider: str) -> BaseChannel:
        """Return a configured channel, or raise ConfigurationMissing."""
        channel = self._channels.get(provider)
        if channel is None:
            raise ConfigurationMissing(f"Unknown channel '{provider}'")
        if not channel.is_configured():
            raise ConfigurationMissing(f"{channel.display_name} integration not configured")
        return channel

    def list_providers(self) -> List[Dict[str, object]]:
        """Return info about all known channels."""
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "configured": c.is_configured(),
            }
            for c in self._channels.values()
        ]
