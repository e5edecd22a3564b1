"""
BaseChannel — abstract interface for OAuth2 booking channels.

Every provider (Airbnb, …) subclasses this and implements the token
endpoints.  Authorization always uses PKCE: the caller generates the
verifier, the channel only sees its challenge on the way out and the
verifier itself on the code exchange.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx


class BaseChannel(ABC):
    """Abstract base for all OAuth2 channels."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        # Tests inject httpx.MockTransport here.
        self._transport = transport

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'airbnb'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable: 'Airbnb'."""
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """OAuth scopes requested by this channel."""
        ...

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    def get_auth_url(self, code_challenge: str) -> str:
        """
        Build the provider's authorization URL.

        Parameters
        ----------
        code_challenge : str
            S256 challenge derived from the locally held verifier.

        Returns
        -------
        The full URL to redirect the user to.
        """
        ...

    @abstractmethod
    async def exchange_code(self, code: str, code_verifier: str) -> Dict[str, Any]:
        """
        Exchange the authorization code for tokens.

        Returns
        -------
        dict with keys:
            access_token, refresh_token, expires_in, scopes, token_type,
            external_account_id

        Raises
        ------
        TokenExchangeFailed
            The provider answered with a non-2xx status.
        """
        ...

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """
        Refresh an expired access token.

        Returns
        -------
        dict with keys: access_token, expires_in, (optional) refresh_token
        """
        ...

    async def revoke_token(self, token: str) -> bool:
        """
        Revoke the token at the provider (optional).
        Returns True on success, False if the provider doesn't support revocation.
        """
        return False

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """Return True if client credentials are present."""
        return True

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport)
