"""
AirbnbChannel — OAuth2 (authorization code + PKCE) for the Airbnb API.

Token requests are form-encoded POSTs to a single token endpoint; the
provider's error body is passed through untouched on failure.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import urlencode

import httpx

from channels.base import BaseChannel
from config.settings import config
from utils.errors import RefreshFailed, TokenExchangeFailed

logger = logging.getLogger(__name__)


def _error_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


class AirbnbChannel(BaseChannel):
    """OAuth2 channel for Airbnb."""

    @property
    def provider_name(self) -> str:
        return "airbnb"

    @property
    def display_name(self) -> str:
        return "Airbnb"

    @property
    def scopes(self) -> List[str]:
        return list(config.airbnb_scopes)

    def is_configured(self) -> bool:
        return bool(config.airbnb_client_id and config.airbnb_client_secret)

    def get_auth_url(self, code_challenge: str) -> str:
        params = {
            "client_id": config.airbnb_client_id,
            "redirect_uri": config.airbnb_redirect_uri,
            "response_type": "code",
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "scope": " ".join(self.scopes),
        }
        return f"{config.airbnb_authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: str) -> Dict[str, Any]:
        """Exchange auth code + PKCE verifier for an access/refresh token pair."""
        async with self._client() as client:
            resp = await client.post(
                config.airbnb_token_url,
                data={
                    "grant_type": "authorization_code",
                    "client_id": config.airbnb_client_id,
                    "client_secret": config.airbnb_client_secret,
                    "redirect_uri": config.airbnb_redirect_uri,
                    "code": code,
                    "code_verifier": code_verifier,
                },
            )

        if not resp.is_success:
            logger.warning("Airbnb code exchange rejected: HTTP %d", resp.status_code)
            raise TokenExchangeFailed(details=_error_body(resp))

        data = resp.json()
        return {
            "access_token": data["access_token"],
            "refresh_token": data.get("refresh_token"),
            "expires_in": int(data.get("expires_in", 3600)),
            "scopes": (data.get("scope") or "").split(),
            "token_type": data.get("token_type"),
            "external_account_id": (
                str(data["airbnb_user_id"]) if data.get("airbnb_user_id") else None
            ),
        }

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        async with self._client() as client:
            resp = await client.post(
                config.airbnb_token_url,
                data={
                    "grant_type": "refresh_token",
                    "client_id": config.airbnb_client_id,
                    "client_secret": config.airbnb_client_secret,
                    "refresh_token": refresh_token,
                },
            )

        if not resp.is_success:
            logger.warning("Airbnb token refresh rejected: HTTP %d", resp.status_code)
            raise RefreshFailed(details=_error_body(resp))

        data = resp.json()
        return {
            "access_token": data["access_token"],
            "refresh_token": data.get("refresh_token"),
            "expires_in": int(data.get("expires_in", 3600)),
        }

    async def revoke_token(self, token: str) -> bool:
        """Revoke at the provider when a revoke endpoint is configured."""
        if not config.airbnb_revoke_url:
            return False
        try:
            async with self._client() as client:
                resp = await client.post(
                    config.airbnb_revoke_url,
                    data={
                        "client_id": config.airbnb_client_id,
                        "client_secret": config.airbnb_client_secret,
                        "token": token,
                    },
                )
            return resp.is_success
        except httpx.HTTPError:
            logger.warning("Airbnb token revocation failed", exc_info=True)
            return False
