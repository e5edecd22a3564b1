"""
Error taxonomy shared by every route.

Each error carries the HTTP status it maps to; ``api.middleware`` turns
them into ``{"error": ..., "details": ...}`` JSON bodies.
"""

from __future__ import annotations

from typing import Any, Optional


class WellhostError(Exception):
    """Base class for all handled application errors."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body: dict = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ConfigurationMissing(WellhostError):
    status_code = 500
    default_message = "Integration not configured"


class BadRequest(WellhostError):
    status_code = 400
    default_message = "Bad request"


class Unauthenticated(WellhostError):
    status_code = 401
    default_message = "Not authenticated"


class Unauthorized(WellhostError):
    status_code = 403
    default_message = "Unauthorized"


class NotFound(WellhostError):
    status_code = 404
    default_message = "Not found"


class UpstreamFailure(WellhostError):
    """A provider answered with a non-2xx status; ``details`` holds its body verbatim."""

    status_code = 502
    default_message = "Upstream provider error"


class TokenExchangeFailed(UpstreamFailure):
    status_code = 400
    default_message = "Failed to exchange code for token"


class RefreshFailed(UpstreamFailure):
    """Refresh was rejected or impossible; the caller must reconnect."""

    status_code = 401
    default_message = "Token refresh failed"


class InvalidSignature(WellhostError):
    status_code = 401
    default_message = "Invalid webhook signature"


class PersistenceFailure(WellhostError):
    status_code = 500
    default_message = "Failed to save connection"


class InternalError(WellhostError):
    status_code = 500
    default_message = "Internal server error"
