"""
Pydantic request / response schemas.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ═══════════════════════════════════════════════════════════════════════════════
# Auth
# ═══════════════════════════════════════════════════════════════════════════════


class RegisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6, max_length=128)
    full_name: str = Field(..., alias="fullName", min_length=1, max_length=255)


class LoginRequest(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    is_premium: bool = False
    avatar_url: Optional[str] = None


class AuthResponse(BaseModel):
    success: bool = True
    user: UserOut
    token: str   # managed-session bearer token


# ═══════════════════════════════════════════════════════════════════════════════
# Channels
# ═══════════════════════════════════════════════════════════════════════════════


class CodeExchangeRequest(BaseModel):
    code: Optional[str] = None


class CodeExchangeResponse(BaseModel):
    success: bool = True
    message: str
    expiresAt: str


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class AccessTokenResponse(BaseModel):
    accessToken: str


class ChannexConnectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    channex_api_key: Optional[str] = Field(None, alias="channexApiKey")
    user_id: Optional[str] = Field(None, alias="userId")


# ═══════════════════════════════════════════════════════════════════════════════
# Webhooks
# ═══════════════════════════════════════════════════════════════════════════════


class ReservationEvent(BaseModel):
    """
    Reservation fields carried by Channex booking events.

    Channex nests the booking under ``data`` (sometimes under
    ``data.attributes``), older deliveries under ``payload``, and some
    events are flat; ``from_payload`` reads any of these shapes.  A
    container that is not an object is ignored.
    """

    external_id: str
    property_id: Optional[str] = None
    guest_name: Optional[str] = None
    arrival_date: Optional[date] = None
    departure_date: Optional[date] = None
    total_price: Optional[Decimal] = None
    currency: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ReservationEvent":
        data = payload.get("data") or payload.get("payload")
        if not isinstance(data, dict):
            data = payload
        attrs = data.get("attributes")
        if not isinstance(attrs, dict):
            attrs = data
        customer = attrs.get("customer")
        if not isinstance(customer, dict):
            customer = {}
        guest_name = attrs.get("guest_name") or " ".join(
            part for part in (customer.get("name"), customer.get("surname")) if part
        )
        return cls(
            external_id=str(
                data.get("reservation_id")
                or data.get("booking_id")
                or data.get("id")
                or attrs.get("id")
                or ""
            ),
            property_id=attrs.get("property_id") or payload.get("property_id"),
            guest_name=guest_name or None,
            arrival_date=attrs.get("arrival_date"),
            departure_date=attrs.get("departure_date"),
            total_price=attrs.get("amount") or attrs.get("total_price"),
            currency=attrs.get("currency"),
        )


class WebhookAck(BaseModel):
    success: bool = True


class ConnectionOut(BaseModel):
    id: str
    platform: str
    external_account_id: Optional[str] = None
    is_active: bool
    scopes: List[str] = Field(default_factory=list)
    token_expires_at: str
    last_sync_at: Optional[str] = None
    connection_metadata: Dict[str, Any] = Field(default_factory=dict)
