"""
SQLAlchemy ORM models for users, sessions, channel credentials and
inbound channel data.

Column types are portable: PostgreSQL gets JSONB / ARRAY through
``with_variant`` while other backends fall back to JSON.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import DeclarativeBase, relationship

_JSONB = JSON().with_variant(JSONB(), "postgresql")
_TEXT_LIST = JSON().with_variant(ARRAY(Text), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Platform(str, enum.Enum):
    AIRBNB = "airbnb"


class User(Base):
    __tablename__ = "users"

    user_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(255))
    password_hash = Column(String(255), nullable=False, default="")
    is_premium = Column(Boolean, nullable=False, default=False)
    avatar_url = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    sessions = relationship("AuthSession", back_populates="user", cascade="all, delete-orphan")
    external_accounts = relationship("ExternalAccount", back_populates="user")


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    session_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_token = Column(String(128), unique=True, nullable=False)
    user_id = Column(Uuid, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    user = relationship("User", back_populates="sessions")


class ExternalAccount(Base):
    __tablename__ = "external_accounts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    platform = Column(String(32), nullable=False)
    external_account_id = Column(String(256))
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime(timezone=True), nullable=False)
    scopes = Column(_TEXT_LIST, default=list)
    connection_metadata = Column(_JSONB, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = relationship("User", back_populates="external_accounts")


# At most one active connection per (user, platform); inactive rows are history.
Index(
    "uq_external_accounts_active",
    ExternalAccount.user_id,
    ExternalAccount.platform,
    unique=True,
    postgresql_where=ExternalAccount.is_active,
    sqlite_where=ExternalAccount.is_active,
)


class ChannexConnection(Base):
    __tablename__ = "channex_connections"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.user_id", ondelete="CASCADE"), unique=True, nullable=False)
    api_key = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    properties = Column(_JSONB, default=list)
    connected_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    last_sync_at = Column(DateTime(timezone=True))


# ── Channex mirror ─────────────────────────────────────────────────────
# Rows are keyed by the Channex id and rewritten on every connect.


class ChannexProperty(Base):
    __tablename__ = "channex_properties"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    channex_property_id = Column(String(128), unique=True, nullable=False)
    user_id = Column(Uuid, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255))
    currency_code = Column(String(8))
    timezone = Column(String(64))
    synced_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class ChannexRoomType(Base):
    __tablename__ = "channex_room_types"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    channex_room_type_id = Column(String(128), unique=True, nullable=False)
    channex_property_id = Column(String(128), nullable=False, index=True)
    name = Column(String(255))
    description = Column(Text)
    synced_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class ChannexRatePlan(Base):
    __tablename__ = "channex_rate_plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    channex_rate_plan_id = Column(String(128), unique=True, nullable=False)
    channex_property_id = Column(String(128), nullable=False, index=True)
    channex_room_type_id = Column(String(128))
    name = Column(String(255))
    description = Column(Text)
    synced_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class ChannexPropertyChannel(Base):
    __tablename__ = "channex_property_channels"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    channex_property_channel_id = Column(String(128), unique=True, nullable=False)
    channex_property_id = Column(String(128), nullable=False, index=True)
    channel_id = Column(String(128))
    channel_name = Column(String(255))
    is_enabled = Column(Boolean, nullable=False, default=True)
    synced_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class ChannelReservation(Base):
    __tablename__ = "channel_reservations"
    __table_args__ = (UniqueConstraint("channel", "external_id", name="uq_channel_reservation"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    channel = Column(String(32), nullable=False)
    external_id = Column(String(128), nullable=False)
    property_id = Column(String(128))
    guest_name = Column(String(255))
    arrival_date = Column(Date)
    departure_date = Column(Date)
    total_price = Column(Numeric(12, 2))
    currency = Column(String(8))
    status = Column(String(16), nullable=False, default="new")
    raw = Column(_JSONB, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    __table_args__ = (UniqueConstraint("provider", "event_id", name="uq_webhook_event"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    provider = Column(String(32), nullable=False)
    event_type = Column(String(64), nullable=False)
    event_id = Column(String(128))
    payload = Column(_JSONB, default=dict)
    received_at = Column(DateTime(timezone=True), default=_utcnow)
