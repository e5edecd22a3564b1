"""
Shared fixtures: a throwaway SQLite database per test, a fake Airbnb token
endpoint behind ``httpx.MockTransport``, and a TestClient wired to both.
"""

import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from auth.identity import SESSION_COOKIE
from auth.password import hash_password
from channels import encryption
from channels.airbnb import AirbnbChannel
from channels.registry import ChannelRegistry
from config.settings import config
from database.models import AuthSession, Base, ExternalAccount, User
from database.session import get_db_session

WEBHOOK_SECRET = "test-webhook-secret"


# ── Fake provider ──────────────────────────────────────────────────────────────


class FakeAirbnb:
    """
    Stand-in for the Airbnb token endpoint.

    ``exchange_response`` answers authorization_code grants; refresh grants
    mint ``AT-1``, ``AT-2``, … so concurrent refreshes are distinguishable.
    """

    def __init__(self) -> None:
        self.requests: List[Dict[str, str]] = []
        self.revoked: List[Optional[str]] = []
        self.exchange_status = 200
        self.exchange_response: Dict[str, Any] = {
            "access_token": "AT1",
            "refresh_token": "RT1",
            "expires_in": 3600,
            "scope": "a b",
            "token_type": "bearer",
        }
        self.refresh_status = 200
        self.refresh_delay = 0.0
        self.refresh_count = 0

    def calls(self, grant_type: str) -> List[Dict[str, str]]:
        return [r for r in self.requests if r.get("grant_type") == grant_type]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode()))
        if request.url.path.endswith("/revoke"):
            self.revoked.append(form.get("token"))
            return httpx.Response(200, json={})
        self.requests.append(form)

        if form.get("grant_type") == "authorization_code":
            if self.exchange_status != 200:
                return httpx.Response(self.exchange_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json=self.exchange_response)

        if form.get("grant_type") == "refresh_token":
            self.refresh_count += 1
            n = self.refresh_count
            if self.refresh_delay:
                await asyncio.sleep(self.refresh_delay)
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"error": "invalid_grant"})
            return httpx.Response(
                200,
                json={"access_token": f"AT-{n}", "refresh_token": f"RT-{n}", "expires_in": 3600},
            )

        return httpx.Response(400, json={"error": "unsupported_grant_type"})


# ── Fixtures ───────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _test_config(monkeypatch):
    monkeypatch.setattr(config, "airbnb_client_id", "client-id")
    monkeypatch.setattr(config, "airbnb_client_secret", "client-secret")
    monkeypatch.setattr(config, "site_url", "http://dashboard.test")
    monkeypatch.setattr(config, "environment", "test")
    monkeypatch.setattr(config, "channex_webhook_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(config, "accept_legacy_auth_tokens", False)
    monkeypatch.setattr(config, "token_encryption_key", "")
    monkeypatch.setattr(config, "password_hash_rounds", 4)
    encryption.reset()
    ChannelRegistry.reset()
    yield
    encryption.reset()
    ChannelRegistry.reset()


@pytest.fixture()
def fake_airbnb() -> FakeAirbnb:
    provider = FakeAirbnb()
    ChannelRegistry().register(AirbnbChannel(transport=httpx.MockTransport(provider)))
    return provider


@pytest.fixture()
def db(tmp_path) -> sessionmaker:
    """Synchronous handle on the test database, for seeding and inspection."""
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture()
def session_factory(db, tmp_path) -> async_sessionmaker:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
def client(session_factory, fake_airbnb):
    from main import app

    async def _override():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _override
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ── Helpers ────────────────────────────────────────────────────────────────────


def create_user(
    db: sessionmaker,
    *,
    email: Optional[str] = None,
    password: str = "secret-pass",
    full_name: str = "Test Host",
    is_premium: bool = False,
) -> Dict[str, str]:
    """Insert a user plus a managed session; returns ids and the session token."""
    with db() as session:
        user = User(
            user_id=uuid.uuid4(),
            email=email or f"{uuid.uuid4().hex[:8]}@wellhost.test",
            full_name=full_name,
            password_hash=hash_password(password),
            is_premium=is_premium,
        )
        session.add(user)
        token = uuid.uuid4().hex
        session.add(
            AuthSession(
                session_token=token,
                user_id=user.user_id,
                expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
            )
        )
        session.commit()
        return {"id": str(user.user_id), "email": user.email, "token": token}


def create_account(
    db: sessionmaker,
    user_id: str,
    *,
    expires_in: int,
    access_token: str = "AT-old",
    refresh_token: Optional[str] = "RT-old",
    is_active: bool = True,
) -> str:
    with db() as session:
        account = ExternalAccount(
            id=uuid.uuid4(),
            user_id=uuid.UUID(user_id),
            platform="airbnb",
            access_token=encryption.encrypt_token(access_token),
            refresh_token=encryption.encrypt_token(refresh_token) if refresh_token else None,
            token_expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            scopes=["a"],
            connection_metadata={},
            is_active=is_active,
        )
        session.add(account)
        session.commit()
        return str(account.id)


def fetch_all(db: sessionmaker, model, **filters) -> List[Any]:
    with db() as session:
        stmt = select(model)
        for name, value in filters.items():
            stmt = stmt.where(getattr(model, name) == value)
        return list(session.execute(stmt).scalars().all())


def login_as(client: TestClient, user: Dict[str, str]) -> None:
    client.cookies.set(SESSION_COOKIE, user["token"])


def as_json(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload).encode()
