"""
Tests for the Channex client, the API-key connect / disconnect routes and
the account mirror written on connect.
"""

import functools
import uuid
from typing import List, Set, Tuple

import httpx
import pytest
from cryptography.fernet import Fernet

from channels import encryption
from channels import routes as channel_routes
from channels.channex import ChannexClient, summarize_properties
from channels.channex_sync import sync_channex_data
from config.settings import config
from conftest import create_user, fetch_all, login_as
from database.models import (
    ChannexConnection,
    ChannexProperty,
    ChannexPropertyChannel,
    ChannexRatePlan,
    ChannexRoomType,
)
from utils.errors import UpstreamFailure

GOOD_KEY = "good-key"

PROPERTIES = {
    "data": [
        {
            "id": "prop-1",
            "type": "property",
            "attributes": {
                "title": "Sea View Loft",
                "currency": "EUR",
                "timezone": "Europe/Lisbon",
                "content": {"description": "dropped"},
            },
        },
        {
            "id": "prop-2",
            "type": "property",
            "attributes": {"title": "Garden Flat", "currency": "GBP", "timezone": "Europe/London"},
        },
    ]
}

ROOM_TYPES = {
    "prop-1": [
        {"id": "rt-1", "attributes": {"title": "Double Room", "description": "Sea facing"}},
        {"id": "rt-2", "attributes": {"title": "Suite"}},
    ],
    "prop-2": [{"id": "rt-3", "attributes": {"title": "Studio"}}],
}

RATE_PLANS = {
    "prop-1": [
        {
            "id": "rp-1",
            "attributes": {"title": "Best Available Rate"},
            "relationships": {"room_type": {"data": {"id": "rt-1", "type": "room_type"}}},
        },
        {"id": "rp-2", "attributes": {"title": "Non-refundable", "room_type_id": "rt-2"}},
    ],
    "prop-2": [{"id": "rp-3", "attributes": {"title": "Standard", "room_type_id": "rt-3"}}],
}

PROPERTY_CHANNELS = {
    "prop-1": [
        {
            "id": "pc-1",
            "attributes": {"channel_id": "ch-airbnb", "channel_name": "Airbnb", "is_enabled": True},
        },
        {
            "id": "pc-2",
            "attributes": {"channel_id": "ch-booking", "channel_name": "Booking.com", "is_enabled": False},
        },
    ],
    "prop-2": [],
}

_LISTINGS = {
    "/room-types": ROOM_TYPES,
    "/rate-plans": RATE_PLANS,
    "/property-channels": PROPERTY_CHANNELS,
}


class FakeChannex:
    """
    Channex stand-in.  ``failing`` holds (endpoint, property id) pairs that
    answer 500.
    """

    def __init__(self) -> None:
        self.seen_keys: List[str] = []
        self.paths: List[str] = []
        self.failing: Set[Tuple[str, str]] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = request.headers.get("user-api-key")
        self.seen_keys.append(key)
        if key != GOOD_KEY:
            return httpx.Response(401, json={"errors": {"code": "unauthorized"}})

        path = request.url.path
        self.paths.append(path)
        if path.endswith("/properties"):
            return httpx.Response(200, json=PROPERTIES)

        property_id = request.url.params.get("property_id")
        for endpoint, listing in _LISTINGS.items():
            if path.endswith(endpoint):
                if (endpoint, property_id) in self.failing:
                    return httpx.Response(500, json={"errors": {"code": "server_error"}})
                return httpx.Response(200, json={"data": listing.get(property_id, [])})
        return httpx.Response(404, json={})

    def count(self, endpoint: str) -> int:
        return sum(1 for path in self.paths if path.endswith(endpoint))


@pytest.fixture()
def fake_channex(monkeypatch) -> FakeChannex:
    upstream = FakeChannex()
    monkeypatch.setattr(
        channel_routes,
        "ChannexClient",
        functools.partial(ChannexClient, transport=httpx.MockTransport(upstream)),
    )
    return upstream


class TestChannexClient:
    @pytest.mark.asyncio
    async def test_properties_listed_with_api_key_header(self):
        upstream = FakeChannex()
        client = ChannexClient(GOOD_KEY, transport=httpx.MockTransport(upstream))

        properties = await client.get_properties()

        assert properties[0]["id"] == "prop-1"
        assert upstream.seen_keys == [GOOD_KEY]

    @pytest.mark.asyncio
    async def test_non_2xx_raises_upstream_failure(self):
        client = ChannexClient("bad", transport=httpx.MockTransport(FakeChannex()))
        with pytest.raises(UpstreamFailure):
            await client.get_properties()
        assert await client.validate_api_key() is False

    @pytest.mark.asyncio
    async def test_listings_filtered_by_property(self):
        upstream = FakeChannex()
        client = ChannexClient(GOOD_KEY, transport=httpx.MockTransport(upstream))

        room_types = await client.get_room_types("prop-1")
        rate_plans = await client.get_rate_plans("prop-2")
        channels = await client.get_property_channels("prop-1")

        assert [r["id"] for r in room_types] == ["rt-1", "rt-2"]
        assert [r["id"] for r in rate_plans] == ["rp-3"]
        assert [c["id"] for c in channels] == ["pc-1", "pc-2"]
        assert [path.rsplit("/", 1)[-1] for path in upstream.paths] == [
            "room-types",
            "rate-plans",
            "property-channels",
        ]

    @pytest.mark.asyncio
    async def test_validation_keeps_property_listing(self):
        upstream = FakeChannex()
        client = ChannexClient(GOOD_KEY, transport=httpx.MockTransport(upstream))

        assert await client.validate_api_key() is True
        assert [p["id"] for p in client.properties] == ["prop-1", "prop-2"]
        assert upstream.count("/properties") == 1

    def test_base_url_from_config(self, monkeypatch):
        monkeypatch.setattr(config, "channex_base_url", "https://channex.test/api/v1/")
        assert ChannexClient(GOOD_KEY).base_url == "https://channex.test/api/v1"

    def test_summary_keeps_listing_fields(self):
        assert summarize_properties(PROPERTIES["data"][:1]) == [
            {
                "id": "prop-1",
                "name": "Sea View Loft",
                "currency_code": "EUR",
                "timezone": "Europe/Lisbon",
            }
        ]


class TestChannexRoutes:
    def test_connect_stores_encrypted_key(self, client, db, fake_channex, monkeypatch):
        monkeypatch.setattr(config, "token_encryption_key", Fernet.generate_key().decode())
        encryption.reset()
        user = create_user(db)
        login_as(client, user)

        resp = client.post("/api/channex/connect", json={"channexApiKey": GOOD_KEY, "userId": user["id"]})

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["connection"]["user_id"] == user["id"]
        assert body["connection"]["properties"][0]["name"] == "Sea View Loft"

        rows = fetch_all(db, ChannexConnection, user_id=uuid.UUID(user["id"]))
        assert len(rows) == 1
        assert rows[0].is_active is True
        assert rows[0].api_key != GOOD_KEY
        assert encryption.decrypt_token(rows[0].api_key) == GOOD_KEY

    def test_reconnect_updates_single_row(self, client, db, fake_channex):
        user = create_user(db)
        login_as(client, user)
        payload = {"channexApiKey": GOOD_KEY, "userId": user["id"]}

        client.post("/api/channex/connect", json=payload)
        client.post("/api/channex/disconnect", json={"userId": user["id"]})
        client.post("/api/channex/connect", json=payload)

        rows = fetch_all(db, ChannexConnection, user_id=uuid.UUID(user["id"]))
        assert len(rows) == 1
        assert rows[0].is_active is True

    def test_invalid_key(self, client, db, fake_channex):
        user = create_user(db)
        login_as(client, user)

        resp = client.post("/api/channex/connect", json={"channexApiKey": "bad", "userId": user["id"]})

        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid Channex API key"}
        assert fetch_all(db, ChannexConnection) == []

    def test_missing_key(self, client, db, fake_channex):
        user = create_user(db)
        login_as(client, user)
        resp = client.post("/api/channex/connect", json={"userId": user["id"]})
        assert resp.status_code == 400
        assert fake_channex.seen_keys == []

    def test_connect_for_someone_else_forbidden(self, client, db, fake_channex):
        login_as(client, create_user(db))
        resp = client.post(
            "/api/channex/connect", json={"channexApiKey": GOOD_KEY, "userId": str(uuid.uuid4())}
        )
        assert resp.status_code == 403
        assert fake_channex.seen_keys == []

    def test_disconnect(self, client, db, fake_channex):
        user = create_user(db)
        login_as(client, user)
        client.post("/api/channex/connect", json={"channexApiKey": GOOD_KEY, "userId": user["id"]})

        resp = client.post("/api/channex/disconnect", json={"userId": user["id"]})

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Channex disconnected successfully"}
        assert fetch_all(db, ChannexConnection)[0].is_active is False

    def test_connect_lists_properties_once(self, client, db, fake_channex):
        user = create_user(db)
        login_as(client, user)

        resp = client.post("/api/channex/connect", json={"channexApiKey": GOOD_KEY, "userId": user["id"]})

        assert resp.status_code == 200
        assert fake_channex.count("/properties") == 1
        assert fake_channex.count("/room-types") == 2

    def test_connect_mirrors_account(self, client, db, fake_channex):
        user = create_user(db)
        login_as(client, user)

        resp = client.post("/api/channex/connect", json={"channexApiKey": GOOD_KEY, "userId": user["id"]})

        assert resp.status_code == 200
        assert resp.json()["connection"]["last_sync_at"] is not None
        assert fetch_all(db, ChannexConnection)[0].last_sync_at is not None

        properties = {p.channex_property_id: p for p in fetch_all(db, ChannexProperty)}
        assert set(properties) == {"prop-1", "prop-2"}
        assert properties["prop-2"].name == "Garden Flat"
        assert properties["prop-2"].currency_code == "GBP"
        assert properties["prop-1"].user_id == uuid.UUID(user["id"])

        room_types = {r.channex_room_type_id: r for r in fetch_all(db, ChannexRoomType)}
        assert set(room_types) == {"rt-1", "rt-2", "rt-3"}
        assert room_types["rt-1"].description == "Sea facing"
        assert room_types["rt-3"].channex_property_id == "prop-2"

        plans = {p.channex_rate_plan_id: p.channex_room_type_id for p in fetch_all(db, ChannexRatePlan)}
        assert plans == {"rp-1": "rt-1", "rp-2": "rt-2", "rp-3": "rt-3"}

        channels = {c.channel_name: c.is_enabled for c in fetch_all(db, ChannexPropertyChannel)}
        assert channels == {"Airbnb": True, "Booking.com": False}

    def test_partial_sync_failure_still_connects(self, client, db, fake_channex):
        fake_channex.failing = {("/room-types", "prop-1"), ("/property-channels", "prop-1")}
        user = create_user(db)
        login_as(client, user)

        resp = client.post("/api/channex/connect", json={"channexApiKey": GOOD_KEY, "userId": user["id"]})

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert [r.channex_room_type_id for r in fetch_all(db, ChannexRoomType)] == ["rt-3"]
        assert len(fetch_all(db, ChannexRatePlan)) == 3
        assert fetch_all(db, ChannexPropertyChannel) == []
        assert fetch_all(db, ChannexConnection)[0].last_sync_at is not None


class TestChannexSync:
    @pytest.mark.asyncio
    async def test_resync_updates_rows_in_place(self, db, session_factory):
        user = create_user(db)
        upstream = FakeChannex()
        client = ChannexClient(GOOD_KEY, transport=httpx.MockTransport(upstream))
        properties = summarize_properties(PROPERTIES["data"])

        async with session_factory() as session:
            connection = ChannexConnection(id=uuid.uuid4(), user_id=uuid.UUID(user["id"]), api_key="k")
            session.add(connection)
            await session.flush()
            first = await sync_channex_data(session, connection, client, properties)
            properties[0]["name"] = "Renamed Loft"
            second = await sync_channex_data(session, connection, client, properties)
            await session.commit()

        assert first == second == {
            "properties": 2,
            "room types": 3,
            "rate plans": 3,
            "property channels": 2,
        }
        rows = fetch_all(db, ChannexProperty)
        assert len(rows) == 2
        assert {r.name for r in rows} == {"Renamed Loft", "Garden Flat"}
        assert len(fetch_all(db, ChannexRoomType)) == 3

    @pytest.mark.asyncio
    async def test_failed_section_is_not_counted(self, db, session_factory):
        user = create_user(db)
        upstream = FakeChannex()
        upstream.failing = {("/rate-plans", "prop-2")}
        client = ChannexClient(GOOD_KEY, transport=httpx.MockTransport(upstream))

        async with session_factory() as session:
            connection = ChannexConnection(id=uuid.uuid4(), user_id=uuid.UUID(user["id"]), api_key="k")
            session.add(connection)
            await session.flush()
            counts = await sync_channex_data(
                session, connection, client, summarize_properties(PROPERTIES["data"])
            )
            await session.commit()

        assert counts["rate plans"] == 2
        assert counts["room types"] == 3
        assert fetch_all(db, ChannexConnection)[0].last_sync_at is not None
