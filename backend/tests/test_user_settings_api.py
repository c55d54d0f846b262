"""
Self-service settings: read, partial update and validation.
"""
from __future__ import annotations

import pytest

from backend.tests.utils.api import api_client, bearer

pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
def member(identities):
    return identities.create(email="member@example.com", name="Member")


async def test_get_settings_returns_profile_and_preferences(member):
    async with api_client() as client:
        r = await client.get("/api/user/settings", headers=bearer(member))
    assert r.status_code == 200
    user = r.json()["user"]
    assert user["id"] == member.id
    assert user["email"] == "member@example.com"
    assert user["theme"] == "system"
    assert user["notifications"] is True
    assert user["autoSave"] is True
    assert user["createdAt"].endswith("Z")


async def test_partial_update_keeps_other_fields(identities, member):
    async with api_client() as client:
        r = await client.post(
            "/api/user/settings", json={"theme": "dark", "autoSave": False, "name": "  Renamed  "}, headers=bearer(member)
        )
    assert r.status_code == 200
    user = r.json()["user"]
    assert user["theme"] == "dark"
    assert user["autoSave"] is False
    assert user["name"] == "Renamed"
    assert user["notifications"] is True
    stored = identities.get(member.id)
    assert stored.theme == "dark"
    assert stored.auto_save is False


async def test_email_is_normalized(identities, member):
    async with api_client() as client:
        r = await client.post("/api/user/settings", json={"email": "New@Example.COM"}, headers=bearer(member))
    assert r.json()["user"]["email"] == "new@example.com"


@pytest.mark.parametrize(
    "payload,message",
    [
        ({"theme": "neon"}, "Invalid theme"),
        ({"email": "not-an-email"}, "Invalid email"),
        ({"notifications": "sometimes"}, "Invalid notifications"),
    ],
)
async def test_invalid_settings_are_400(identities, member, payload, message):
    async with api_client() as client:
        r = await client.post("/api/user/settings", json=payload, headers=bearer(member))
    assert r.status_code == 400
    assert r.json() == {"error": message}
    assert identities.get(member.id).theme == "system"


async def test_email_of_another_identity_is_rejected(identities, member):
    identities.create(email="taken@example.com")
    async with api_client() as client:
        r = await client.post("/api/user/settings", json={"email": "taken@example.com"}, headers=bearer(member))
    assert r.status_code == 400
    assert r.json() == {"error": "Email already in use"}
    assert identities.get(member.id).email == "member@example.com"


async def test_role_cannot_be_changed_through_settings(identities, member):
    async with api_client() as client:
        r = await client.post("/api/user/settings", json={"role": "admin", "theme": "light"}, headers=bearer(member))
    assert r.status_code == 200
    assert r.json()["user"]["role"] == "user"
    assert identities.get(member.id).role == "user"
