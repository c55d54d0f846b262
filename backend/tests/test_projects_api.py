"""
Projects API: owner scoping, admin read access, usage limit and stable output.
"""
from __future__ import annotations

import pytest

from backend.tests.utils.api import api_client, bearer

pytestmark = pytest.mark.anyio("asyncio")


@pytest.fixture
def owner(identities):
    return identities.create(email="owner@example.com")


@pytest.fixture
def stranger(identities):
    return identities.create(email="stranger@example.com")


async def _create(client, identity, name="Landing page", **extra):
    return await client.post("/api/projects", json={"name": name, **extra}, headers=bearer(identity))


async def test_create_and_list_projects(projects, owner):
    async with api_client() as client:
        created = await _create(client, owner, description="  Marketing site  ")
        listed = await client.get("/api/projects", headers=bearer(owner))
    assert created.status_code == 201
    project = created.json()["project"]
    assert project["name"] == "Landing page"
    assert project["description"] == "Marketing site"
    assert project["userId"] == owner.id
    assert project["status"] == "draft"
    assert [p["id"] for p in listed.json()["projects"]] == [project["id"]]


async def test_create_requires_name(projects, owner):
    async with api_client() as client:
        missing = await client.post("/api/projects", json={}, headers=bearer(owner))
        blank = await client.post("/api/projects", json={"name": "   "}, headers=bearer(owner))
        not_json = await client.post(
            "/api/projects", content=b"{oops", headers={**bearer(owner), "Content-Type": "application/json"}
        )
    assert missing.status_code == 400
    assert missing.json() == {"error": "name required"}
    assert blank.status_code == 400
    assert not_json.status_code == 400


async def test_create_counts_usage_and_enforces_monthly_limit(identities, projects, owner):
    identities.update_admin_fields(owner.id, {"projects_limit": 2})
    async with api_client() as client:
        first = await _create(client, owner, name="One")
        second = await _create(client, owner, name="Two")
        third = await _create(client, owner, name="Three")
    assert first.status_code == 201
    assert second.status_code == 201
    assert third.status_code == 429
    assert third.json()["error"].startswith("Monthly project limit reached")
    assert third.json()["limit"] == 2
    assert identities.get(owner.id).projects_this_month == 2
    assert len(projects.projects) == 2


async def test_enterprise_tier_is_unlimited(identities, projects, owner):
    identities.update_admin_fields(owner.id, {"subscription_tier": "enterprise"})
    owner_record = identities.get(owner.id)
    for _ in range(5):
        identities.increment_usage(owner_record.id, "projects")
    async with api_client() as client:
        r = await _create(client, owner)
    assert r.status_code == 201


async def test_foreign_project_is_indistinguishable_from_missing(projects, owner, stranger):
    async with api_client() as client:
        pid = (await _create(client, owner)).json()["project"]["id"]
        foreign = await client.get(f"/api/projects/{pid}", headers=bearer(stranger))
        missing = await client.get("/api/projects/does-not-exist", headers=bearer(stranger))
        foreign_patch = await client.patch(f"/api/projects/{pid}", json={"name": "x"}, headers=bearer(stranger))
        foreign_delete = await client.delete(f"/api/projects/{pid}", headers=bearer(stranger))
    assert foreign.status_code == missing.status_code == 404
    assert foreign.content == missing.content
    assert foreign.json() == {"error": "Project not found"}
    assert foreign_patch.status_code == 404
    assert foreign_delete.status_code == 404
    assert pid in projects.projects


async def test_admin_may_read_any_project_but_not_modify(identities, projects, owner):
    admin = identities.create(email="admin@example.com", role="admin")
    async with api_client() as client:
        pid = (await _create(client, owner)).json()["project"]["id"]
        read = await client.get(f"/api/projects/{pid}", headers=bearer(admin))
        patch = await client.patch(f"/api/projects/{pid}", json={"name": "Hijack"}, headers=bearer(admin))
    assert read.status_code == 200
    assert read.json()["project"]["id"] == pid
    assert patch.status_code == 404


async def test_repeated_get_is_byte_identical(projects, owner):
    async with api_client() as client:
        pid = (await _create(client, owner)).json()["project"]["id"]
        first = await client.get(f"/api/projects/{pid}", headers=bearer(owner))
        second = await client.get(f"/api/projects/{pid}", headers=bearer(owner))
    assert first.content == second.content


async def test_update_and_delete_project(projects, owner):
    async with api_client() as client:
        pid = (await _create(client, owner)).json()["project"]["id"]
        updated = await client.patch(
            f"/api/projects/{pid}", json={"name": "Renamed", "status": "published"}, headers=bearer(owner)
        )
        bad_status = await client.patch(f"/api/projects/{pid}", json={"status": "gone"}, headers=bearer(owner))
        deleted = await client.delete(f"/api/projects/{pid}", headers=bearer(owner))
        after = await client.get(f"/api/projects/{pid}", headers=bearer(owner))
    assert updated.json()["project"]["name"] == "Renamed"
    assert updated.json()["project"]["status"] == "published"
    assert bad_status.status_code == 400
    assert deleted.json() == {"success": True}
    assert after.status_code == 404


async def test_invalid_paging_parameter_is_400(projects, owner):
    async with api_client() as client:
        r = await client.get("/api/projects?limit=abc", headers=bearer(owner))
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid limit"}


async def test_usage_reports_tier_limits_and_counters(identities, projects, owner):
    async with api_client() as client:
        await _create(client, owner)
        r = await client.get("/api/usage", headers=bearer(owner))
    body = r.json()
    assert body["tier"] == "free"
    assert body["limits"]["projectsPerMonth"] == 3
    assert body["usage"] == {"projectsThisMonth": 1, "generationsUsed": 0}


async def test_repository_outage_is_a_generic_500(owner):
    from backend.web import wiring

    class _DownRepo:
        def list_projects_for_owner(self, *args, **kwargs):
            import psycopg

            raise psycopg.OperationalError("could not connect to server at 10.0.0.5")

    wiring.set_project_repo(_DownRepo())
    async with api_client() as client:
        r = await client.get("/api/projects", headers=bearer(owner))
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to fetch projects"}
