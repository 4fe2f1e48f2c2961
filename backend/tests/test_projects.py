# tests/test_projects.py — Project CRUD and configuration versioning
import pytest
from httpx import AsyncClient

from conftest import get_auth_headers, make_project, make_source, make_job, make_dataset


async def _create(client, user, schema, **body) -> dict:
    payload = {"name": "Support Tickets", "canonical_schema_id": schema.id}
    payload.update(body)
    resp = await client.post("/api/v1/projects", json=payload, headers=get_auth_headers(user))
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
class TestProjectCrud:
    async def test_create_project_defaults(self, client: AsyncClient, test_user, canonical_schema):
        data = await _create(client, test_user, canonical_schema)
        assert data["status"] == "draft"
        assert data["processing_config"] is None
        assert data["processing_config_version"] is None
        assert data["created_by_user_id"] == test_user.id
        assert data["organisation_id"] == test_user.organisation_id

    async def test_create_with_unknown_schema(self, client: AsyncClient, test_user):
        resp = await client.post(
            "/api/v1/projects",
            json={"name": "Orphan", "canonical_schema_id": "missing"},
            headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND_CANONICAL_SCHEMA"

    async def test_duplicate_name_conflicts(self, client: AsyncClient, test_user, canonical_schema):
        await _create(client, test_user, canonical_schema)
        resp = await client.post(
            "/api/v1/projects",
            json={"name": "Support Tickets", "canonical_schema_id": canonical_schema.id},
            headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "CONFLICT_RESOURCE_EXISTS"

    async def test_same_name_in_other_org_is_allowed(
        self, client: AsyncClient, test_user, other_user, canonical_schema,
    ):
        await _create(client, test_user, canonical_schema)
        await _create(client, other_user, canonical_schema)

    async def test_name_reusable_after_delete(self, client: AsyncClient, test_user, canonical_schema):
        data = await _create(client, test_user, canonical_schema)
        resp = await client.delete(f"/api/v1/projects/{data['id']}", headers=get_auth_headers(test_user))
        assert resp.status_code == 204
        await _create(client, test_user, canonical_schema)

    async def test_list_newest_first_with_pagination(
        self, client: AsyncClient, test_user, db_session, test_org, canonical_schema,
    ):
        for i in range(3):
            await make_project(db_session, test_org, canonical_schema, name=f"Project {i}")
        headers = get_auth_headers(test_user)

        resp = await client.get("/api/v1/projects", params={"limit": 2}, headers=headers)
        first_page = [p["name"] for p in resp.json()]
        resp = await client.get("/api/v1/projects", params={"limit": 2, "page": 2}, headers=headers)
        second_page = [p["name"] for p in resp.json()]

        assert len(first_page) == 2 and len(second_page) == 1
        assert first_page[0] == "Project 2"
        assert set(first_page + second_page) == {"Project 0", "Project 1", "Project 2"}

    async def test_list_filters_by_status(self, client: AsyncClient, test_user, canonical_schema):
        data = await _create(client, test_user, canonical_schema)
        headers = get_auth_headers(test_user)
        await client.patch(f"/api/v1/projects/{data['id']}", json={"status": "active"}, headers=headers)

        resp = await client.get("/api/v1/projects", params={"status": "active"}, headers=headers)
        assert [p["id"] for p in resp.json()] == [data["id"]]
        resp = await client.get("/api/v1/projects", params={"status": "archived"}, headers=headers)
        assert resp.json() == []

    async def test_empty_update_rejected(self, client: AsyncClient, test_user, test_project):
        resp = await client.patch(
            f"/api/v1/projects/{test_project.id}", json={}, headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_rename_to_existing_name_conflicts(
        self, client: AsyncClient, test_user, db_session, test_org, canonical_schema, test_project,
    ):
        await make_project(db_session, test_org, canonical_schema, name="Taken")
        resp = await client.patch(
            f"/api/v1/projects/{test_project.id}", json={"name": "Taken"}, headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 409


@pytest.mark.asyncio
class TestProcessingConfigVersion:
    async def test_version_follows_config_replacements(self, client: AsyncClient, test_user, canonical_schema):
        data = await _create(client, test_user, canonical_schema, processing_config={"a": 1})
        assert data["processing_config_version"] == 1
        url = f"/api/v1/projects/{data['id']}"
        headers = get_auth_headers(test_user)

        resp = await client.patch(url, json={"processing_config": {"a": 2}}, headers=headers)
        assert resp.json()["processing_config_version"] == 2
        assert resp.json()["processing_config"] == {"a": 2}

        resp = await client.patch(url, json={"name": "x"}, headers=headers)
        assert resp.json()["name"] == "x"
        assert resp.json()["processing_config_version"] == 2

    async def test_sequential_replacements_count_up(self, client: AsyncClient, test_user, canonical_schema):
        data = await _create(client, test_user, canonical_schema)
        url = f"/api/v1/projects/{data['id']}"
        headers = get_auth_headers(test_user)

        versions = []
        for n in range(1, 6):
            resp = await client.patch(url, json={"processing_config": {"n": n}}, headers=headers)
            versions.append(resp.json()["processing_config_version"])
        assert versions == [1, 2, 3, 4, 5]

    async def test_expected_version_mismatch(self, client: AsyncClient, test_user, test_project):
        url = f"/api/v1/projects/{test_project.id}"
        headers = get_auth_headers(test_user)

        resp = await client.patch(url, json={"processing_config": {"a": 2}, "expected_version": 5}, headers=headers)
        assert resp.status_code == 409
        body = resp.json()["error"]
        assert body["code"] == "CONFLICT_VERSION_MISMATCH"
        assert body["details"] == {"field": "processing_config", "expected_version": 5}

        resp = await client.get(url, headers=headers)
        assert resp.json()["processing_config"] == {"a": 1}
        assert resp.json()["processing_config_version"] == 1

    async def test_expected_version_match(self, client: AsyncClient, test_user, test_project):
        resp = await client.patch(
            f"/api/v1/projects/{test_project.id}",
            json={"processing_config": {"a": 2}, "expected_version": 1},
            headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 200
        assert resp.json()["processing_config_version"] == 2


@pytest.mark.asyncio
class TestProjectChildren:
    async def test_sub_listings(self, client: AsyncClient, db_session, test_user, test_project):
        source = await make_source(db_session, test_project)
        job = await make_job(db_session, test_project)
        dataset = await make_dataset(db_session, job)
        headers = get_auth_headers(test_user)
        base = f"/api/v1/projects/{test_project.id}"

        assert [s["id"] for s in (await client.get(f"{base}/sources", headers=headers)).json()] == [source.id]
        assert [j["id"] for j in (await client.get(f"{base}/processing-jobs", headers=headers)).json()] == [job.id]
        assert [d["id"] for d in (await client.get(f"{base}/datasets", headers=headers)).json()] == [dataset.id]

    async def test_sub_listing_of_unknown_project(self, client: AsyncClient, test_user):
        resp = await client.get("/api/v1/projects/missing/sources", headers=get_auth_headers(test_user))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND_PROJECT"
