# tests/test_cascade.py — Soft-delete cascade for projects
import pytest
from httpx import AsyncClient
from sqlalchemy import select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from errors import CascadeDeleteError, NotFoundError
from models import Dataset, Organisation, ProcessingJob, Project, Source, User, utcnow
from services import cascade
from conftest import get_auth_headers, make_project, make_source, make_job, make_dataset


async def _deleted_at(db, model, row_id):
    result = await db.execute(
        select(model.deleted_at).where(model.id == row_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest.mark.asyncio
class TestProjectCascade:
    async def test_delete_project_hides_children(self, client: AsyncClient, db_session, test_user, test_project):
        source = await make_source(db_session, test_project)
        job = await make_job(db_session, test_project)
        dataset = await make_dataset(db_session, job)
        headers = get_auth_headers(test_user)

        resp = await client.delete(f"/api/v1/projects/{test_project.id}", headers=headers)
        assert resp.status_code == 204

        for url in (
            f"/api/v1/projects/{test_project.id}",
            f"/api/v1/sources/{source.id}",
            f"/api/v1/processing-jobs/{job.id}",
            f"/api/v1/datasets/{dataset.id}",
        ):
            assert (await client.get(url, headers=headers)).status_code == 404

        resp = await client.delete(f"/api/v1/projects/{test_project.id}", headers=headers)
        assert resp.status_code == 404

    async def test_children_share_one_timestamp(self, db_session, test_org, test_project):
        source = await make_source(db_session, test_project)
        job = await make_job(db_session, test_project)
        dataset = await make_dataset(db_session, job)

        now = await cascade.delete_project(db_session, test_org.id, test_project.id)

        stamps = {
            await _deleted_at(db_session, Project, test_project.id),
            await _deleted_at(db_session, Source, source.id),
            await _deleted_at(db_session, ProcessingJob, job.id),
            await _deleted_at(db_session, Dataset, dataset.id),
        }
        assert len(stamps) == 1
        assert stamps.pop().replace(tzinfo=None) == now.replace(tzinfo=None)

    async def test_sibling_project_untouched(self, db_session, test_org, canonical_schema, test_project):
        sibling = await make_project(db_session, test_org, canonical_schema, name="Sibling")
        source = await make_source(db_session, sibling)

        await cascade.delete_project(db_session, test_org.id, test_project.id)

        assert await _deleted_at(db_session, Project, sibling.id) is None
        assert await _deleted_at(db_session, Source, source.id) is None

    async def test_previously_deleted_child_keeps_its_timestamp(self, client: AsyncClient, db_session, test_user, test_org, test_project):
        source = await make_source(db_session, test_project)
        headers = get_auth_headers(test_user)
        await client.delete(f"/api/v1/sources/{source.id}", headers=headers)
        first = await _deleted_at(db_session, Source, source.id)

        now = await cascade.delete_project(db_session, test_org.id, test_project.id)

        assert await _deleted_at(db_session, Source, source.id) == first
        assert first.replace(tzinfo=None) != now.replace(tzinfo=None)

    async def test_failure_rolls_back_everything(self, client: AsyncClient, db_session, test_user, test_project, monkeypatch):
        source = await make_source(db_session, test_project)
        original_steps = cascade._project_children_steps

        def broken_steps(project_ids, now):
            return original_steps(project_ids, now) + [("archive", text("UPDATE no_such_table SET x = 1"))]

        monkeypatch.setattr(cascade, "_project_children_steps", broken_steps)
        headers = get_auth_headers(test_user)

        resp = await client.delete(f"/api/v1/projects/{test_project.id}", headers=headers)
        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "CASCADE_DELETE_FAILED"
        assert error["details"] == {"entity": "project", "step": "archive"}

        assert (await client.get(f"/api/v1/projects/{test_project.id}", headers=headers)).status_code == 200
        assert (await client.get(f"/api/v1/sources/{source.id}", headers=headers)).status_code == 200

    async def test_failure_raises_with_step(self, db_session, test_org, test_project, monkeypatch):
        project_id = test_project.id

        def broken_steps(project_ids, now):
            return [("sources", text("UPDATE no_such_table SET x = 1"))]

        monkeypatch.setattr(cascade, "_project_children_steps", broken_steps)

        with pytest.raises(CascadeDeleteError) as exc:
            await cascade.delete_project(db_session, test_org.id, project_id)
        assert exc.value.step == "sources"
        assert await _deleted_at(db_session, Project, project_id) is None

    async def test_project_deleted_after_lookup(self, db_engine, db_session, test_org, test_project, monkeypatch):
        org_id, project_id = test_org.id, test_project.id
        source = await make_source(db_session, test_project)
        source_id = source.id
        lookup = cascade.get_scoped_project

        async def lookup_then_lose_race(db, organisation_id, pid):
            project = await lookup(db, organisation_id, pid)
            factory = async_sessionmaker(db_engine, class_=AsyncSession)
            async with factory() as other:
                await other.execute(update(Project).where(Project.id == pid).values(deleted_at=utcnow()))
                await other.commit()
            return project

        monkeypatch.setattr(cascade, "get_scoped_project", lookup_then_lose_race)

        with pytest.raises(NotFoundError) as exc:
            await cascade.delete_project(db_session, org_id, project_id)
        assert exc.value.code == "NOT_FOUND_PROJECT"
        assert await _deleted_at(db_session, Source, source_id) is None


@pytest.mark.asyncio
class TestEntityStep:
    async def test_missing_organisation_runs_no_further_steps(self, db_session, test_org, test_user):
        user_id = test_user.id
        now = utcnow()
        steps = [
            ("organisation", cascade._soft_delete(Organisation, now, Organisation.id == "missing")),
            ("users", cascade._soft_delete(User, now, User.organisation_id == test_org.id)),
        ]

        with pytest.raises(NotFoundError) as exc:
            await cascade._run_steps(db_session, "organisation", steps)
        assert exc.value.code == "NOT_FOUND_ORGANISATION"
        assert await _deleted_at(db_session, User, user_id) is None
