# tests/test_processing_jobs.py — Job creation, snapshots, retries and worker transitions
import pytest
from httpx import AsyncClient

from errors import InvalidStateError, NotFoundError, ValidationError
from models import JobStatus, OutputFormat
from services import processing_jobs as jobs_service
from conftest import get_auth_headers, make_project, make_source, make_job


RULES = {"rules": [{"field": "email", "action": "mask"}], "deidentificationRules": [{"pii": "email"}]}


@pytest.mark.asyncio
class TestCreateJob:
    async def test_snapshot_captures_project_state(self, client: AsyncClient, db_session, test_user, test_org, canonical_schema):
        project = await make_project(db_session, test_org, canonical_schema, processing_config=RULES)
        source = await make_source(db_session, project)

        resp = await client.post(
            "/api/v1/processing-jobs",
            json={"project_id": project.id, "source_ids": [source.id]},
            headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 201, resp.text
        job = resp.json()
        assert job["status"] == "queued"
        assert job["triggered_by"] == "manual"
        assert job["triggered_by_user_id"] == test_user.id
        assert job["config_snapshot_version"] == 1
        assert job["config_snapshot"] == {
            "projectConfig": RULES,
            "sourceIds": [source.id],
            "canonicalSchemaId": canonical_schema.id,
            "deidentificationRules": [{"pii": "email"}],
        }

    async def test_snapshot_unaffected_by_later_config_edit(self, client: AsyncClient, db_session, test_user, test_org, canonical_schema):
        project = await make_project(db_session, test_org, canonical_schema, processing_config={"rules": [1, 2]})
        headers = get_auth_headers(test_user)

        job = (await client.post(
            "/api/v1/processing-jobs", json={"project_id": project.id, "source_ids": []}, headers=headers,
        )).json()
        resp = await client.patch(f"/api/v1/projects/{project.id}", json={"processing_config": {}}, headers=headers)
        assert resp.json()["processing_config"] == {}

        fetched = (await client.get(f"/api/v1/processing-jobs/{job['id']}", headers=headers)).json()
        assert fetched["config_snapshot"]["projectConfig"] == {"rules": [1, 2]}
        assert fetched["config_snapshot"]["deidentificationRules"] == []

    async def test_snapshot_is_a_deep_copy(self, db_session, test_user, test_org, canonical_schema):
        project = await make_project(db_session, test_org, canonical_schema, processing_config={"rules": [1]})
        job = await jobs_service.create_job(db_session, test_org.id, test_user.id, project.id, [])

        project.processing_config["rules"].append(2)
        assert job.config_snapshot["projectConfig"] == {"rules": [1]}

    async def test_scheduled_trigger(self, client: AsyncClient, test_user, test_project):
        resp = await client.post(
            "/api/v1/processing-jobs",
            json={"project_id": test_project.id, "triggered_by": "scheduled"},
            headers=get_auth_headers(test_user),
        )
        assert resp.json()["triggered_by"] == "scheduled"

    async def test_unknown_source_rejected(self, client: AsyncClient, test_user, test_project):
        resp = await client.post(
            "/api/v1/processing-jobs",
            json={"project_id": test_project.id, "source_ids": ["missing"]},
            headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND_SOURCE"

    async def test_source_of_other_project_rejected(self, client: AsyncClient, db_session, test_user, test_org, canonical_schema, test_project):
        elsewhere = await make_project(db_session, test_org, canonical_schema, name="Elsewhere")
        source = await make_source(db_session, elsewhere)
        resp = await client.post(
            "/api/v1/processing-jobs",
            json={"project_id": test_project.id, "source_ids": [source.id]},
            headers=get_auth_headers(test_user),
        )
        assert resp.status_code == 404

    async def test_list_filters(self, client: AsyncClient, db_session, test_user, test_project):
        queued = await make_job(db_session, test_project)
        failed = await make_job(db_session, test_project, status=JobStatus.FAILED, error_message="boom")
        headers = get_auth_headers(test_user)

        resp = await client.get("/api/v1/processing-jobs", headers=headers)
        assert [j["id"] for j in resp.json()] == [failed.id, queued.id]

        resp = await client.get("/api/v1/processing-jobs", params={"status": "failed"}, headers=headers)
        assert [j["id"] for j in resp.json()] == [failed.id]


@pytest.mark.asyncio
class TestRetry:
    async def test_retry_queued_job_is_invalid(self, client: AsyncClient, db_session, test_user, test_project):
        job = await make_job(db_session, test_project, status=JobStatus.QUEUED)
        resp = await client.post(f"/api/v1/processing-jobs/{job.id}/retry", headers=get_auth_headers(test_user))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_STATE"

    @pytest.mark.parametrize("status", [JobStatus.PROCESSING, JobStatus.COMPLETED])
    async def test_retry_requires_failed(self, client: AsyncClient, db_session, test_user, test_project, status):
        job = await make_job(db_session, test_project, status=status)
        resp = await client.post(f"/api/v1/processing-jobs/{job.id}/retry", headers=get_auth_headers(test_user))
        assert resp.status_code == 400

    async def test_retry_failed_job(self, client: AsyncClient, db_session, test_user, test_project):
        job = await make_job(db_session, test_project, status=JobStatus.FAILED, config_snapshot={"x": 1}, error_message="boom")
        headers = get_auth_headers(test_user)

        resp = await client.post(f"/api/v1/processing-jobs/{job.id}/retry", headers=headers)
        assert resp.status_code == 201
        retry = resp.json()
        assert retry["id"] != job.id
        assert retry["status"] == "queued"
        assert retry["config_snapshot"] == {"x": 1}
        assert retry["config_snapshot_version"] == job.config_snapshot_version
        assert retry["triggered_by"] == "manual"
        assert retry["triggered_by_user_id"] == test_user.id

        original = (await client.get(f"/api/v1/processing-jobs/{job.id}", headers=headers)).json()
        assert original["status"] == "failed"
        assert original["error_message"] == "boom"


@pytest.mark.asyncio
class TestWorkerTransitions:
    async def test_happy_path(self, db_session, test_project):
        job = await make_job(db_session, test_project)

        started = await jobs_service.start_job(db_session, job.id)
        assert JobStatus(started.status) == JobStatus.PROCESSING
        assert started.started_at is not None

        done = await jobs_service.complete_job(db_session, job.id, input_record_count=10, output_record_count=8)
        assert JobStatus(done.status) == JobStatus.COMPLETED
        assert (done.input_record_count, done.output_record_count) == (10, 8)
        assert done.completed_at is not None
        assert done.config_snapshot == job.config_snapshot

    async def test_fail_from_queued_and_processing(self, db_session, test_project):
        queued = await make_job(db_session, test_project)
        failed = await jobs_service.fail_job(db_session, queued.id, "source unreachable")
        assert JobStatus(failed.status) == JobStatus.FAILED
        assert failed.error_message == "source unreachable"

        running = await make_job(db_session, test_project)
        await jobs_service.start_job(db_session, running.id)
        failed = await jobs_service.fail_job(db_session, running.id, "worker crashed")
        assert JobStatus(failed.status) == JobStatus.FAILED

    async def test_cannot_complete_queued_job(self, db_session, test_project):
        job = await make_job(db_session, test_project)
        with pytest.raises(InvalidStateError):
            await jobs_service.complete_job(db_session, job.id, 1, 1)

    @pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.FAILED])
    async def test_terminal_states_have_no_transitions(self, db_session, test_project, status):
        job_id = (await make_job(db_session, test_project, status=status)).id
        with pytest.raises(InvalidStateError):
            await jobs_service.start_job(db_session, job_id)
        with pytest.raises(InvalidStateError):
            await jobs_service.fail_job(db_session, job_id, "again")

    async def test_unknown_job(self, db_session):
        with pytest.raises(NotFoundError):
            await jobs_service.start_job(db_session, "missing")

    async def test_fail_requires_message(self, db_session, test_project):
        job = await make_job(db_session, test_project)
        with pytest.raises(ValidationError):
            await jobs_service.fail_job(db_session, job.id, "")

    async def test_list_by_status_is_fifo(self, db_session, test_project):
        first = await make_job(db_session, test_project)
        second = await make_job(db_session, test_project)
        await make_job(db_session, test_project, status=JobStatus.FAILED)

        queued = await jobs_service.list_jobs_by_status(db_session, JobStatus.QUEUED)
        assert [j.id for j in queued] == [first.id, second.id]

    async def test_record_dataset_requires_completed_job(self, db_session, test_project):
        job = await make_job(db_session, test_project)
        with pytest.raises(InvalidStateError):
            await jobs_service.record_dataset(
                db_session, job.id, name="out", output_format=OutputFormat.QA_JSON,
                output_storage_path="/tmp/out.json", record_count=1, file_size_bytes=10,
            )

    async def test_record_dataset(self, db_session, test_project):
        job = await make_job(db_session, test_project, status=JobStatus.PROCESSING)
        await jobs_service.complete_job(db_session, job.id, 5, 5)

        dataset = await jobs_service.record_dataset(
            db_session, job.id, name="out.json", output_format=OutputFormat.QA_JSON,
            output_storage_path="/tmp/out.json", record_count=5, file_size_bytes=512,
        )
        assert dataset.project_id == test_project.id
        assert dataset.processing_job_id == job.id
        assert dataset.lineage_data["processingJobId"] == job.id
