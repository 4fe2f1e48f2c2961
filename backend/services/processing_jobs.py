# services/processing_jobs.py — Processing job lifecycle
"""
Job states::

    queued ──> processing ──> completed
       │            │
       └────────────┴──────> failed ──(retry)──> new queued job

Callers create, list, fetch and retry jobs. The processing worker (a separate
process that is not part of this API) drives the status transitions through
start_job / complete_job / fail_job and records the resulting dataset with
record_dataset.

A job's config_snapshot is a deep copy of the project configuration taken at
creation time. Nothing in this module updates config_snapshot or
config_snapshot_version after insert; a retry copies both verbatim into a new
row and leaves the failed job untouched.
"""
import copy
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from errors import InvalidStateError, NotFoundError, ValidationError
from models import (
    Dataset, JobStatus, JobTrigger, OutputFormat, ProcessingJob, Source, utcnow,
)
from services.scoping import (
    get_scoped_child, get_scoped_project, ordered, paginate, scoped_children,
)

logger = logging.getLogger("foundry.jobs")

# Legal status transitions driven by the worker. Terminal states have none.
TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def build_config_snapshot(project, source_ids: List[str]) -> Dict[str, Any]:
    config = copy.deepcopy(project.processing_config)
    rules = (config or {}).get("deidentificationRules") if isinstance(config, dict) else None
    return {
        "projectConfig": config,
        "sourceIds": list(source_ids),
        "canonicalSchemaId": project.canonical_schema_id,
        "deidentificationRules": copy.deepcopy(rules) if rules else [],
    }


# ============================================================
# CALLER-FACING OPERATIONS
# ============================================================

async def create_job(
    db: AsyncSession,
    organisation_id: str,
    user_id: Optional[str],
    project_id: str,
    source_ids: List[str],
    triggered_by: Optional[JobTrigger] = None,
) -> ProcessingJob:
    project = await get_scoped_project(db, organisation_id, project_id)

    wanted = set(source_ids)
    if wanted:
        result = await db.execute(
            select(Source.id).where(
                Source.id.in_(wanted),
                Source.project_id == project.id,
                Source.deleted_at.is_(None),
            )
        )
        if wanted - set(result.scalars().all()):
            raise NotFoundError("source")

    job = ProcessingJob(
        project_id=project.id,
        triggered_by=triggered_by or JobTrigger.MANUAL,
        triggered_by_user_id=user_id,
        status=JobStatus.QUEUED,
        config_snapshot=build_config_snapshot(project, source_ids),
        config_snapshot_version=1,
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)

    logger.info(f"Job queued job_id={job.id} project_id={project.id} sources={len(source_ids)}")
    return job


async def get_job(db: AsyncSession, organisation_id: str, job_id: str) -> ProcessingJob:
    return await get_scoped_child(db, ProcessingJob, organisation_id, job_id)


async def list_jobs(
    db: AsyncSession,
    organisation_id: str,
    project_id: Optional[str] = None,
    status: Optional[JobStatus] = None,
    page: int = 1,
    limit: int = 50,
) -> List[ProcessingJob]:
    stmt = scoped_children(ProcessingJob, organisation_id)
    if project_id:
        stmt = stmt.where(ProcessingJob.project_id == project_id)
    if status:
        stmt = stmt.where(ProcessingJob.status == status)
    result = await db.execute(paginate(ordered(stmt, ProcessingJob), page, limit))
    return list(result.scalars().all())


async def retry_job(db: AsyncSession, organisation_id: str, user_id: Optional[str], job_id: str) -> ProcessingJob:
    original = await get_job(db, organisation_id, job_id)

    if JobStatus(original.status) != JobStatus.FAILED:
        raise InvalidStateError("Only failed jobs can be retried")

    retry = ProcessingJob(
        project_id=original.project_id,
        triggered_by=JobTrigger.MANUAL,
        triggered_by_user_id=user_id,
        status=JobStatus.QUEUED,
        config_snapshot=copy.deepcopy(original.config_snapshot),
        config_snapshot_version=original.config_snapshot_version,
    )
    db.add(retry)
    await db.commit()
    await db.refresh(retry)

    logger.info(f"Job retried original_job_id={original.id} new_job_id={retry.id}")
    return retry


# ============================================================
# WORKER-FACING OPERATIONS
# ============================================================

async def list_jobs_by_status(db: AsyncSession, status: JobStatus, limit: int = 50) -> List[ProcessingJob]:
    """Oldest first, so a worker polling for queued jobs drains them FIFO."""
    stmt = (
        select(ProcessingJob)
        .where(ProcessingJob.status == status, ProcessingJob.deleted_at.is_(None))
        .order_by(ProcessingJob.created_at.asc(), ProcessingJob.id.asc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _transition(db: AsyncSession, job_id: str, target: JobStatus, **fields) -> ProcessingJob:
    sources = [s for s, targets in TRANSITIONS.items() if target in targets]
    stmt = (
        update(ProcessingJob)
        .where(
            ProcessingJob.id == job_id,
            ProcessingJob.deleted_at.is_(None),
            ProcessingJob.status.in_(sources),
        )
        .values(status=target, updated_at=utcnow(), **fields)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount == 0:
        await db.rollback()
        current = await db.execute(
            select(ProcessingJob.status).where(
                ProcessingJob.id == job_id, ProcessingJob.deleted_at.is_(None),
            )
        )
        status = current.scalar_one_or_none()
        if status is None:
            raise NotFoundError("processing job")
        raise InvalidStateError(
            f"Cannot move job from {JobStatus(status).value} to {target.value}",
        )
    await db.commit()

    refreshed = await db.execute(
        select(ProcessingJob)
        .where(ProcessingJob.id == job_id)
        .execution_options(populate_existing=True)
    )
    job = refreshed.scalar_one()
    logger.info(f"Job transitioned job_id={job_id} status={target.value}")
    return job


async def start_job(db: AsyncSession, job_id: str) -> ProcessingJob:
    return await _transition(db, job_id, JobStatus.PROCESSING, started_at=utcnow())


async def complete_job(
    db: AsyncSession, job_id: str, input_record_count: int, output_record_count: int,
) -> ProcessingJob:
    if input_record_count < 0 or output_record_count < 0:
        raise ValidationError("Record counts cannot be negative")
    return await _transition(
        db, job_id, JobStatus.COMPLETED,
        input_record_count=input_record_count,
        output_record_count=output_record_count,
        completed_at=utcnow(),
    )


async def fail_job(db: AsyncSession, job_id: str, error_message: str) -> ProcessingJob:
    if not error_message:
        raise ValidationError("A failed job requires an error message")
    return await _transition(
        db, job_id, JobStatus.FAILED,
        error_message=error_message,
        completed_at=utcnow(),
    )


async def record_dataset(
    db: AsyncSession,
    job_id: str,
    *,
    name: str,
    output_format: OutputFormat,
    output_storage_path: str,
    record_count: int,
    file_size_bytes: int,
    lineage_data: Optional[Dict[str, Any]] = None,
) -> Dataset:
    """Register the dataset a completed job produced."""
    result = await db.execute(
        select(ProcessingJob).where(ProcessingJob.id == job_id, ProcessingJob.deleted_at.is_(None))
    )
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFoundError("processing job")
    if JobStatus(job.status) != JobStatus.COMPLETED:
        raise InvalidStateError("Datasets can only be recorded for completed jobs")

    dataset = Dataset(
        project_id=job.project_id,
        processing_job_id=job.id,
        name=name,
        output_format=OutputFormat(output_format),
        output_storage_path=output_storage_path,
        record_count=record_count,
        file_size_bytes=file_size_bytes,
        lineage_data=lineage_data or {"processingJobId": job.id, "configSnapshot": job.config_snapshot},
    )
    db.add(dataset)
    await db.commit()
    await db.refresh(dataset)

    logger.info(f"Dataset recorded dataset_id={dataset.id} job_id={job.id}")
    return dataset
