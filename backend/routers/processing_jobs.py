# routers/processing_jobs.py — Create, inspect and retry processing jobs
from typing import Any, Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import JobStatus, JobTrigger, ProcessingJob
from services import processing_jobs as jobs_service

router = APIRouter(prefix="/api/v1/processing-jobs", tags=["Processing Jobs"])


# --- Schemas ---

class JobOut(BaseModel):
    id: str
    project_id: str
    triggered_by: str
    triggered_by_user_id: Optional[str] = None
    status: str
    config_snapshot: Any
    config_snapshot_version: int
    input_record_count: Optional[int] = None
    output_record_count: Optional[int] = None
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: str
    updated_at: str


class JobCreate(BaseModel):
    project_id: str
    source_ids: List[str] = Field(default_factory=list)
    triggered_by: Optional[JobTrigger] = None


# --- Helpers ---

def _job_to_out(j: ProcessingJob) -> JobOut:
    return JobOut(
        id=j.id,
        project_id=j.project_id,
        triggered_by=j.triggered_by.value if isinstance(j.triggered_by, JobTrigger) else j.triggered_by,
        triggered_by_user_id=j.triggered_by_user_id,
        status=j.status.value if isinstance(j.status, JobStatus) else j.status,
        config_snapshot=j.config_snapshot,
        config_snapshot_version=j.config_snapshot_version,
        input_record_count=j.input_record_count,
        output_record_count=j.output_record_count,
        error_message=j.error_message,
        started_at=j.started_at.isoformat() if j.started_at else None,
        completed_at=j.completed_at.isoformat() if j.completed_at else None,
        created_at=j.created_at.isoformat() if j.created_at else "",
        updated_at=j.updated_at.isoformat() if j.updated_at else "",
    )


# --- Endpoints ---

@router.post("", response_model=JobOut, status_code=201)
async def create_processing_job(
    data: JobCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Queue a job; the project's current configuration is frozen into config_snapshot"""
    job = await jobs_service.create_job(
        db, user.organisation_id, user.id, data.project_id, data.source_ids, data.triggered_by,
    )
    return _job_to_out(job)


@router.get("", response_model=List[JobOut])
async def list_processing_jobs(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    project_id: Optional[str] = None,
    status: Optional[JobStatus] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
):
    jobs = await jobs_service.list_jobs(
        db, user.organisation_id, project_id=project_id, status=status, page=page, limit=limit,
    )
    return [_job_to_out(j) for j in jobs]


@router.get("/{job_id}", response_model=JobOut)
async def get_processing_job(
    job_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _job_to_out(await jobs_service.get_job(db, user.organisation_id, job_id))


@router.post("/{job_id}/retry", response_model=JobOut, status_code=201)
async def retry_processing_job(
    job_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Queue a new job with the failed job's snapshot; the failed job is left as is"""
    job = await jobs_service.retry_job(db, user.organisation_id, user.id, job_id)
    return _job_to_out(job)
