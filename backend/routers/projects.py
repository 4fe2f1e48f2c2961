# routers/projects.py — Projects and their sources, jobs and datasets
from typing import Any, Optional, List

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Project, ProjectStatus
from routers.datasets import DatasetOut, _dataset_to_out
from routers.processing_jobs import JobOut, _job_to_out
from routers.sources import SourceOut, _source_to_out
from services import datasets as datasets_service
from services import processing_jobs as jobs_service
from services import projects as projects_service
from services import sources as sources_service
from services.cascade import delete_project

router = APIRouter(prefix="/api/v1/projects", tags=["Projects"])


# --- Schemas ---

class ProjectOut(BaseModel):
    id: str
    organisation_id: str
    created_by_user_id: Optional[str] = None
    canonical_schema_id: str
    name: str
    description: Optional[str] = None
    status: str
    processing_config: Optional[Any] = None
    processing_config_version: Optional[int] = None
    created_at: str
    updated_at: str


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    canonical_schema_id: str
    processing_config: Optional[dict] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[ProjectStatus] = None
    processing_config: Optional[dict] = None
    expected_version: Optional[int] = Field(default=None, ge=0)


# --- Helpers ---

def _project_to_out(p: Project) -> ProjectOut:
    return ProjectOut(
        id=p.id,
        organisation_id=p.organisation_id,
        created_by_user_id=p.created_by_user_id,
        canonical_schema_id=p.canonical_schema_id,
        name=p.name,
        description=p.description,
        status=p.status.value if isinstance(p.status, ProjectStatus) else p.status,
        processing_config=p.processing_config,
        processing_config_version=p.processing_config_version,
        created_at=p.created_at.isoformat() if p.created_at else "",
        updated_at=p.updated_at.isoformat() if p.updated_at else "",
    )


# --- Endpoints ---

@router.post("", response_model=ProjectOut, status_code=201)
async def create_project(
    data: ProjectCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    project = await projects_service.create_project(
        db, user.organisation_id, user.id,
        name=data.name,
        canonical_schema_id=data.canonical_schema_id,
        description=data.description,
        processing_config=data.processing_config,
    )
    return _project_to_out(project)


@router.get("", response_model=List[ProjectOut])
async def list_projects(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    status: Optional[ProjectStatus] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
):
    projects = await projects_service.list_projects(
        db, user.organisation_id, status=status, page=page, limit=limit,
    )
    return [_project_to_out(p) for p in projects]


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _project_to_out(await projects_service.get_project(db, user.organisation_id, project_id))


@router.patch("/{project_id}", response_model=ProjectOut)
async def update_project(
    project_id: str,
    data: ProjectUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Partial update; sending processing_config bumps processing_config_version"""
    updates = data.model_dump(exclude_unset=True, exclude={"expected_version"})
    for required in ("name", "status"):
        if updates.get(required, "") is None:
            del updates[required]

    project = await projects_service.update_project(
        db, user.organisation_id, project_id, updates, expected_version=data.expected_version,
    )
    return _project_to_out(project)


@router.delete("/{project_id}", status_code=204)
async def delete_project_endpoint(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Soft-delete the project together with its sources, jobs and datasets"""
    await delete_project(db, user.organisation_id, project_id)
    return Response(status_code=204)


@router.get("/{project_id}/sources", response_model=List[SourceOut])
async def list_project_sources(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
):
    await projects_service.get_project(db, user.organisation_id, project_id)
    sources = await sources_service.list_sources(
        db, user.organisation_id, project_id=project_id, page=page, limit=limit,
    )
    return [_source_to_out(s) for s in sources]


@router.get("/{project_id}/processing-jobs", response_model=List[JobOut])
async def list_project_processing_jobs(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
):
    await projects_service.get_project(db, user.organisation_id, project_id)
    jobs = await jobs_service.list_jobs(
        db, user.organisation_id, project_id=project_id, page=page, limit=limit,
    )
    return [_job_to_out(j) for j in jobs]


@router.get("/{project_id}/datasets", response_model=List[DatasetOut])
async def list_project_datasets(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
):
    await projects_service.get_project(db, user.organisation_id, project_id)
    datasets = await datasets_service.list_datasets(
        db, user.organisation_id, project_id=project_id, page=page, limit=limit,
    )
    return [_dataset_to_out(d) for d in datasets]
