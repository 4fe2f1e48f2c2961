# routers/datasets.py — Datasets produced by the processing worker
from typing import Any, Optional, List

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import FileResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from models import Dataset, OutputFormat
from services import datasets as datasets_service

router = APIRouter(prefix="/api/v1/datasets", tags=["Datasets"])


class DatasetOut(BaseModel):
    id: str
    project_id: str
    processing_job_id: str
    name: str
    output_format: str
    record_count: int
    file_size_bytes: int
    lineage_data: Any
    created_at: str
    updated_at: str


def _dataset_to_out(d: Dataset) -> DatasetOut:
    return DatasetOut(
        id=d.id,
        project_id=d.project_id,
        processing_job_id=d.processing_job_id,
        name=d.name,
        output_format=d.output_format.value if isinstance(d.output_format, OutputFormat) else d.output_format,
        record_count=d.record_count or 0,
        file_size_bytes=d.file_size_bytes or 0,
        lineage_data=d.lineage_data or {},
        created_at=d.created_at.isoformat() if d.created_at else "",
        updated_at=d.updated_at.isoformat() if d.updated_at else "",
    )


@router.get("", response_model=List[DatasetOut])
async def list_datasets(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    project_id: Optional[str] = None,
    output_format: Optional[OutputFormat] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
):
    datasets = await datasets_service.list_datasets(
        db, user.organisation_id, project_id=project_id, output_format=output_format,
        page=page, limit=limit,
    )
    return [_dataset_to_out(d) for d in datasets]


@router.get("/{dataset_id}", response_model=DatasetOut)
async def get_dataset(
    dataset_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _dataset_to_out(await datasets_service.get_dataset(db, user.organisation_id, dataset_id))


@router.get("/{dataset_id}/download")
async def download_dataset(
    dataset_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    path, filename, mime_type = await datasets_service.download_info(db, user.organisation_id, dataset_id)
    return FileResponse(path, media_type=mime_type, filename=filename)


@router.delete("/{dataset_id}", status_code=204)
async def delete_dataset(
    dataset_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await datasets_service.delete_dataset(db, user.organisation_id, dataset_id)
    return Response(status_code=204)
