# routers/sources.py — File and API data sources
import json
from typing import Any, Optional, List

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from errors import ValidationError
from models import Source, SourceStatus, SourceType
from services import sources as sources_service

router = APIRouter(prefix="/api/v1/sources", tags=["Sources"])

REDACTED = sources_service.REDACTED_KEY


# --- Schemas ---

class SourceOut(BaseModel):
    id: str
    project_id: str
    name: str
    source_type: str
    status: str
    file_mime_type: Optional[str] = None
    file_size_bytes: Optional[int] = None
    api_connection_config: Optional[Any] = None
    api_connection_config_version: Optional[int] = None
    cached_at: Optional[str] = None
    cache_expiry_date: Optional[str] = None
    record_count: Optional[int] = None
    error_message: Optional[str] = None
    created_at: str
    updated_at: str


class SourceUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    status: Optional[SourceStatus] = None
    error_message: Optional[str] = None
    api_connection_config: Optional[dict] = None
    expected_version: Optional[int] = Field(default=None, ge=0)


# --- Helpers ---

def _redact(config: Optional[dict]) -> Optional[dict]:
    if not isinstance(config, dict) or "apiKey" not in config:
        return config
    return {**config, "apiKey": REDACTED}


def _source_to_out(s: Source) -> SourceOut:
    return SourceOut(
        id=s.id,
        project_id=s.project_id,
        name=s.name,
        source_type=s.source_type.value if isinstance(s.source_type, SourceType) else s.source_type,
        status=s.status.value if isinstance(s.status, SourceStatus) else s.status,
        file_mime_type=s.file_mime_type,
        file_size_bytes=s.file_size_bytes,
        api_connection_config=_redact(s.api_connection_config),
        api_connection_config_version=s.api_connection_config_version,
        cached_at=s.cached_at.isoformat() if s.cached_at else None,
        cache_expiry_date=s.cache_expiry_date.isoformat() if s.cache_expiry_date else None,
        record_count=s.record_count,
        error_message=s.error_message,
        created_at=s.created_at.isoformat() if s.created_at else "",
        updated_at=s.updated_at.isoformat() if s.updated_at else "",
    )


# --- Endpoints ---

@router.post("", response_model=SourceOut, status_code=201)
async def create_source(
    project_id: str = Form(...),
    name: str = Form(..., min_length=1, max_length=200),
    source_type: SourceType = Form(...),
    api_connection_config: Optional[str] = Form(default=None),
    file: Optional[UploadFile] = File(default=None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a source: multipart with ``file`` for file sources, JSON config string for api sources"""
    config = None
    if api_connection_config:
        try:
            config = json.loads(api_connection_config)
        except ValueError:
            raise ValidationError("api_connection_config must be a JSON object")
        if not isinstance(config, dict):
            raise ValidationError("api_connection_config must be a JSON object")

    source = await sources_service.create_source(
        db, user.organisation_id, project_id, name, source_type,
        upload=file, api_connection_config=config,
    )
    return _source_to_out(source)


@router.get("", response_model=List[SourceOut])
async def list_sources(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    project_id: Optional[str] = None,
    status: Optional[SourceStatus] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
):
    sources = await sources_service.list_sources(
        db, user.organisation_id, project_id=project_id, status=status, page=page, limit=limit,
    )
    return [_source_to_out(s) for s in sources]


@router.get("/{source_id}", response_model=SourceOut)
async def get_source(
    source_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _source_to_out(await sources_service.get_source(db, user.organisation_id, source_id))


@router.patch("/{source_id}", response_model=SourceOut)
async def update_source(
    source_id: str,
    data: SourceUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    updates = data.model_dump(exclude_unset=True, exclude={"expected_version"})
    for required in ("name", "status"):
        if updates.get(required, "") is None:
            del updates[required]

    source = await sources_service.update_source(
        db, user.organisation_id, source_id, updates, expected_version=data.expected_version,
    )
    return _source_to_out(source)


@router.delete("/{source_id}", status_code=204)
async def delete_source(
    source_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await sources_service.delete_source(db, user.organisation_id, source_id)
    return Response(status_code=204)
