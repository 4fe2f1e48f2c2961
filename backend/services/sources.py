# services/sources.py — Data sources (file uploads and API connections)
"""
A Source carries exactly one payload shape, selected by ``source_type``:

- ``file``: file_upload_path, file_mime_type, file_size_bytes
- ``api``:  api_connection_config, api_connection_config_version

The shape is checked here, at the service boundary, so a row never holds
fields of both branches.
"""
import os
import uuid
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from errors import FileSizeError, NotFoundError, ValidationError, VersionConflictError
from models import Source, SourceStatus, SourceType, utcnow
from services.scoping import get_scoped_child, get_scoped_project, ordered, paginate, scoped_children
from services.teamwork_desk import store_api_key
from services.versioning import apply_versioned_update, versioned_update

logger = logging.getLogger("foundry.sources")

# What clients see in place of a stored apiKey; sending it back keeps the stored key
REDACTED_KEY = "********"

UPLOAD_ROOT = os.getenv("UPLOAD_ROOT", "./uploads")
MAX_FILE_SIZE_MB = int(os.getenv("MAX_FILE_SIZE_MB", "100"))
CHUNK_SIZE = 1024 * 1024

ALLOWED_MIME_TYPES = {
    "text/csv",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/json",
}

FILE_FIELDS = ("file_upload_path", "file_mime_type", "file_size_bytes")
API_FIELDS = ("api_connection_config",)


def validate_payload(source_type: SourceType, values: Dict[str, Any]) -> None:
    """Reject values that belong to the other branch of ``source_type``."""
    foreign = API_FIELDS if source_type == SourceType.FILE else FILE_FIELDS
    present = [f for f in foreign if values.get(f) is not None]
    if present:
        raise ValidationError(
            f"Fields {', '.join(present)} are not valid for a {source_type.value} source",
            {"source_type": source_type.value, "fields": present},
        )


def seal_api_key(config: Dict[str, Any], stored: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return ``config`` with its apiKey in stored form.

    A submitted key is always treated as raw and sealed with store_api_key.
    The redaction mask stands for the key already stored on the source.
    """
    if "apiKey" not in config:
        return config
    key = config["apiKey"]
    if key == REDACTED_KEY:
        previous = (stored or {}).get("apiKey")
        if previous is None:
            raise ValidationError("apiKey must be provided", {"fields": ["apiKey"]})
        return {**config, "apiKey": previous}
    if not isinstance(key, str) or not key.strip():
        raise ValidationError("apiKey must be a non-empty string", {"fields": ["apiKey"]})
    return {**config, "apiKey": store_api_key(key.strip())}


def _discard(path: str) -> None:
    if os.path.exists(path):
        os.remove(path)


async def store_upload(project_id: str, upload) -> Dict[str, Any]:
    """Write an UploadFile under UPLOAD_ROOT, enforcing type and size limits."""
    mime_type = (upload.content_type or "").split(";")[0].strip()
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(
            f"Invalid file type. Allowed: {', '.join(sorted(ALLOWED_MIME_TYPES))}",
            {"mime_type": mime_type},
        )

    directory = os.path.join(UPLOAD_ROOT, project_id)
    os.makedirs(directory, exist_ok=True)
    extension = os.path.splitext(upload.filename or "")[1]
    path = os.path.join(directory, f"{uuid.uuid4().hex}{extension}")

    limit = MAX_FILE_SIZE_MB * 1024 * 1024
    size = 0
    try:
        with open(path, "wb") as out:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > limit:
                    raise FileSizeError(
                        f"File exceeds the {MAX_FILE_SIZE_MB} MB limit",
                        {"max_file_size_mb": MAX_FILE_SIZE_MB},
                    )
                out.write(chunk)
    except BaseException:
        _discard(path)
        raise

    return {"file_upload_path": path, "file_mime_type": mime_type, "file_size_bytes": size}


async def create_source(
    db: AsyncSession,
    organisation_id: str,
    project_id: str,
    name: str,
    source_type: SourceType,
    upload=None,
    api_connection_config: Optional[Dict[str, Any]] = None,
) -> Source:
    project = await get_scoped_project(db, organisation_id, project_id)
    source_type = SourceType(source_type)

    if source_type == SourceType.FILE:
        if upload is None:
            raise ValidationError("A file source requires an uploaded file")
        validate_payload(source_type, {"api_connection_config": api_connection_config})
        payload = await store_upload(project.id, upload)
    else:
        if upload is not None:
            raise ValidationError("An api source cannot carry an uploaded file")
        if not api_connection_config:
            raise ValidationError("An api source requires api_connection_config")
        payload = {
            "api_connection_config": seal_api_key(api_connection_config),
            "api_connection_config_version": apply_versioned_update(None, True),
        }

    source = Source(
        project_id=project.id,
        name=name,
        source_type=source_type,
        status=SourceStatus.CONNECTED,
        **payload,
    )
    db.add(source)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        if source_type == SourceType.FILE:
            _discard(payload["file_upload_path"])
        raise
    await db.refresh(source)

    logger.info(f"Source created source_id={source.id} type={source_type.value} project_id={project.id}")
    return source


async def list_sources(
    db: AsyncSession,
    organisation_id: str,
    project_id: Optional[str] = None,
    status: Optional[SourceStatus] = None,
    page: int = 1,
    limit: int = 50,
) -> List[Source]:
    stmt = scoped_children(Source, organisation_id)
    if project_id:
        stmt = stmt.where(Source.project_id == project_id)
    if status:
        stmt = stmt.where(Source.status == status)
    result = await db.execute(paginate(ordered(stmt, Source), page, limit))
    return list(result.scalars().all())


async def get_source(db: AsyncSession, organisation_id: str, source_id: str) -> Source:
    return await get_scoped_child(db, Source, organisation_id, source_id)


async def update_source(
    db: AsyncSession,
    organisation_id: str,
    source_id: str,
    updates: Dict[str, Any],
    expected_version: Optional[int] = None,
) -> Source:
    if not updates:
        raise ValidationError("No updates provided")

    source = await get_source(db, organisation_id, source_id)
    validate_payload(SourceType(source.source_type), updates)
    if "api_connection_config" in updates:
        if not updates["api_connection_config"]:
            raise ValidationError("api_connection_config cannot be empty")
        updates = {
            **updates,
            "api_connection_config": seal_api_key(
                updates["api_connection_config"], source.api_connection_config,
            ),
        }

    try:
        matched = await versioned_update(
            db, Source, source.id, updates,
            field="api_connection_config",
            version_field="api_connection_config_version",
            expected_version=expected_version,
        )
        await db.commit()
    except VersionConflictError:
        await db.rollback()
        raise

    if matched == 0:
        raise NotFoundError("source")
    return await get_source(db, organisation_id, source.id)


async def delete_source(db: AsyncSession, organisation_id: str, source_id: str) -> None:
    source = await get_source(db, organisation_id, source_id)
    now = utcnow()
    source.deleted_at = now
    source.updated_at = now
    await db.commit()
    logger.info(f"Source deleted source_id={source.id}")
