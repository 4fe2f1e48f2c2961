# services/projects.py — Project CRUD under organisation scope
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ConflictError, NotFoundError, ValidationError, VersionConflictError
from models import CanonicalSchema, Project, ProjectStatus
from services.scoping import get_scoped_project, ordered, paginate, scoped_projects
from services.versioning import apply_versioned_update, versioned_update

logger = logging.getLogger("foundry.projects")


async def _ensure_name_free(db: AsyncSession, organisation_id: str, name: str, exclude_id: Optional[str] = None):
    stmt = select(Project.id).where(
        Project.organisation_id == organisation_id,
        Project.name == name,
        Project.deleted_at.is_(None),
    )
    if exclude_id:
        stmt = stmt.where(Project.id != exclude_id)
    result = await db.execute(stmt)
    if result.first() is not None:
        raise ConflictError(f"Project '{name}' already exists in this organisation")


async def create_project(
    db: AsyncSession,
    organisation_id: str,
    user_id: Optional[str],
    name: str,
    canonical_schema_id: str,
    description: Optional[str] = None,
    processing_config: Optional[Dict[str, Any]] = None,
) -> Project:
    schema = await db.get(CanonicalSchema, canonical_schema_id)
    if schema is None:
        raise NotFoundError("canonical schema")

    await _ensure_name_free(db, organisation_id, name)

    project = Project(
        organisation_id=organisation_id,
        created_by_user_id=user_id,
        canonical_schema_id=canonical_schema_id,
        name=name,
        description=description,
        status=ProjectStatus.DRAFT,
        processing_config=processing_config,
        processing_config_version=apply_versioned_update(None, processing_config is not None),
    )
    db.add(project)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Project '{name}' already exists in this organisation")
    await db.refresh(project)

    logger.info(f"Project created project_id={project.id} org={organisation_id}")
    return project


async def list_projects(
    db: AsyncSession,
    organisation_id: str,
    status: Optional[ProjectStatus] = None,
    page: int = 1,
    limit: int = 50,
) -> List[Project]:
    stmt = scoped_projects(organisation_id)
    if status:
        stmt = stmt.where(Project.status == status)
    result = await db.execute(paginate(ordered(stmt, Project), page, limit))
    return list(result.scalars().all())


async def get_project(db: AsyncSession, organisation_id: str, project_id: str) -> Project:
    return await get_scoped_project(db, organisation_id, project_id)


async def update_project(
    db: AsyncSession,
    organisation_id: str,
    project_id: str,
    updates: Dict[str, Any],
    expected_version: Optional[int] = None,
) -> Project:
    """Apply a partial update.

    ``updates`` holds only the fields the caller sent; a ``processing_config``
    key (even with a null value) replaces the configuration and bumps
    ``processing_config_version``.
    """
    if not updates:
        raise ValidationError("No updates provided")

    project = await get_scoped_project(db, organisation_id, project_id)
    if updates.get("name") and updates["name"] != project.name:
        await _ensure_name_free(db, organisation_id, updates["name"], exclude_id=project.id)

    try:
        matched = await versioned_update(
            db, Project, project.id, updates,
            field="processing_config",
            version_field="processing_config_version",
            expected_version=expected_version,
        )
        await db.commit()
    except VersionConflictError:
        await db.rollback()
        raise
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Project '{updates.get('name')}' already exists in this organisation")

    if matched == 0:
        raise NotFoundError("project")
    return await get_scoped_project(db, organisation_id, project.id)
