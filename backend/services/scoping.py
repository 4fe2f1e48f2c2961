# services/scoping.py — Organisation ownership & soft-delete visibility
"""
Every read or write of a Project, Source, ProcessingJob or Dataset goes
through these helpers. Projects are filtered by organisation directly;
children are joined through their Project so that a child of a deleted or
foreign project is invisible too.

A lookup that matches nothing raises NotFoundError. Missing, soft-deleted and
foreign-organisation entities all produce the same error so callers cannot
probe for the existence of another tenant's data.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFoundError
from models import Project, Source, ProcessingJob, Dataset

RESOURCE_NAMES = {
    Project: "project",
    Source: "source",
    ProcessingJob: "processing job",
    Dataset: "dataset",
}


def scoped_projects(organisation_id: str, include_deleted: bool = False):
    stmt = select(Project).where(Project.organisation_id == organisation_id)
    if not include_deleted:
        stmt = stmt.where(Project.deleted_at.is_(None))
    return stmt


def scoped_children(model, organisation_id: str, include_deleted: bool = False):
    """Select ``model`` rows owned (through Project) by ``organisation_id``."""
    stmt = (
        select(model)
        .join(Project, model.project_id == Project.id)
        .where(Project.organisation_id == organisation_id)
    )
    if not include_deleted:
        stmt = stmt.where(Project.deleted_at.is_(None), model.deleted_at.is_(None))
    return stmt


def ordered(stmt, model):
    """Stable listing order: newest first, id as tie-breaker."""
    return stmt.order_by(model.created_at.desc(), model.id.desc())


def paginate(stmt, page: int, limit: int):
    return stmt.offset((page - 1) * limit).limit(limit)


async def get_scoped_project(
    db: AsyncSession, organisation_id: str, project_id: str, include_deleted: bool = False,
) -> Project:
    stmt = scoped_projects(organisation_id, include_deleted).where(Project.id == project_id)
    result = await db.execute(stmt.execution_options(populate_existing=True))
    project = result.scalar_one_or_none()
    if project is None:
        raise NotFoundError("project")
    return project


async def get_scoped_child(
    db: AsyncSession, model, organisation_id: str, row_id: str, include_deleted: bool = False,
):
    stmt = scoped_children(model, organisation_id, include_deleted).where(model.id == row_id)
    result = await db.execute(stmt.execution_options(populate_existing=True))
    row = result.scalar_one_or_none()
    if row is None:
        raise NotFoundError(RESOURCE_NAMES[model])
    return row
