# services/cascade.py — Soft-delete cascades
"""
Project and organisation deletes are soft and transactional. One timestamp is
captured per cascade and written to every affected row, so the rows deleted
together can be identified later by their shared ``deleted_at``.

A database failure in any step rolls the whole cascade back and surfaces as
CascadeDeleteError naming the step that failed.
"""
import logging
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import CascadeDeleteError, NotFoundError
from models import Dataset, Organisation, ProcessingJob, Project, Source, User, utcnow
from services.scoping import get_scoped_project

logger = logging.getLogger("foundry.cascade")


def _soft_delete(model, now: datetime, *conditions):
    return (
        update(model)
        .where(*conditions, model.deleted_at.is_(None))
        .values(deleted_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )


def _project_children_steps(project_ids, now: datetime):
    """(step name, statement) pairs deleting everything owned by ``project_ids``."""
    job_ids = select(ProcessingJob.id).where(ProcessingJob.project_id.in_(project_ids))
    return [
        ("sources", _soft_delete(Source, now, Source.project_id.in_(project_ids))),
        ("processing jobs", _soft_delete(ProcessingJob, now, ProcessingJob.project_id.in_(project_ids))),
        # job_ids ignores deleted_at, so datasets of the jobs just deleted still match
        ("datasets", _soft_delete(
            Dataset, now,
            or_(Dataset.project_id.in_(project_ids), Dataset.processing_job_id.in_(job_ids)),
        )),
    ]


async def _run_steps(db: AsyncSession, entity: str, steps) -> dict:
    """Run ``steps`` in one transaction. The first step must delete ``entity`` itself."""
    counts = {}
    step = None
    try:
        for step, stmt in steps:
            result = await db.execute(stmt)
            counts[step] = result.rowcount
            if step == entity and result.rowcount != 1:
                # Deleted concurrently since it was looked up
                await db.rollback()
                raise NotFoundError(entity)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Cascade delete of {entity} failed at step={step}")
        raise CascadeDeleteError(entity, step)
    return counts


async def delete_project(db: AsyncSession, organisation_id: str, project_id: str) -> datetime:
    project = await get_scoped_project(db, organisation_id, project_id)
    now = utcnow()

    steps = [("project", _soft_delete(Project, now, Project.id == project.id))]
    steps += _project_children_steps([project.id], now)
    counts = await _run_steps(db, "project", steps)

    logger.info(f"Project deleted project_id={project.id} cascade={counts}")
    return now


async def delete_organisation(db: AsyncSession, organisation_id: str) -> datetime:
    """Soft-delete an organisation with its users, projects and everything they own."""
    result = await db.execute(
        select(Organisation.id).where(
            Organisation.id == organisation_id, Organisation.deleted_at.is_(None),
        )
    )
    if result.scalar_one_or_none() is None:
        raise NotFoundError("organisation")

    # Projects deleted earlier already had their own cascade
    live = await db.execute(
        select(Project.id).where(
            Project.organisation_id == organisation_id, Project.deleted_at.is_(None),
        )
    )
    project_ids = list(live.scalars().all())
    now = utcnow()

    steps = [
        ("organisation", _soft_delete(Organisation, now, Organisation.id == organisation_id)),
        ("users", _soft_delete(User, now, User.organisation_id == organisation_id)),
        ("projects", _soft_delete(Project, now, Project.organisation_id == organisation_id)),
    ]
    steps += _project_children_steps(project_ids, now)
    counts = await _run_steps(db, "organisation", steps)

    logger.info(f"Organisation deleted organisation_id={organisation_id} cascade={counts}")
    return now
