# services/versioning.py — Version counters for replaceable JSON configuration
"""
Entities that hold a JSON configuration blob next to an integer version
(Project.processing_config, CanonicalSchema.schema_definition,
Source.api_connection_config) follow one rule: replacing the blob bumps the
version by exactly one relative to the stored value, and any other update
leaves it alone.

The increment is evaluated by the database inside the UPDATE that replaces the
blob, so two concurrent replacements can never both read the same starting
value. Callers that want optimistic concurrency pass ``expected_version``; the
UPDATE then only matches when the stored version still equals it.
"""
from typing import Any, Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from errors import VersionConflictError
from models import utcnow


def apply_versioned_update(current_version: Optional[int], field_is_being_replaced: bool) -> Optional[int]:
    if not field_is_being_replaced:
        return current_version
    if current_version is None:
        return 1
    return current_version + 1


def next_version(version_column):
    """SQL expression for the incremented counter (a null counter counts as 0)."""
    return func.coalesce(version_column, 0) + 1


async def versioned_update(
    db: AsyncSession,
    model,
    row_id: str,
    values: Dict[str, Any],
    *,
    field: str,
    version_field: str,
    expected_version: Optional[int] = None,
) -> int:
    """Apply ``values`` to one row, bumping ``version_field`` when ``field`` is replaced.

    Soft-deleted rows never match. Returns the number of matched rows (0 or 1)
    and does not commit. Raises VersionConflictError when ``expected_version``
    is given and the visible row carries a different version.
    """
    version_column = getattr(model, version_field)
    values = dict(values)
    replacing = field in values
    values["updated_at"] = utcnow()

    conditions = [model.id == row_id]
    if hasattr(model, "deleted_at"):
        conditions.append(model.deleted_at.is_(None))

    guarded = list(conditions)
    if replacing:
        values[version_field] = next_version(version_column)
        if expected_version is not None:
            guarded.append(func.coalesce(version_column, 0) == expected_version)

    stmt = (
        update(model)
        .where(*guarded)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)

    if result.rowcount == 0 and len(guarded) > len(conditions):
        exists = await db.execute(select(model.id).where(*conditions))
        if exists.first() is not None:
            raise VersionConflictError(field, expected_version)

    return result.rowcount
