# routers/canonical_schemas.py — Global catalogue of canonical output schemas
from typing import Any, Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_admin, CurrentUser
from database import get_db_session
from errors import ConflictError, NotFoundError, ValidationError, VersionConflictError
from models import CanonicalSchema
from services.versioning import apply_versioned_update, versioned_update

router = APIRouter(prefix="/api/v1/canonical-schemas", tags=["Canonical Schemas"])


# --- Schemas ---

class SchemaOut(BaseModel):
    id: str
    name: str
    version: int
    schema_definition: Any
    schema_definition_version: int
    description: str
    is_published: bool
    created_at: str
    updated_at: str


class SchemaCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    version: int = Field(..., ge=1)
    schema_definition: dict
    description: str = ""
    is_published: bool = False


class SchemaUpdate(BaseModel):
    description: Optional[str] = None
    schema_definition: Optional[dict] = None
    is_published: Optional[bool] = None
    expected_version: Optional[int] = Field(default=None, ge=0)


# --- Helpers ---

def _schema_to_out(s: CanonicalSchema) -> SchemaOut:
    return SchemaOut(
        id=s.id,
        name=s.name,
        version=s.version,
        schema_definition=s.schema_definition,
        schema_definition_version=s.schema_definition_version,
        description=s.description or "",
        is_published=bool(s.is_published),
        created_at=s.created_at.isoformat() if s.created_at else "",
        updated_at=s.updated_at.isoformat() if s.updated_at else "",
    )


async def _get_schema(db: AsyncSession, schema_id: str) -> CanonicalSchema:
    stmt = (
        select(CanonicalSchema)
        .where(CanonicalSchema.id == schema_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    schema = result.scalar_one_or_none()
    if not schema:
        raise NotFoundError("canonical schema")
    return schema


# --- Endpoints ---

@router.get("", response_model=List[SchemaOut])
async def list_canonical_schemas(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    is_published: Optional[bool] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
):
    stmt = select(CanonicalSchema)
    if is_published is not None:
        stmt = stmt.where(CanonicalSchema.is_published == is_published)
    stmt = (
        stmt.order_by(CanonicalSchema.created_at.desc(), CanonicalSchema.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return [_schema_to_out(s) for s in result.scalars().all()]


@router.get("/{schema_id}", response_model=SchemaOut)
async def get_canonical_schema(
    schema_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _schema_to_out(await _get_schema(db, schema_id))


@router.post("", response_model=SchemaOut, status_code=201)
async def create_canonical_schema(
    data: SchemaCreate,
    user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """Register a schema (admin only); (name, version) must be new"""
    existing = await db.execute(
        select(CanonicalSchema.id).where(
            CanonicalSchema.name == data.name,
            CanonicalSchema.version == data.version,
        )
    )
    if existing.first():
        raise ConflictError(f"Canonical schema '{data.name}' version {data.version} already exists")

    schema = CanonicalSchema(
        name=data.name,
        version=data.version,
        schema_definition=data.schema_definition,
        schema_definition_version=apply_versioned_update(None, True),
        description=data.description,
        is_published=data.is_published,
    )
    db.add(schema)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Canonical schema '{data.name}' version {data.version} already exists")
    await db.refresh(schema)
    return _schema_to_out(schema)


@router.patch("/{schema_id}", response_model=SchemaOut)
async def update_canonical_schema(
    schema_id: str,
    data: SchemaUpdate,
    user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """Update a schema; replacing schema_definition bumps schema_definition_version"""
    # Every column here is NOT NULL, so an explicit null is treated as absent
    updates = data.model_dump(exclude_none=True, exclude={"expected_version"})
    if not updates:
        raise ValidationError("No updates provided")

    await _get_schema(db, schema_id)
    try:
        await versioned_update(
            db, CanonicalSchema, schema_id, updates,
            field="schema_definition",
            version_field="schema_definition_version",
            expected_version=data.expected_version,
        )
        await db.commit()
    except VersionConflictError:
        await db.rollback()
        raise
    return _schema_to_out(await _get_schema(db, schema_id))
