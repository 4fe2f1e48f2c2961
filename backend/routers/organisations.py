# routers/organisations.py — The caller's own organisation
from typing import Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_admin, CurrentUser
from database import get_db_session
from errors import ConflictError, NotFoundError, ValidationError
from models import Organisation, utcnow
from services.cascade import delete_organisation
from services.organisations import ensure_slug_free

router = APIRouter(prefix="/api/v1/organisations", tags=["Organisations"])


# --- Schemas ---

class OrgOut(BaseModel):
    id: str
    name: str
    slug: str
    created_at: str
    updated_at: str


class OrgUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    slug: Optional[str] = Field(default=None, min_length=2, max_length=50, pattern=r'^[a-z0-9][a-z0-9-]*$')


# --- Helpers ---

def _org_to_out(org: Organisation) -> OrgOut:
    return OrgOut(
        id=org.id,
        name=org.name,
        slug=org.slug,
        created_at=org.created_at.isoformat() if org.created_at else "",
        updated_at=org.updated_at.isoformat() if org.updated_at else "",
    )


async def _get_org(db: AsyncSession, organisation_id: str) -> Organisation:
    stmt = select(Organisation).where(
        Organisation.id == organisation_id,
        Organisation.deleted_at.is_(None),
    )
    result = await db.execute(stmt)
    org = result.scalar_one_or_none()
    if not org:
        raise NotFoundError("organisation")
    return org


# --- Endpoints ---

@router.get("/me", response_model=OrgOut)
async def get_my_organisation(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _org_to_out(await _get_org(db, user.organisation_id))


@router.patch("/me", response_model=OrgOut)
async def update_my_organisation(
    update: OrgUpdate,
    user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """Rename the organisation or change its slug (admin only)"""
    if update.name is None and update.slug is None:
        raise ValidationError("No updates provided")

    org = await _get_org(db, user.organisation_id)
    if update.slug is not None and update.slug != org.slug:
        await ensure_slug_free(db, update.slug, exclude_id=org.id)
        org.slug = update.slug
    if update.name is not None:
        org.name = update.name
    org.updated_at = utcnow()

    db.add(org)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"Organisation slug '{update.slug}' already exists")
    await db.refresh(org)
    return _org_to_out(org)


@router.delete("/me", status_code=204)
async def delete_my_organisation(
    user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """Soft-delete the organisation with its users, projects and their contents"""
    await delete_organisation(db, user.organisation_id)
    return Response(status_code=204)
