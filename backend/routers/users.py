# routers/users.py — User management and invitations
from typing import Optional, List

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, EmailStr
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_admin, CurrentUser
from database import get_db_session
from errors import NotFoundError, ValidationError
from models import User, UserRole, utcnow
from services.organisations import create_invite

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


# --- Schemas ---

class UserOut(BaseModel):
    id: str
    organisation_id: str
    email: str
    name: str
    role: str
    invite_pending: bool
    created_at: str
    updated_at: str


class UserUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[UserRole] = None


class UserInvite(BaseModel):
    email: EmailStr
    role: UserRole = UserRole.MEMBER


class InviteOut(BaseModel):
    user_id: str
    email: str
    role: str
    invite_token: str
    invite_token_expiry: str


# --- Helpers ---

def _user_to_out(u: User) -> UserOut:
    return UserOut(
        id=u.id,
        organisation_id=u.organisation_id,
        email=u.email,
        name=u.name or "",
        role=u.role.value if isinstance(u.role, UserRole) else u.role,
        invite_pending=u.invite_token is not None,
        created_at=u.created_at.isoformat() if u.created_at else "",
        updated_at=u.updated_at.isoformat() if u.updated_at else "",
    )


async def _get_org_user(db: AsyncSession, organisation_id: str, user_id: str) -> User:
    stmt = select(User).where(
        User.id == user_id,
        User.organisation_id == organisation_id,
        User.deleted_at.is_(None),
    )
    result = await db.execute(stmt)
    target = result.scalar_one_or_none()
    if not target:
        raise NotFoundError("user")
    return target


# --- Endpoints ---

@router.post("/invite", response_model=InviteOut, status_code=201)
async def invite_user(
    invite: UserInvite,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """Invite a user into the caller's organisation"""
    new_user = await create_invite(db, current_user.organisation_id, invite.email, invite.role)
    await db.commit()
    await db.refresh(new_user)

    return InviteOut(
        user_id=new_user.id,
        email=new_user.email,
        role=invite.role.value,
        invite_token=new_user.invite_token,
        invite_token_expiry=new_user.invite_token_expiry.isoformat(),
    )


@router.get("", response_model=List[UserOut])
async def list_users(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
):
    """List users in the current organisation"""
    stmt = (
        select(User)
        .where(User.organisation_id == user.organisation_id)
        .where(User.deleted_at.is_(None))
        .order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return [_user_to_out(u) for u in result.scalars().all()]


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    target = await _get_org_user(db, current_user.organisation_id, user_id)
    return _user_to_out(target)


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: str,
    update: UserUpdate,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """Change a user's name or role (admin only)"""
    changes = update.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("No updates provided")

    target = await _get_org_user(db, current_user.organisation_id, user_id)
    if "name" in changes:
        target.name = changes["name"]
    if "role" in changes:
        target.role = changes["role"]
    target.updated_at = utcnow()

    db.add(target)
    await db.commit()
    await db.refresh(target)
    return _user_to_out(target)


@router.delete("/{user_id}", status_code=204)
async def delete_user(
    user_id: str,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
):
    """Soft-delete a user"""
    if user_id == current_user.id:
        raise ValidationError("Cannot delete yourself")

    target = await _get_org_user(db, current_user.organisation_id, user_id)
    now = utcnow()
    target.deleted_at = now
    target.updated_at = now
    db.add(target)
    await db.commit()
    return Response(status_code=204)
