# routers/auth.py — Invite registration, login and session
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, UserRegister, UserLogin, ACCESS_TOKEN_EXPIRE_MINUTES,
    get_current_user, CurrentUser,
)
from database import get_db_session
from errors import NotFoundError
from models import User
from routers.users import UserOut, _user_to_out

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut


def _build_token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=AuthService.token_for_user(user),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=_user_to_out(user),
    )


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    user_data: UserRegister,
    db: AsyncSession = Depends(get_db_session),
):
    """Complete a pending invite: set name and password, receive a token"""
    user = await AuthService.register_user(user_data, db)
    return _build_token_response(user)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    return _build_token_response(user)


@router.get("/session", response_model=UserOut)
async def get_session(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """The caller's own user record"""
    stmt = select(User).where(
        User.id == user.id,
        User.organisation_id == user.organisation_id,
        User.deleted_at.is_(None),
    )
    result = await db.execute(stmt)
    user_obj = result.scalar_one_or_none()
    if not user_obj:
        raise NotFoundError("user")
    return _user_to_out(user_obj)
