# auth.py — Authentication & role checks for the Foundry API
# Features:
# - HS256 JWT access tokens with JTI
# - Two roles (admin, member)
# - Password policy enforcement (min 12 chars)
# - Invite-token registration
#
# The identity carried by a valid token ({sub, organisation_id, role}) is
# trusted verbatim; it is never re-derived from the database.

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

import bcrypt
from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, EmailStr, field_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import AuthenticationError, AuthorizationError, ConflictError, InviteTokenError
from models import User, UserRole, utcnow

logger = logging.getLogger("foundry.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "change-this-to-a-secure-random-key-in-production":
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "JWT_SECRET_KEY not set or insecure. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ISSUER = "foundry-api"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
INVITE_TOKEN_TTL_DAYS = int(os.getenv("INVITE_TOKEN_TTL_DAYS", "7"))
MIN_PASSWORD_LENGTH = 12

security = HTTPBearer(auto_error=False)


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class UserRegister(BaseModel):
    email: EmailStr
    password: str
    name: str
    invite_token: str

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if not any(c.isupper() for c in v):
            raise ValueError("Password must contain at least one uppercase letter")
        if not any(c.isdigit() for c in v):
            raise ValueError("Password must contain at least one digit")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class CurrentUser(BaseModel):
    id: str
    organisation_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Password hashing, token issuance and invite-based registration"""

    @staticmethod
    def hash_password(password: str) -> str:
        salt = bcrypt.gensalt(rounds=12)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        if not password_hash:
            return False
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
            "iat": now,
            "iss": ISSUER,
            "type": "access",
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def token_for_user(user: User) -> str:
        return AuthService.create_access_token({
            "sub": user.id,
            "organisation_id": user.organisation_id,
            "role": user.role.value if isinstance(user.role, UserRole) else user.role,
        })

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM], issuer=ISSUER)
        except ExpiredSignatureError:
            raise AuthenticationError("Token expired")
        except JWTError:
            raise AuthenticationError("Invalid or expired token")

    @staticmethod
    def generate_invite_token() -> tuple:
        """Returns (token, expiry)"""
        return secrets.token_hex(32), utcnow() + timedelta(days=INVITE_TOKEN_TTL_DAYS)

    @staticmethod
    async def register_user(user_data: UserRegister, db: AsyncSession) -> User:
        stmt = select(User).where(
            User.invite_token == user_data.invite_token,
            User.invite_token_expiry > utcnow(),
            User.deleted_at.is_(None),
        )
        result = await db.execute(stmt)
        invited = result.scalar_one_or_none()
        if not invited:
            raise InviteTokenError("Invalid or expired invite token")

        if user_data.email != invited.email:
            clash = await db.execute(
                select(User.id).where(
                    User.email == user_data.email,
                    User.id != invited.id,
                    User.deleted_at.is_(None),
                )
            )
            if clash.first():
                raise ConflictError(f"User with email '{user_data.email}' already exists")

        invited.email = user_data.email
        invited.name = user_data.name
        invited.password_hash = AuthService.hash_password(user_data.password)
        invited.invite_token = None
        invited.invite_token_expiry = None
        db.add(invited)
        await db.commit()
        await db.refresh(invited)

        logger.info(f"User registered from invite user_id={invited.id} org={invited.organisation_id}")
        return invited

    @staticmethod
    async def authenticate_user(email: str, password: str, db: AsyncSession) -> User:
        stmt = select(User).where(User.email == email, User.deleted_at.is_(None))
        result = await db.execute(stmt)
        user = result.scalar_one_or_none()

        if not user or not AuthService.verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid email or password")
        return user


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Missing or invalid authorization header")

    payload = AuthService.verify_token(credentials.credentials)

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type")

    user_id = payload.get("sub")
    organisation_id = payload.get("organisation_id")
    role = payload.get("role")
    if not user_id or not organisation_id or role not in {r.value for r in UserRole}:
        raise AuthenticationError("Invalid token")

    return CurrentUser(id=user_id, organisation_id=organisation_id, role=role)


def require_role(*roles: UserRole):
    """Dependency factory: require user to have one of the specified roles"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if UserRole(user.role) not in roles:
            raise AuthorizationError("Admin access required" if roles == (UserRole.ADMIN,) else "Insufficient role privileges")
        return user
    return _check


require_admin = require_role(UserRole.ADMIN)
