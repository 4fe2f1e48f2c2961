# services/organisations.py — Organisation bootstrap and invites
import re
import logging
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService
from errors import ConflictError
from models import Organisation, User, UserRole

logger = logging.getLogger("foundry.organisations")


def slugify(name: str) -> str:
    slug = re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')
    return slug[:50]


async def ensure_slug_free(db: AsyncSession, slug: str, exclude_id: Optional[str] = None):
    stmt = select(Organisation.id).where(Organisation.slug == slug, Organisation.deleted_at.is_(None))
    if exclude_id:
        stmt = stmt.where(Organisation.id != exclude_id)
    result = await db.execute(stmt)
    if result.first() is not None:
        raise ConflictError(f"Organisation slug '{slug}' already exists")


async def ensure_email_free(db: AsyncSession, email: str):
    result = await db.execute(select(User.id).where(User.email == email, User.deleted_at.is_(None)))
    if result.first() is not None:
        raise ConflictError(f"User with email '{email}' already exists")


async def create_invite(db: AsyncSession, organisation_id: str, email: str, role: UserRole) -> User:
    """Create a placeholder user holding a pending invite token. Does not commit."""
    await ensure_email_free(db, email)
    token, expiry = AuthService.generate_invite_token()
    user = User(
        organisation_id=organisation_id,
        email=email,
        password_hash="",
        name="",
        role=role,
        invite_token=token,
        invite_token_expiry=expiry,
    )
    db.add(user)
    return user


async def bootstrap_organisation(
    db: AsyncSession, name: str, admin_email: str, slug: Optional[str] = None,
) -> Tuple[Organisation, User]:
    """Create an organisation together with an invite for its first admin."""
    slug = slug or slugify(name)
    await ensure_slug_free(db, slug)

    org = Organisation(name=name, slug=slug)
    db.add(org)
    await db.flush()

    admin = await create_invite(db, org.id, admin_email, UserRole.ADMIN)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Organisation slug or admin email already exists")
    await db.refresh(org)
    await db.refresh(admin)

    logger.info(f"Organisation bootstrapped org={org.id} slug={slug}")
    return org, admin
