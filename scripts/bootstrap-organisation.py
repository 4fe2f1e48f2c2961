#!/usr/bin/env python3
"""
Foundry — Organisation bootstrap

Creates an organisation and a pending invite for its first admin, then prints
the invite token. The admin completes registration with
POST /api/v1/auth/register using that token.

Usage:
    python scripts/bootstrap-organisation.py --name "Acme Support" --admin-email ops@acme.dev
    python scripts/bootstrap-organisation.py --name "Acme" --slug acme --admin-email ops@acme.dev --create-tables

Reads DATABASE_URL from the environment.
"""

import os
import sys
import asyncio
import argparse

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "backend"))

from database import get_db_context, init_db  # noqa: E402
from errors import AppError  # noqa: E402
from services.organisations import bootstrap_organisation  # noqa: E402


async def run(args) -> int:
    if args.create_tables:
        await init_db()

    try:
        async with get_db_context() as db:
            org, admin = await bootstrap_organisation(db, args.name, args.admin_email, slug=args.slug)
    except AppError as e:
        print(f"❌ {e.code}: {e.message}", file=sys.stderr)
        return 1

    print(f"✅ Organisation created: {org.name} ({org.slug})")
    print(f"   Organisation ID: {org.id}")
    print(f"   Admin email:     {admin.email}")
    print(f"   Invite token:    {admin.invite_token}")
    print(f"   Token expires:   {admin.invite_token_expiry.isoformat()}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Foundry organisation bootstrap")
    parser.add_argument("--name", required=True, help="Organisation display name")
    parser.add_argument("--admin-email", required=True, help="Email of the first admin")
    parser.add_argument("--slug", default=None, help="URL slug (derived from the name when omitted)")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
