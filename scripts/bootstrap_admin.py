#!/usr/bin/env python3
"""Promote an existing user to the admin role.

Users are created by their first OAuth login, so the account must have signed
in once before it can be promoted.

Usage:
    DATABASE_URL=postgresql://... python scripts/bootstrap_admin.py --login octocat

    # Or via environment:
    ADMIN_LOGIN=octocat python scripts/bootstrap_admin.py --dry-run

Environment Variables:
    ADMIN_LOGIN: Provider login of the user to promote
    DATABASE_URL: PostgreSQL connection string (required)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from keyflow.service.auth import ADMIN_ROLE  # noqa: E402
from keyflow.storage.models import UserStore  # noqa: E402


def promote_admin(store: UserStore, login: str, dry_run: bool = False) -> dict:
    """Grant ``login`` the admin role.

    Returns:
        dict with user_id, login, and status ('promoted', 'already_admin',
        'dry_run' or 'not_found')
    """
    user = store.get_user_by_login(login)
    if not user:
        print(f"No user with login {login}; sign in once through the web app first")
        return {"user_id": None, "login": login, "status": "not_found"}

    if user.role == ADMIN_ROLE:
        print(f"User {login} is already an admin (id: {user.id})")
        return {"user_id": user.id, "login": login, "status": "already_admin"}

    if dry_run:
        print(f"[DRY RUN] Would promote {login} to admin")
        return {"user_id": user.id, "login": login, "status": "dry_run"}

    store.update_user_role(user.id, ADMIN_ROLE)
    print(f"Promoted {login} to admin (id: {user.id})")
    return {"user_id": user.id, "login": login, "status": "promoted"}


def main():
    parser = argparse.ArgumentParser(
        description="Promote a Keyflow user to admin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--login",
        default=os.environ.get("ADMIN_LOGIN"),
        help="Provider login (or set ADMIN_LOGIN env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    if not args.login:
        print("Error: --login or ADMIN_LOGIN environment variable required")
        sys.exit(1)

    from keyflow.config import get_settings
    from keyflow.storage.postgres import PostgresStore

    settings = get_settings()
    if not settings.database_url:
        print("Error: DATABASE_URL is required; the in-memory store does not persist")
        sys.exit(1)

    store = PostgresStore(settings.database_url)
    try:
        result = promote_admin(store, args.login, args.dry_run)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        store.close()

    if result["status"] == "not_found":
        sys.exit(2)


if __name__ == "__main__":
    main()
