#!/usr/bin/env python3
"""
Waste Admin -- administrative backend for the municipal waste-management platform.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000 --reload
  python main.py create-admin --email admin@example.ro --password 'change-me-now'
  python main.py seed

Environment variables (or .env):
  DEBUG               true in development; auto-generates signing secrets
  DATABASE_URL        SQLAlchemy URL (default: sqlite file next to this script)
  JWT_SECRET          access-token signing secret (>= 32 chars, required unless DEBUG)
  JWT_REFRESH_SECRET  refresh-token signing secret (>= 32 chars, must differ)
"""

import argparse
import logging
import sys

from auth.passwords import hash_password
from core import errors
from identity.models import GlobalRole, InstitutionRole, InstitutionType, TerritoryLevel
from identity.store import IdentityStore

logger = logging.getLogger("wasteadmin.cli")

# ---------------------------------------------------------------------------
# Demo data
# ---------------------------------------------------------------------------

DEMO_ADMIN = ("admin@test.ro", "admin123", GlobalRole.PLATFORM_ADMIN)

DEMO_INSTITUTIONS = [
    ("Primăria Sector 3", InstitutionType.PRIMARIE_SECTOR, TerritoryLevel.SECTOR, "S3"),
    ("Primăria Sector 6", InstitutionType.PRIMARIE_SECTOR, TerritoryLevel.SECTOR, "S6"),
    ("Primăria Municipiului București", InstitutionType.PMB, TerritoryLevel.MUNICIPIU, "B"),
    ("Operator Salubrizare Sector 3", InstitutionType.OPERATOR_SALUBRIZARE, TerritoryLevel.SECTOR, "S3"),
]

# (email, password, global role, institution name or None, institution role or None)
DEMO_USERS = [
    ("admin.s3@primarie.ro", "primarie123", GlobalRole.STANDARD_USER, "Primăria Sector 3", InstitutionRole.INSTITUTION_ADMIN),
    ("editor.s3@primarie.ro", "editor123", GlobalRole.STANDARD_USER, "Primăria Sector 3", InstitutionRole.INSTITUTION_EDITOR),
    ("regulator@mediu.gov.ro", "regulator123", GlobalRole.REGULATOR_VIEWER, None, None),
]


def seed_demo_data(store: IdentityStore) -> dict[str, int]:
    """Load the demo data set. Safe to run repeatedly: existing rows are reused.

    Returns {email or institution name: id} for everything seeded.
    """
    ids: dict[str, int] = {}
    for name, inst_type, level, code in DEMO_INSTITUTIONS:
        institution = store.find_institution_by_name_and_code(name, code)
        if institution is None:
            institution = store.create_institution(name, inst_type, level, code)
        ids[name] = institution.id

    email, password, role = DEMO_ADMIN
    ids[email] = _ensure_user(store, email, password, role).id

    for email, password, role, inst_name, inst_role in DEMO_USERS:
        user = _ensure_user(store, email, password, role)
        ids[email] = user.id
        if inst_name is not None:
            store.upsert_membership(user.id, ids[inst_name], inst_role)
    return ids


def _ensure_user(store: IdentityStore, email: str, password: str, role: GlobalRole):
    user = store.find_user_by_email(email)
    if user is None:
        user = store.create_user(email, hash_password(password), role)
    return user


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _create_admin(args: argparse.Namespace) -> int:
    if len(args.password) < 6:
        print("  [!] Password must be at least 6 characters.")
        return 1
    store = IdentityStore()
    try:
        user = store.create_user(args.email, hash_password(args.password), GlobalRole.PLATFORM_ADMIN)
    except errors.DuplicateEmail:
        print(f"  [!] A user with email '{args.email}' already exists.")
        return 1
    finally:
        store.close()
    print(f"  Created platform admin {user.email} (id={user.id}).")
    return 0


def _seed(args: argparse.Namespace) -> int:
    store = IdentityStore()
    try:
        ids = seed_demo_data(store)
    finally:
        store.close()
    print(f"  Seeded {len(DEMO_INSTITUTIONS)} institutions and {len(DEMO_USERS) + 1} users.")
    for key, value in ids.items():
        print(f"    {key:<40} id={value}")
    print("\n  Demo login: admin@test.ro / admin123")
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-5s %(name)s %(message)s")
    parser = argparse.ArgumentParser(
        prog="waste-admin",
        description="Administrative backend for the waste-management platform.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py create-admin --email admin@example.ro --password 'change-me-now'
  DEBUG=true python main.py seed
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API under uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=_serve)

    create_admin = sub.add_parser("create-admin", help="Create an active PLATFORM_ADMIN account")
    create_admin.add_argument("--email", required=True, help="Login email for the new admin")
    create_admin.add_argument("--password", required=True, help="Initial password (>= 6 characters)")
    create_admin.set_defaults(func=_create_admin)

    seed = sub.add_parser("seed", help="Load the demo institutions and accounts (idempotent)")
    seed.set_defaults(func=_seed)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
