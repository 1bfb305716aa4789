#!/usr/bin/env python
"""Idempotent seed script for staff accounts.

Usage:
    python backend/scripts/seed_staff.py                       # ensure the initial admin exists
    python backend/scripts/seed_staff.py --email a@b.c --role staff --name "Front Desk"
    python backend/scripts/seed_staff.py --list                # print staff users and their permissions
    python backend/scripts/seed_staff.py --dry-run             # run logic then rollback (no DB changes)

The password comes from --password, else SEED_ADMIN_PASSWORD, else a
temporary default that should be changed immediately.
"""
from __future__ import annotations
import os, sys, argparse, textwrap
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from repair_tracker import create_app, get_db  # noqa: E402
from repair_tracker.constants.permissions import ROLE_ADMIN, ROLE_PRESETS  # noqa: E402
from repair_tracker.models.base import Base  # noqa: E402
from repair_tracker.models.staff import StaffUser  # noqa: E402
import repair_tracker.models.customer  # noqa: E402,F401
import repair_tracker.models.repair  # noqa: E402,F401
import repair_tracker.models.status_change  # noqa: E402,F401
import repair_tracker.models.audit  # noqa: E402,F401


def ensure_staff_user(session, email: str, name: str, role: str, password: str):
    """Return (user, created). Existing accounts are left untouched."""
    email = email.strip().lower()
    existing = session.execute(select(StaffUser).where(StaffUser.email == email)).scalar_one_or_none()
    if existing:
        return existing, False
    user = StaffUser(name=name, email=email, role=role, is_active=True)
    user.set_password(password)
    session.add(user)
    session.flush()
    return user, True


def print_staff(session):
    rows = session.execute(select(StaffUser).order_by(StaffUser.id)).scalars().all()
    if not rows:
        print("[INFO] No staff users present.")
        return
    email_w = max(len(u.email) for u in rows)
    print(f"{'Email'.ljust(email_w)} | Role  | Active | Permissions")
    print('-' * (email_w + 40))
    for u in rows:
        print(f"{u.email.ljust(email_w)} | {u.role.ljust(5)} | {str(u.is_active).ljust(6)} | {', '.join(u.permissions)}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Seed staff accounts for the repair tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed admin: seed_staff.py\n  add desk user: seed_staff.py --email desk@example.com --role staff\n  dry run: seed_staff.py --dry-run\n""")
    )
    p.add_argument('--email', default=os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com'))
    p.add_argument('--name', default='Administrator')
    p.add_argument('--role', default=ROLE_ADMIN, choices=sorted(ROLE_PRESETS))
    p.add_argument('--password', default=os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'))
    p.add_argument('--list', action='store_true', help='Print staff users after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--create-schema', action='store_true', help='Create missing tables first (prefer alembic upgrade)')
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    app = create_app()
    with app.app_context():
        session = get_db()
        if args.create_schema:
            Base.metadata.create_all(session.get_bind())
        try:
            user, created = ensure_staff_user(session, args.email, args.name, args.role, args.password)
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Would {'create' if created else 'keep'} {args.email}")
            else:
                session.commit()
                state = 'Created' if created else 'Already present:'
                print(f"[DONE] {state} {user.email} ({user.role})")
            if args.list:
                print_staff(session)
        except SQLAlchemyError as e:
            session.rollback()
            print(f"[ERROR] Seeding failed: {e}")
            print('Hint: run `alembic upgrade head` from backend/ or pass --create-schema')
            return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
