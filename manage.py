#!/usr/bin/env python3
"""
CodeGate administration commands.

Operates directly on the configured database (DATABASE_URL), so it works
before any admin account exists. This is how the first admin is bootstrapped:
create a role, let the person log in once with an emailed code, then assign it.

Usage:
  python manage.py create-role admin --permission users:* --permission roles:*
  python manage.py assign-role alice@example.com admin
  python manage.py set-status mallory@example.com suspended
  python manage.py purge
"""

import argparse
import logging
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.codes import CodeStore
from auth.models import Role, UserStatus
from auth.permissions import Permission, normalize_permissions
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings


def _parse_permissions(values: list[str]) -> dict[str, frozenset[str]]:
    """Fold repeated --permission resource:action flags into a permission map."""
    grouped: dict[str, set[str]] = {}
    for value in values:
        perm = Permission.parse(value)
        grouped.setdefault(perm.resource, set()).add(perm.action)
    return normalize_permissions(grouped)


def create_role(store: UserStore, name: str, permissions: list[str], description: Optional[str]) -> int:
    try:
        perms = _parse_permissions(permissions)
    except ValueError as e:
        print(f"  [!] {e}")
        return 2
    try:
        role_id = store.create_role(Role(name=name, description=description, permissions=perms))
    except IntegrityError:
        print(f"  [!] A role named '{name}' already exists.")
        return 1
    print(f"  Created role '{name}' (id {role_id}).")
    return 0


def assign_role(store: UserStore, email: str, role_name: str) -> int:
    user = store.find_by_email(email)
    if user is None:
        print(f"  [!] No user with email '{email}'.")
        return 1
    role = store.get_role_by_name(role_name)
    if role is None:
        print(f"  [!] No role named '{role_name}'.")
        return 1
    store.set_role(user.id, role.id)
    print(f"  Assigned role '{role.name}' to {user.email}.")
    return 0


def set_status(store: UserStore, sessions: SessionStore, email: str, status: str) -> int:
    user = store.find_by_email(email)
    if user is None:
        print(f"  [!] No user with email '{email}'.")
        return 1
    new_status = UserStatus(status)
    store.update_status(user.id, new_status)
    revoked = 0
    if new_status != UserStatus.active:
        revoked = sessions.delete_for_user(user.id)
    print(f"  {user.email} is now {new_status.value} ({revoked} session(s) revoked).")
    return 0


def purge(sessions: SessionStore, codes: CodeStore, window: int) -> int:
    removed_sessions = sessions.delete_expired()
    removed_codes = codes.purge_expired(window)
    print(f"  Removed {removed_sessions} expired session(s) and {removed_codes} expired code(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="codegate-manage",
        description="Administer CodeGate users, roles and stored sessions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python manage.py create-role admin --permission users:* --permission roles:*
  python manage.py create-role viewer --permission users:read --description "Read-only"
  python manage.py assign-role alice@example.com admin
  python manage.py set-status mallory@example.com suspended
  python manage.py purge
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_role = commands.add_parser("create-role", help="Create a role with a permission map")
    p_role.add_argument("name", help="Role name, unique")
    p_role.add_argument(
        "--permission",
        action="append",
        default=[],
        metavar="RESOURCE:ACTION",
        help="Grant one permission; repeat the flag for more. Use '*' as the action for all actions.",
    )
    p_role.add_argument("--description", default=None, help="Free-text description")

    p_assign = commands.add_parser("assign-role", help="Assign a role to a user by email")
    p_assign.add_argument("email")
    p_assign.add_argument("role", help="Role name")

    p_status = commands.add_parser("set-status", help="Activate, deactivate or suspend a user")
    p_status.add_argument("email")
    p_status.add_argument("status", choices=[s.value for s in UserStatus])

    commands.add_parser("purge", help="Delete expired sessions and verification codes")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s")
    settings = get_settings()
    db_url = args.database_url or settings.database_url

    if args.command == "purge":
        sessions = SessionStore(db_url)
        codes = CodeStore(db_url)
        try:
            return purge(sessions, codes, settings.code_resend_seconds)
        finally:
            sessions.close()
            codes.close()

    store = UserStore(db_url)
    try:
        if args.command == "create-role":
            return create_role(store, args.name, args.permission, args.description)
        if args.command == "assign-role":
            return assign_role(store, args.email, args.role)
        sessions = SessionStore(db_url)
        try:
            return set_status(store, sessions, args.email, args.status)
        finally:
            sessions.close()
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
