"""
auth/store.py -- SQLAlchemy Core persistence for users, roles and the login audit.

Pattern: Repository + Data Mapper. UserStore is the repository; the _row_to_*
functions are the mappers. Services, dependencies and routes never touch SQL
directly. UserStore is the user directory the auth core consults: every
status and permission decision is made from what it returns.

Security:
  All queries use bound parameters. No f-strings in SQL.

  users.email is UNIQUE and always stored lowercased, so two concurrent
  provisioning requests for the same address cannot both insert; the loser
  gets IntegrityError and re-reads. Soft-deleted rows keep their email, so a
  deleted address cannot be silently re-registered.

  roles.permissions is JSON text. It is run through normalize_permissions()
  on every read; a row holding a malformed map raises instead of granting
  something unintended.

  login_attempts is append-only. There is no update or delete method.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import Column, Float, Index, Integer, MetaData, String, Table, Text, func, select, text

from auth.db import create_store_engine
from auth.models import LoginAttempt, LoginOutcome, Role, User, UserStatus
from auth.permissions import normalize_permissions, permissions_to_json
from core.config import DEFAULT_DATABASE_URL

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False, unique=True),
    Column("description", String(255)),
    Column("permissions", Text, nullable=False, server_default="{}"),  # JSON object
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(100), nullable=False),
    Column("phone", String(20)),
    Column("avatar_url", Text),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("role_id", Integer),  # NULL = no role, no permissions
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),  # soft delete marker
)

_login_attempts = Table(
    "login_attempts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("outcome", String(10), nullable=False),
    Column("created_at", Float, nullable=False),
    Index("ix_login_attempts_user", "user_id", "created_at"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Role and LoginAttempt entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(email="ann@example.com", name="ann"))
        user = store.find_by_id(user_id)
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DATABASE_URL) -> None:
        self.engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists
        (soft-deleted rows included). Callers map that to a conflict or
        re-read, depending on the flow.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=normalize_email(user.email),
                    name=user.name,
                    phone=user.phone,
                    avatar_url=user.avatar_url,
                    status=UserStatus(user.status).value,
                    role_id=user.role_id,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_by_email(self, email: str) -> User | None:
        """Look up a live (not soft-deleted) user by email, case-insensitively."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.email == normalize_email(email)) & _users.c.deleted_at.is_(None))
            ).fetchone()
            return self._hydrate(conn, row)

    def find_by_id(self, user_id: int) -> User | None:
        """Look up a live user by primary key, with its role loaded."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.id == user_id) & _users.c.deleted_at.is_(None))
            ).fetchone()
            return self._hydrate(conn, row)

    def list_users(self) -> list[User]:
        """Return all live users ordered by email."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(_users.c.deleted_at.is_(None)).order_by(_users.c.email)
            ).fetchall()
            roles = {r.id: _row_to_role(r) for r in conn.execute(_roles.select()).fetchall()}
        return [_row_to_user(r, roles.get(r.role_id)) for r in rows]

    def update_status(self, user_id: int, status: UserStatus) -> bool:
        """Set a user's status. Returns True if a live row was updated."""
        return self._update_user(user_id, status=UserStatus(status).value)

    def set_role(self, user_id: int, role_id: int | None) -> bool:
        """Assign (or clear, with None) a user's role."""
        return self._update_user(user_id, role_id=role_id)

    def soft_delete(self, user_id: int) -> bool:
        """Stamp deleted_at. The row stays; every lookup stops seeing it."""
        return self._update_user(user_id, deleted_at=_now_iso())

    def _update_user(self, user_id: int, **values) -> bool:
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where((_users.c.id == user_id) & _users.c.deleted_at.is_(None)).values(**values)
            )
            conn.commit()
        return result.rowcount > 0

    def _hydrate(self, conn, row) -> User | None:
        if row is None:
            return None
        role = None
        if row.role_id is not None:
            role_row = conn.execute(_roles.select().where(_roles.c.id == row.role_id)).fetchone()
            role = _row_to_role(role_row) if role_row is not None else None
        return _row_to_user(row, role)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        """Insert a role and return its ID. Raises IntegrityError on a duplicate name."""
        permissions = normalize_permissions(role.permissions)
        with self.engine.connect() as conn:
            result = conn.execute(
                _roles.insert().values(
                    name=role.name,
                    description=role.description,
                    permissions=json.dumps(permissions_to_json(permissions)),
                    is_active=1 if role.is_active else 0,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def update_role_permissions(self, role_id: int, permissions: dict) -> bool:
        """Replace a role's permission map. Validates before writing."""
        checked = normalize_permissions(permissions)
        with self.engine.connect() as conn:
            result = conn.execute(
                _roles.update()
                .where(_roles.c.id == role_id)
                .values(permissions=json.dumps(permissions_to_json(checked)))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Login audit
    # ------------------------------------------------------------------

    def record_login_attempt(self, attempt: LoginAttempt) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _login_attempts.insert().values(
                    user_id=attempt.user_id,
                    ip_address=attempt.ip_address,
                    user_agent=attempt.user_agent,
                    outcome=LoginOutcome(attempt.outcome).value,
                    created_at=attempt.created_at,
                )
            )
            conn.commit()

    def list_login_attempts(self, user_id: int | None = None, limit: int = 50) -> list[LoginAttempt]:
        """Newest first. user_id=None returns attempts with no known user."""
        query = _login_attempts.select()
        if user_id is None:
            query = query.where(_login_attempts.c.user_id.is_(None))
        else:
            query = query.where(_login_attempts.c.user_id == user_id)
        query = query.order_by(_login_attempts.c.created_at.desc(), _login_attempts.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_attempt(r) for r in rows]

    def count_login_attempts(self, outcome: LoginOutcome | None = None) -> int:
        query = select(func.count()).select_from(_login_attempts)
        if outcome is not None:
            query = query.where(_login_attempts.c.outcome == LoginOutcome(outcome).value)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        permissions=normalize_permissions(json.loads(row.permissions or "{}")),
        is_active=bool(row.is_active),
        created_at=row.created_at,
    )


def _row_to_user(row, role: Role | None) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        phone=row.phone,
        avatar_url=row.avatar_url,
        status=UserStatus(row.status),
        role_id=row.role_id,
        role=role,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


def _row_to_attempt(row) -> LoginAttempt:
    return LoginAttempt(
        id=row.id,
        user_id=row.user_id,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        outcome=LoginOutcome(row.outcome),
        created_at=row.created_at,
    )

