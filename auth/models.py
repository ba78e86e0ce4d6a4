"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; stores and services do the work.

Timestamps:
  User and Role carry ISO 8601 strings (display fields, written once).
  VerificationCode, Session and LoginAttempt carry epoch seconds (float) because
  the core compares them against the clock on every request, and the stores
  compare them inside SQL predicates.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class UserStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


class CodePurpose(str, Enum):
    login = "login"
    register = "register"
    reset = "reset"


class LoginOutcome(str, Enum):
    success = "success"
    failed = "failed"
    blocked = "blocked"


class TokenKind(str, Enum):
    access = "access"
    refresh = "refresh"


@dataclass
class Role:
    """A named bundle of resource -> actions grants.

    permissions maps a resource name ("users") to the set of allowed actions
    ({"read", "update"}). The action "*" grants every action on that resource.
    An inactive role grants nothing.
    """

    name: str
    permissions: dict[str, frozenset[str]] = field(default_factory=dict)
    id: int | None = None
    description: str | None = None
    is_active: bool = True
    created_at: str | None = None


@dataclass
class User:
    """The authenticated principal.

    email is stored lowercased and is unique across all rows, soft-deleted
    ones included. role is loaded alongside the row by the store; role_id is
    None when the user holds no role (and therefore no permissions).
    """

    email: str
    name: str
    id: int | None = None
    phone: str | None = None
    avatar_url: str | None = None
    status: UserStatus = UserStatus.active
    role_id: int | None = None
    role: Role | None = None
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.active and self.deleted_at is None


@dataclass
class VerificationCode:
    """A single-use emailed code. Only the HMAC of the code is persisted."""

    email: str
    code_hash: str
    purpose: CodePurpose
    created_at: float
    expires_at: float
    id: int | None = None
    is_used: bool = False


@dataclass
class Session:
    """A refresh-token lineage. token_hash changes on every rotation."""

    user_id: int
    token_hash: str
    created_at: float
    expires_at: float
    id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class LoginAttempt:
    """Append-only audit row written at every exit of login and register."""

    outcome: LoginOutcome
    user_id: int | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    id: int | None = None
    created_at: float | None = None


@dataclass(frozen=True)
class ClientMeta:
    """Request metadata carried into sessions and the login audit trail."""

    ip_address: str | None = None
    user_agent: str | None = None
