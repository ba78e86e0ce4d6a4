"""
API request and response models for CodeGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

JSON field names are camelCase on the wire (accessToken, refreshToken,
createdAt) via an alias generator; Python code uses snake_case. Requests
accept either spelling.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Role, User
from auth.permissions import normalize_permissions, permissions_to_json

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
CODE_PATTERN = r"^\d{6}$"
PHONE_PATTERN = r"^\+?\d{6,15}$"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class _EmailModel(_CamelModel):
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: object) -> str:
        """Trim and lowercase before the pattern check runs."""
        return str(value).strip().lower()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class CodePurposeEnum(str, Enum):
    login = "login"
    register = "register"
    reset = "reset"


class UserStatusEnum(str, Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class SendCodeRequest(_EmailModel):
    """Request body for POST /api/v1/auth/send-code. The wire field is "type"."""

    purpose: CodePurposeEnum = Field(alias="type")


class LoginRequest(_EmailModel):
    code: str = Field(pattern=CODE_PATTERN)


class RegisterRequest(_EmailModel):
    code: str = Field(pattern=CODE_PATTERN)
    name: str = Field(min_length=1, max_length=50)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)


class RefreshRequest(_CamelModel):
    refresh_token: str = Field(min_length=1, max_length=2048)


class LogoutRequest(_CamelModel):
    refresh_token: str = Field(min_length=1, max_length=2048)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class RoleSummary(_CamelModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str] = None
    permissions: dict[str, list[str]]
    is_active: bool

    @classmethod
    def from_role(cls, role: Role) -> "RoleSummary":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            permissions=permissions_to_json(role.permissions),
            is_active=role.is_active,
        )


class UserResponse(_CamelModel):
    """Public view of a principal. Returned by login, register, profile and /users."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    status: UserStatusEnum
    role: Optional[RoleSummary] = None
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            phone=user.phone,
            avatar_url=user.avatar_url,
            status=user.status.value,
            role=RoleSummary.from_role(user.role) if user.role is not None else None,
            created_at=user.created_at,
        )


class AuthResponse(_CamelModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse
    access_token: str
    refresh_token: str


class TokenPairResponse(_CamelModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str


class SuccessResponse(_CamelModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: Optional[str] = None


# ---------------------------------------------------------------------------
# Users and roles (admin)
# ---------------------------------------------------------------------------


class UserStatusUpdate(_CamelModel):
    status: UserStatusEnum


class UserRoleUpdate(_CamelModel):
    role_id: Optional[int] = None


class RoleCreate(_CamelModel):
    name: str = Field(min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=255)
    permissions: dict[str, list[str]] = Field(default_factory=dict)
    is_active: bool = True

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, value: dict) -> dict[str, list[str]]:
        """Reject malformed maps here, before anything reaches the store."""
        return permissions_to_json(normalize_permissions(value))


class RolePermissionsUpdate(_CamelModel):
    permissions: dict[str, list[str]]

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, value: dict) -> dict[str, list[str]]:
        return permissions_to_json(normalize_permissions(value))


class PermissionCatalogEntry(_CamelModel):
    model_config = ConfigDict(frozen=True)

    resource: str
    actions: list[str]


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
