"""
api/routes/v1/roles.py -- Permission-guarded role administration.

Routes:
  GET   /api/v1/roles                      -- list roles               (roles:read)
  GET   /api/v1/roles/permissions          -- resource/action catalog  (roles:read)
  POST  /api/v1/roles                      -- create a role            (roles:create)
  PATCH /api/v1/roles/{id}/permissions     -- replace permission map   (roles:update)

Permission maps are validated by the request models (and again by the store)
before they are written.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import PermissionCatalogEntry, RoleCreate, RolePermissionsUpdate, RoleSummary
from auth.dependencies import require_permissions
from auth.models import Role, User
from auth.permissions import CATALOG, WILDCARD
from auth.store import UserStore

router = APIRouter()


@router.get("/roles", response_model=list[RoleSummary])
def list_roles(request: Request, current_user: User = Depends(require_permissions("roles:read"))) -> list[RoleSummary]:
    user_store: UserStore = request.app.state.user_store
    return [RoleSummary.from_role(r) for r in user_store.list_roles()]


@router.get("/roles/permissions", response_model=list[PermissionCatalogEntry])
def permission_catalog(current_user: User = Depends(require_permissions("roles:read"))) -> list[PermissionCatalogEntry]:
    """Known resources and their actions. "*" is always accepted as an action."""
    return [
        PermissionCatalogEntry(resource=resource, actions=[*actions, WILDCARD]) for resource, actions in CATALOG.items()
    ]


@router.post("/roles", response_model=RoleSummary, status_code=201)
def create_role(
    request: Request,
    body: RoleCreate,
    current_user: User = Depends(require_permissions("roles:create")),
) -> RoleSummary:
    user_store: UserStore = request.app.state.user_store
    role = Role(
        name=body.name,
        description=body.description,
        permissions={k: frozenset(v) for k, v in body.permissions.items()},
        is_active=body.is_active,
    )
    try:
        role_id = user_store.create_role(role)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A role with that name already exists."},
        ) from exc
    return RoleSummary.from_role(user_store.get_role(role_id))


@router.patch("/roles/{role_id}/permissions", response_model=RoleSummary)
def update_permissions(
    request: Request,
    role_id: int,
    body: RolePermissionsUpdate,
    current_user: User = Depends(require_permissions("roles:update")),
) -> RoleSummary:
    user_store: UserStore = request.app.state.user_store
    if not user_store.update_role_permissions(role_id, body.permissions):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Role not found."})
    return RoleSummary.from_role(user_store.get_role(role_id))
