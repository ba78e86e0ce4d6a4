"""
api/routes/v1/users.py -- Permission-guarded user administration.

Routes:
  GET    /api/v1/users               -- list users              (users:read)
  GET    /api/v1/users/{id}          -- one user                (users:read)
  GET    /api/v1/users/{id}/logins   -- login audit trail       (users:read)
  PATCH  /api/v1/users/{id}/status   -- activate/disable        (users:update)
  PATCH  /api/v1/users/{id}/role     -- assign or clear role    (users:update)
  DELETE /api/v1/users/{id}          -- soft delete             (users:delete)

Disabling or deleting a user closes all of their sessions, so the account
can neither call the API (the access guard re-checks status) nor refresh.
An admin cannot change their own status or delete themselves.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import UserResponse, UserRoleUpdate, UserStatusUpdate
from auth.dependencies import require_permissions
from auth.models import User, UserStatus
from auth.service import AuthService
from auth.store import UserStore

router = APIRouter()


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})


def _load(user_store: UserStore, user_id: int) -> User:
    user = user_store.find_by_id(user_id)
    if user is None:
        raise _not_found()
    return user


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: User = Depends(require_permissions("users:read"))) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users()]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_permissions("users:read")),
) -> UserResponse:
    return UserResponse.from_user(_load(request.app.state.user_store, user_id))


@router.get("/users/{user_id}/logins")
def list_logins(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_permissions("users:read")),
) -> list[dict]:
    """Newest-first login attempts for a user (at most 50)."""
    user_store: UserStore = request.app.state.user_store
    _load(user_store, user_id)
    return [
        {
            "outcome": a.outcome.value,
            "ipAddress": a.ip_address,
            "userAgent": a.user_agent,
            "createdAt": a.created_at,
        }
        for a in user_store.list_login_attempts(user_id)
    ]


@router.patch("/users/{user_id}/status", response_model=UserResponse)
def update_status(
    request: Request,
    user_id: int,
    body: UserStatusUpdate,
    current_user: User = Depends(require_permissions("users:update")),
) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    auth_service: AuthService = request.app.state.auth_service

    target = _load(user_store, user_id)
    if target.id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_status_change", "message": "You cannot change your own status."},
        )

    status = UserStatus(body.status.value)
    user_store.update_status(user_id, status)
    if status != UserStatus.active:
        auth_service.revoke_all(user_id)
    return UserResponse.from_user(_load(user_store, user_id))


@router.patch("/users/{user_id}/role", response_model=UserResponse)
def update_role(
    request: Request,
    user_id: int,
    body: UserRoleUpdate,
    current_user: User = Depends(require_permissions("users:update")),
) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    _load(user_store, user_id)
    if body.role_id is not None and user_store.get_role(body.role_id) is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Role not found."})
    user_store.set_role(user_id, body.role_id)
    return UserResponse.from_user(_load(user_store, user_id))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_permissions("users:delete")),
) -> Response:
    user_store: UserStore = request.app.state.user_store
    auth_service: AuthService = request.app.state.auth_service
    if user_id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_delete", "message": "You cannot delete your own account."},
        )
    if not user_store.soft_delete(user_id):
        raise _not_found()
    auth_service.revoke_all(user_id)
    return Response(status_code=204)
