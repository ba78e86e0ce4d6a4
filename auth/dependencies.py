"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

get_current_user() is the access guard. It runs before any handler logic:
  1. Read "Authorization: Bearer <token>".
  2. Verify it as an ACCESS token (a refresh token is rejected here).
  3. Load the user by the token subject and re-check status. A user disabled
     or soft-deleted after the token was issued is refused even though the
     token itself is still valid.
  4. Attach the user to request.state.user.
Any failure is a 401 with one generic message.

require_permissions(*perms) builds the permission guard for a route. Each
perm is "resource:action" or a Permission. The user must hold a role and
every declared permission must evaluate true; otherwise 403. Declaring no
permissions means authentication alone suffices.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.errors import Forbidden, Unauthorized
from auth.models import TokenKind, User
from auth.permissions import Permission, has_all


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": "Authentication required."},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def get_current_user(request: Request) -> User:
    """Require a valid access token for an active user. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise _unauthorized()
    try:
        claims = request.app.state.token_issuer.verify(token, TokenKind.access)
    except Unauthorized:
        raise _unauthorized() from None

    user = request.app.state.user_store.find_by_id(claims.user_id)
    if user is None or not user.is_active:
        raise _unauthorized()
    request.state.user = user
    return user


def require_permissions(*permissions: Permission | str):
    """Return a dependency enforcing that the current user holds every permission.

    Use as a FastAPI dependency:
        @router.get("/users")
        def route(user: User = Depends(require_permissions("users:read"))): ...
    """
    required = tuple(p if isinstance(p, Permission) else Permission.parse(p) for p in permissions)

    def permission_guard(user: User = Depends(get_current_user)) -> User:
        if not required:
            return user
        if user.role is None or not has_all(user.role, required):
            raise Forbidden()
        return user

    return permission_guard
