"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/send-code   -- email a one-time code (login/register/reset)
  POST /api/v1/auth/login       -- code login; returns user + token pair
  POST /api/v1/auth/register    -- code registration; 201 with user + token pair
  POST /api/v1/auth/refresh     -- rotate a refresh token into a new pair
  POST /api/v1/auth/logout      -- close the session for a refresh token (requires auth)
  GET  /api/v1/auth/profile     -- current user info (requires auth)

Security:
  send-code is rate-limited per IP by slowapi on top of the per-address
  resend window the code service enforces in the database.
  login/register/refresh share the per-IP login limit.
  Cache-Control: no-store on every response that carries tokens.
  AuthError subclasses raised by the service are rendered by the handler in
  api/main.py; routes do not translate them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    SendCodeRequest,
    SuccessResponse,
    TokenPairResponse,
    UserResponse,
)
from auth.dependencies import get_current_user
from auth.models import ClientMeta, CodePurpose, User
from auth.service import AuthResult, AuthService
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/send-code:  public
# - POST /api/v1/auth/login:      public
# - POST /api/v1/auth/register:   public
# - POST /api/v1/auth/refresh:    public -- the refresh token is the credential
# - POST /api/v1/auth/logout:     requires auth (get_current_user)
# - GET  /api/v1/auth/profile:    requires auth (get_current_user)
router = APIRouter()


def _client_meta(request: Request) -> ClientMeta:
    return ClientMeta(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


def _auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _token_response(status_code: int, model) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=model.model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _auth_payload(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        user=UserResponse.from_user(result.user),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.send_code_rate_limit)
@router.post("/auth/send-code", response_model=SuccessResponse)
def send_code(request: Request, body: SendCodeRequest) -> SuccessResponse:
    """Email a 6-digit code valid for 5 minutes.

    Fails with 429 if a code for the same email and purpose was sent within
    the resend window, 400 if the email is not eligible for the purpose, and
    503 if the mail provider refused the message (the code stays valid).
    """
    _auth_service(request).send_code(body.email, CodePurpose(body.purpose.value))
    return SuccessResponse(message="Verification code sent.")


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Log in with an emailed code. First login for a new email creates the account.

    Every failure returns the same 401 body, so the response does not reveal
    whether the email exists or which factor was wrong.
    """
    result = _auth_service(request).login(body.email, body.code, _client_meta(request))
    return _token_response(200, _auth_payload(result))


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account with an emailed register code. 409 if the email is taken."""
    result = _auth_service(request).register(
        body.email,
        body.code,
        body.name,
        phone=body.phone,
        client=_client_meta(request),
    )
    return _token_response(201, _auth_payload(result))


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    pair = _auth_service(request).refresh(body.refresh_token)
    return _token_response(200, TokenPairResponse(access_token=pair.access_token, refresh_token=pair.refresh_token))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=SuccessResponse)
def logout(
    request: Request,
    body: LogoutRequest,
    current_user: User = Depends(get_current_user),
) -> SuccessResponse:
    """Close the session behind a refresh token. Succeeds even if nothing matched."""
    _auth_service(request).logout(body.refresh_token, user_id=current_user.id)
    return SuccessResponse(message="Logged out.")


@router.get("/auth/profile", response_model=UserResponse)
def profile(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return UserResponse.from_user(current_user)
