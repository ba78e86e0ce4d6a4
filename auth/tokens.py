"""
auth/tokens.py -- JWT issuance/verification and secret hashing.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with
       DIFFERENT keys, so a leaked access-signing key cannot mint refresh
       tokens. Both carry sub (user id), email, role (omitted when the user
       has none), iat, exp, plus:
         type -- "access" or "refresh"; verify() rejects the wrong kind, so a
                 refresh token is never accepted as a bearer credential.
         jti  -- random id; two tokens minted in the same second for the same
                 user still differ, which rotation depends on.

  Expiry is checked against the injected clock rather than python-jose's own
       wall-clock check, so tests can move time and every component agrees on
       "now".

  verify() raises TokenExpired or TokenInvalid (both Unauthorized). Callers
       treat them the same; the split exists for logging.

  hash_secret(): HMAC-SHA256(key, value) hex digest. Verification codes and
       refresh tokens are stored only in this form. The hash is deterministic,
       so the stores still look rows up by exact match.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass

from jose import JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import TokenKind, User

logger = logging.getLogger("codegate.auth")

_ALGORITHM = "HS256"

# python-jose checks exp against time.time() by default; expiry is checked
# below against the issuer's clock instead.
_DECODE_OPTIONS = {"verify_exp": False, "verify_aud": False}


def hash_secret(key: str, value: str) -> str:
    """Return HMAC-SHA256(key, value) as a hex string."""
    return hmac.new(key.encode(), value.encode(), hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class TokenClaims:
    sub: str
    email: str
    type: TokenKind
    iat: int
    exp: int
    jti: str
    role: str | None = None

    @property
    def user_id(self) -> int:
        return int(self.sub)


class TokenIssuer:
    """Creates and verifies signed access and refresh tokens.

    Usage:
        issuer = TokenIssuer(access_secret, refresh_secret)
        access = issuer.issue_access(user)
        claims = issuer.verify(access, TokenKind.access)
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: int = 15 * 60,
        refresh_ttl: int = 7 * 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh tokens must be signed with different secrets")
        self._keys = {TokenKind.access: access_secret, TokenKind.refresh: refresh_secret}
        self._ttls = {TokenKind.access: access_ttl, TokenKind.refresh: refresh_ttl}
        self._clock = clock

    @property
    def access_ttl(self) -> int:
        return self._ttls[TokenKind.access]

    @property
    def refresh_ttl(self) -> int:
        return self._ttls[TokenKind.refresh]

    def issue_access(self, user: User) -> str:
        return self._issue(user, TokenKind.access)

    def issue_refresh(self, user: User) -> str:
        return self._issue(user, TokenKind.refresh)

    def _issue(self, user: User, kind: TokenKind) -> str:
        issued_at = int(self._clock())
        payload = {
            "sub": str(user.id),
            "email": user.email,
            "type": kind.value,
            "iat": issued_at,
            "exp": issued_at + self._ttls[kind],
            "jti": secrets.token_hex(16),
        }
        if user.role is not None:
            payload["role"] = user.role.name
        return jwt.encode(payload, self._keys[kind], algorithm=_ALGORITHM)

    def verify(self, token: str, kind: TokenKind) -> TokenClaims:
        """Check signature, kind and expiry. Returns the claims.

        Raises TokenInvalid for a bad signature, malformed payload or wrong
        token kind, and TokenExpired once exp has passed.
        """
        try:
            payload = jwt.decode(token, self._keys[kind], algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
        except JWTError as exc:
            raise TokenInvalid() from exc

        try:
            claims = TokenClaims(
                sub=str(payload["sub"]),
                email=str(payload["email"]),
                type=TokenKind(payload["type"]),
                iat=int(payload["iat"]),
                exp=int(payload["exp"]),
                jti=str(payload["jti"]),
                role=payload.get("role"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid() from exc

        if not claims.sub.isdigit() or claims.type != kind:
            raise TokenInvalid()
        if claims.exp <= self._clock():
            raise TokenExpired()
        return claims
