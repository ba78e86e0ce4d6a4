"""
auth/service.py -- Login, registration, refresh and logout.

AuthService is the orchestrator the auth routes call. Per email the flow is
Anonymous -> CodeSent -> Authenticated:

  send_code(email, purpose)  -> VerificationCodeService.send
  login(email, code)         -> redeem(login); provision the account if new;
                                refuse disabled accounts; issue tokens; open
                                a session; audit
  register(email, code, ...) -> refuse existing email (Conflict); redeem
                                (register); create; issue; session; audit
  refresh(refresh_token)     -> verify JWT; session row must match; rotate
  logout(refresh_token)      -> delete the session row (idempotent)

Anti-enumeration: every login failure surfaces as the same Unauthorized
message, whether the code was wrong, expired, already used, or the account
is disabled. Every refresh failure likewise carries one message.

Audit rows are best effort. A database error while writing one is logged
and swallowed so it never fails the login or registration around it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.codes import VerificationCodeService
from auth.errors import AuthError, CodeExpired, Conflict, InvalidCode, Unauthorized
from auth.models import ClientMeta, CodePurpose, LoginAttempt, LoginOutcome, TokenKind, User, UserStatus
from auth.sessions import SessionStore
from auth.store import UserStore, normalize_email
from auth.tokens import TokenIssuer, hash_secret

logger = logging.getLogger("codegate.auth")

_LOGIN_FAILED = "Invalid email or verification code."
_REFRESH_FAILED = "Refresh token is invalid or has expired."


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass
class AuthResult:
    user: User
    access_token: str
    refresh_token: str


class AuthService:
    def __init__(
        self,
        users: UserStore,
        codes: VerificationCodeService,
        tokens: TokenIssuer,
        sessions: SessionStore,
        hash_key: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._users = users
        self._codes = codes
        self._tokens = tokens
        self._sessions = sessions
        self._hash_key = hash_key
        self._clock = clock

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def send_code(self, email: str, purpose: CodePurpose) -> None:
        self._codes.send(email, purpose)

    def login(self, email: str, code: str, client: ClientMeta | None = None) -> AuthResult:
        client = client or ClientMeta()
        email = normalize_email(email)

        try:
            self._codes.redeem(email, code, CodePurpose.login)
        except (InvalidCode, CodeExpired) as exc:
            self._audit(client, LoginOutcome.failed)
            logger.info("Login refused: %s", exc.code)
            raise Unauthorized(_LOGIN_FAILED) from exc

        user = self._users.find_by_email(email)
        if user is None:
            user = self._provision(email)
            if user is None:
                self._audit(client, LoginOutcome.failed)
                raise Unauthorized(_LOGIN_FAILED)
        elif not user.is_active:
            self._audit(client, LoginOutcome.blocked, user.id)
            logger.info("Login refused for user %s: status=%s", user.id, user.status.value)
            raise Unauthorized(_LOGIN_FAILED)

        result = self._start_session(user, client)
        self._audit(client, LoginOutcome.success, user.id)
        logger.info("User %s logged in", user.id)
        return result

    def register(
        self,
        email: str,
        code: str,
        name: str,
        phone: str | None = None,
        client: ClientMeta | None = None,
    ) -> AuthResult:
        client = client or ClientMeta()
        email = normalize_email(email)

        if self._users.find_by_email(email) is not None:
            self._audit(client, LoginOutcome.failed)
            raise Conflict()

        try:
            self._codes.redeem(email, code, CodePurpose.register)
        except AuthError:
            self._audit(client, LoginOutcome.failed)
            raise

        try:
            user_id = self._users.create_user(User(email=email, name=name, phone=phone, status=UserStatus.active))
        except IntegrityError as exc:
            # Lost a race with a concurrent registration or login provisioning.
            self._audit(client, LoginOutcome.failed)
            raise Conflict() from exc

        user = self._users.find_by_id(user_id)
        if user is None:
            raise RuntimeError(f"user {user_id} missing after insert")
        result = self._start_session(user, client)
        self._audit(client, LoginOutcome.success, user.id)
        logger.info("User %s registered", user.id)
        return result

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair. The old token dies here."""
        try:
            claims = self._tokens.verify(refresh_token, TokenKind.refresh)
        except Unauthorized:
            raise Unauthorized(_REFRESH_FAILED) from None

        old_hash = self._hash(refresh_token)
        session = self._sessions.find_by_token(old_hash)
        if session is None or session.user_id != claims.user_id:
            raise Unauthorized(_REFRESH_FAILED)

        user = self._users.find_by_id(session.user_id)
        if user is None or not user.is_active:
            self._sessions.delete_by_token(old_hash)
            raise Unauthorized(_REFRESH_FAILED)

        access = self._tokens.issue_access(user)
        refresh = self._tokens.issue_refresh(user)
        expires_at = self._clock() + self._tokens.refresh_ttl
        if not self._sessions.rotate(session.id, old_hash, self._hash(refresh), expires_at):
            logger.warning("Refresh token reuse lost rotation race for session %s", session.id)
            raise Unauthorized(_REFRESH_FAILED)
        return TokenPair(access_token=access, refresh_token=refresh)

    def logout(self, refresh_token: str, user_id: int | None = None) -> None:
        removed = self._sessions.delete_by_token(self._hash(refresh_token), user_id=user_id)
        if removed:
            logger.info("Session closed for user %s", user_id)

    def revoke_all(self, user_id: int) -> int:
        """Close every session a user holds (used when an account is disabled)."""
        return self._sessions.delete_for_user(user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _provision(self, email: str) -> User | None:
        """Create the account for a first verification-code login.

        The email local part becomes the display name. Returns None when
        provisioning is disabled or the address belongs to a soft-deleted row.
        """
        if not self._codes.auto_provision:
            return None
        try:
            user_id = self._users.create_user(User(email=email, name=email.split("@")[0], status=UserStatus.active))
        except IntegrityError:
            # Concurrent first login for the same email won the insert.
            return self._users.find_by_email(email)
        logger.info("Provisioned user %s on first login", user_id)
        return self._users.find_by_id(user_id)

    def _start_session(self, user: User, client: ClientMeta) -> AuthResult:
        access = self._tokens.issue_access(user)
        refresh = self._tokens.issue_refresh(user)
        self._sessions.put(user.id, self._hash(refresh), self._clock() + self._tokens.refresh_ttl, client)
        return AuthResult(user=user, access_token=access, refresh_token=refresh)

    def _audit(self, client: ClientMeta, outcome: LoginOutcome, user_id: int | None = None) -> None:
        attempt = LoginAttempt(
            outcome=outcome,
            user_id=user_id,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            created_at=self._clock(),
        )
        try:
            self._users.record_login_attempt(attempt)
        except SQLAlchemyError:
            logger.exception("Could not write login audit row (outcome=%s)", outcome.value)

    def _hash(self, token: str) -> str:
        return hash_secret(self._hash_key, token)
