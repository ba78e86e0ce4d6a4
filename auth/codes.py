"""
auth/codes.py -- Verification code persistence and lifecycle.

CodeStore is the repository for emailed one-time codes. VerificationCodeService
decides who may receive a code, generates it, rate-limits sends and redeems
codes exactly once.

Concurrency (no read-then-write in Python anywhere below):

  Send window. code_send_windows holds one row per (email, purpose) with the
  time of the last accepted send. A send claims the window inside the same
  transaction that inserts the code:
      UPDATE ... SET last_sent_at = now WHERE key AND last_sent_at <= now - window
      -- no row updated? --
      INSERT (key, now)         -- primary key collision => window is closed
  Two near-simultaneous sends serialize on that row (or on the primary key),
  so exactly one of them proceeds. The check runs against the database state
  at write time, which keeps it correct across several service instances.

  Supersession. The same transaction marks every earlier unused code for
  (email, purpose) as used before inserting, so at most one code per
  address and purpose is ever redeemable, whatever the TTL and window.

  Redemption. The code row is consumed with a compare-and-set
      UPDATE email_codes SET is_used = 1 WHERE id = :id AND is_used = 0
  and only rowcount == 1 counts as success. Of N concurrent redemptions of
  the same code exactly one wins; the rest see InvalidCode.

Storage: only HMAC-SHA256(CODE_HASH_KEY, code) is persisted. Timestamps are
epoch seconds (REAL) so SQL can compare them directly.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable

from sqlalchemy import Column, Float, Index, Integer, MetaData, PrimaryKeyConstraint, String, Table
from sqlalchemy.exc import IntegrityError

from auth.db import create_store_engine
from auth.errors import CodeExpired, EmailNotEligible, InvalidCode, NotifierFailure, RateLimited
from auth.models import CodePurpose, VerificationCode
from auth.notifier import Notifier
from auth.store import UserStore, normalize_email
from auth.tokens import hash_secret
from core.config import DEFAULT_DATABASE_URL

logger = logging.getLogger("codegate.codes")

CODE_LENGTH = 6

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_codes = Table(
    "email_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("purpose", String(10), nullable=False),
    Column("code_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("is_used", Integer, nullable=False, server_default="0"),
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False),
    Index("ix_email_codes_lookup", "email", "purpose", "code_hash"),
)

_send_windows = Table(
    "code_send_windows",
    _metadata,
    Column("email", String(255), nullable=False),
    Column("purpose", String(10), nullable=False),
    Column("last_sent_at", Float, nullable=False),
    PrimaryKeyConstraint("email", "purpose", name="pk_code_send_windows"),
)


def generate_code() -> str:
    """Return a uniformly random 6-digit code (100000-999999) from a CSPRNG."""
    return str(100000 + secrets.randbelow(900000))


class _WindowClosed(Exception):
    """Internal signal: roll back the send transaction."""


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CodeStore:
    """Repository for VerificationCode rows and the per-address send window.

    Usage:
        store = CodeStore("sqlite:///:memory:")
        record = store.create_in_window("a@x.com", CodePurpose.login, code_hash, ttl=300, window=300)
        found = store.latest_unused("a@x.com", CodePurpose.login, code_hash)
        store.mark_used(found.id)
    """

    def __init__(self, db_url: str = DEFAULT_DATABASE_URL, clock: Callable[[], float] = time.time) -> None:
        self.engine = create_store_engine(db_url)
        self._clock = clock
        _metadata.create_all(self.engine)

    def create_in_window(
        self,
        email: str,
        purpose: CodePurpose,
        code_hash: str,
        ttl: int,
        window: int,
    ) -> VerificationCode | None:
        """Insert a new code if no code was sent for (email, purpose) within `window` seconds.

        Returns the stored record, or None when the window is still closed.
        Claiming the window, retiring earlier unused codes for the same
        (email, purpose) and inserting the new code share one transaction.
        """
        now = self._clock()
        purpose = CodePurpose(purpose)
        try:
            with self.engine.begin() as conn:
                if not self._claim_window(conn, email, purpose, now, window):
                    raise _WindowClosed()
                # Only the newest code for (email, purpose) stays redeemable.
                conn.execute(
                    _codes.update()
                    .where(
                        (_codes.c.email == email)
                        & (_codes.c.purpose == purpose.value)
                        & (_codes.c.is_used == 0)
                    )
                    .values(is_used=1)
                )
                result = conn.execute(
                    _codes.insert().values(
                        email=email,
                        purpose=purpose.value,
                        code_hash=code_hash,
                        is_used=0,
                        created_at=now,
                        expires_at=now + ttl,
                    )
                )
                code_id = result.inserted_primary_key[0]
        except _WindowClosed:
            return None
        return VerificationCode(
            id=code_id,
            email=email,
            purpose=purpose,
            code_hash=code_hash,
            created_at=now,
            expires_at=now + ttl,
        )

    def _claim_window(self, conn, email: str, purpose: CodePurpose, now: float, window: int) -> bool:
        key = (_send_windows.c.email == email) & (_send_windows.c.purpose == purpose.value)
        reopened = conn.execute(
            _send_windows.update().where(key & (_send_windows.c.last_sent_at <= now - window)).values(last_sent_at=now)
        )
        if reopened.rowcount == 1:
            return True
        try:
            conn.execute(_send_windows.insert().values(email=email, purpose=purpose.value, last_sent_at=now))
        except IntegrityError:
            return False
        return True

    def latest_unused(self, email: str, purpose: CodePurpose, code_hash: str) -> VerificationCode | None:
        """Return the most recently created unused row matching all three keys."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _codes.select()
                .where(
                    (_codes.c.email == email)
                    & (_codes.c.purpose == CodePurpose(purpose).value)
                    & (_codes.c.code_hash == code_hash)
                    & (_codes.c.is_used == 0)
                )
                .order_by(_codes.c.created_at.desc(), _codes.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_code(row) if row is not None else None

    def mark_used(self, code_id: int) -> bool:
        """Consume a code. True only for the single caller that flipped is_used."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _codes.update().where((_codes.c.id == code_id) & (_codes.c.is_used == 0)).values(is_used=1)
            )
            conn.commit()
        return result.rowcount == 1

    def purge_expired(self, window: int) -> int:
        """Delete expired codes and stale send windows. Returns codes removed."""
        now = self._clock()
        with self.engine.connect() as conn:
            result = conn.execute(_codes.delete().where(_codes.c.expires_at < now))
            conn.execute(_send_windows.delete().where(_send_windows.c.last_sent_at < now - window))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


def _row_to_code(row) -> VerificationCode:
    return VerificationCode(
        id=row.id,
        email=row.email,
        purpose=CodePurpose(row.purpose),
        code_hash=row.code_hash,
        is_used=bool(row.is_used),
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class VerificationCodeService:
    """Eligibility, generation, rate limiting and single-use redemption.

    Eligibility by purpose:
      register -- no live account may exist for the email, and registration
                  must be enabled.
      login    -- an existing account must be active. With auto_provision on,
                  an unknown email is also eligible (login creates the account).
      reset    -- an existing, active account is required.

    Delivery failure does not roll the code back: the row stays valid and
    send() raises NotifierFailure so the caller can report it.
    """

    def __init__(
        self,
        codes: CodeStore,
        users: UserStore,
        notifier: Notifier,
        hash_key: str,
        ttl_seconds: int = 300,
        resend_seconds: int = 300,
        auto_provision: bool = True,
        registration_enabled: bool = True,
        clock: Callable[[], float] = time.time,
        code_factory: Callable[[], str] = generate_code,
    ) -> None:
        self._codes = codes
        self._users = users
        self._notifier = notifier
        self._hash_key = hash_key
        self._ttl = ttl_seconds
        self._window = resend_seconds
        self._auto_provision = auto_provision
        self._registration_enabled = registration_enabled
        self._clock = clock
        self._code_factory = code_factory

    @property
    def auto_provision(self) -> bool:
        return self._auto_provision

    def send(self, email: str, purpose: CodePurpose) -> None:
        email = normalize_email(email)
        purpose = CodePurpose(purpose)
        self._check_eligible(email, purpose)

        code = self._code_factory()
        record = self._codes.create_in_window(email, purpose, self._hash(code), ttl=self._ttl, window=self._window)
        if record is None:
            logger.info("Code send refused inside resend window (purpose=%s)", purpose.value)
            raise RateLimited()

        if not self._notifier.send(email, code, purpose):
            logger.warning("Code %s stored but delivery failed (purpose=%s)", record.id, purpose.value)
            raise NotifierFailure()
        logger.info("Verification code %s sent (purpose=%s)", record.id, purpose.value)

    def redeem(self, email: str, code: str, purpose: CodePurpose) -> None:
        """Consume a code. Raises InvalidCode (wrong, unknown or used) or CodeExpired."""
        email = normalize_email(email)
        record = self._codes.latest_unused(email, CodePurpose(purpose), self._hash(code))
        if record is None:
            raise InvalidCode()
        if record.expires_at <= self._clock():
            raise CodeExpired()
        if not self._codes.mark_used(record.id):
            raise InvalidCode()

    def _check_eligible(self, email: str, purpose: CodePurpose) -> None:
        user = self._users.find_by_email(email)
        if purpose == CodePurpose.register:
            if user is not None or not self._registration_enabled:
                raise EmailNotEligible()
            return
        if user is None:
            if purpose == CodePurpose.login and self._auto_provision:
                return
            raise EmailNotEligible()
        if not user.is_active:
            raise EmailNotEligible()

    def _hash(self, code: str) -> str:
        return hash_secret(self._hash_key, code)
