"""
auth/sessions.py -- Server-side refresh-token sessions.

A session row is the source of truth for a refresh token: a valid JWT
signature alone never mints new tokens. Rows are keyed by
HMAC-SHA256(CODE_HASH_KEY, refresh_token), so a database dump does not yield
usable tokens.

Rotation overwrites the row in place (one row per session lineage) with a
compare-and-set on the previous hash:
    UPDATE user_sessions SET token_hash = :new, expires_at = :exp
     WHERE id = :id AND token_hash = :old
Two refreshes racing with the same token both find the row, but only the
first UPDATE matches; the second sees rowcount 0 and is refused. A rotated-
away token never matches again.

Expired rows are removed lazily by find_by_token() and in bulk by
delete_expired() from the lifespan sweep.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text

from auth.db import create_store_engine
from auth.models import ClientMeta, Session
from core.config import DEFAULT_DATABASE_URL

logger = logging.getLogger("codegate.sessions")

_metadata = MetaData()

_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False),
)


class SessionStore:
    """Repository for Session rows.

    Usage:
        store = SessionStore("sqlite:///:memory:")
        store.put(user_id, token_hash, expires_at, ClientMeta(ip_address="10.0.0.1"))
        session = store.find_by_token(token_hash)
        store.rotate(session.id, token_hash, new_hash, new_expiry)
        store.delete_by_token(new_hash)
    """

    def __init__(self, db_url: str = DEFAULT_DATABASE_URL, clock: Callable[[], float] = time.time) -> None:
        self.engine = create_store_engine(db_url)
        self._clock = clock
        _metadata.create_all(self.engine)

    def put(self, user_id: int, token_hash: str, expires_at: float, client: ClientMeta | None = None) -> int:
        client = client or ClientMeta()
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.insert().values(
                    user_id=user_id,
                    token_hash=token_hash,
                    ip_address=client.ip_address,
                    user_agent=client.user_agent,
                    created_at=self._clock(),
                    expires_at=expires_at,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def find_by_token(self, token_hash: str) -> Session | None:
        """Return the live session for token_hash. An expired match is deleted and None returned."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
        if row is None:
            return None
        if row.expires_at <= self._clock():
            self.delete_by_token(token_hash)
            return None
        return _row_to_session(row)

    def rotate(self, session_id: int, old_hash: str, new_hash: str, expires_at: float) -> bool:
        """Swap the stored token hash. True only if old_hash was still current."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.id == session_id) & (_sessions.c.token_hash == old_hash))
                .values(token_hash=new_hash, expires_at=expires_at)
            )
            conn.commit()
        return result.rowcount == 1

    def delete_by_token(self, token_hash: str, user_id: int | None = None) -> int:
        """Delete the matching session (optionally only if owned by user_id). Zero rows is fine."""
        condition = _sessions.c.token_hash == token_hash
        if user_id is not None:
            condition = condition & (_sessions.c.user_id == user_id)
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(condition))
            conn.commit()
        return result.rowcount

    def delete_for_user(self, user_id: int) -> int:
        """Revoke every session a user holds."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def delete_expired(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= self._clock()))
            conn.commit()
        if result.rowcount:
            logger.info("Purged %d expired sessions", result.rowcount)
        return result.rowcount

    def count_for_user(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            rows = conn.execute(_sessions.select().where(_sessions.c.user_id == user_id)).fetchall()
        return len(rows)

    def close(self) -> None:
        self.engine.dispose()


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )
