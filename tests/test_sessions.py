"""Unit tests for auth/sessions.py -- the refresh-token session store.

Covers:
- put / find_by_token round trip with client metadata
- rotate() is a compare-and-set on the previous hash
- expired rows are invisible and removed lazily
- delete_by_token() is idempotent and can be scoped to a user
- delete_for_user() and delete_expired()
"""

from auth.models import ClientMeta


def test_put_and_find(session_store, clock):
    sid = session_store.put(1, "hash-a", clock() + 60, ClientMeta(ip_address="10.0.0.1", user_agent="curl/8"))
    session = session_store.find_by_token("hash-a")
    assert session is not None
    assert session.id == sid
    assert session.user_id == 1
    assert session.ip_address == "10.0.0.1"
    assert session.user_agent == "curl/8"


def test_find_unknown_token(session_store):
    assert session_store.find_by_token("missing") is None


def test_rotate_replaces_hash(session_store, clock):
    sid = session_store.put(1, "hash-a", clock() + 60)
    assert session_store.rotate(sid, "hash-a", "hash-b", clock() + 120) is True
    assert session_store.find_by_token("hash-a") is None
    assert session_store.find_by_token("hash-b").expires_at == clock() + 120


def test_rotate_with_stale_hash_fails(session_store, clock):
    sid = session_store.put(1, "hash-a", clock() + 60)
    session_store.rotate(sid, "hash-a", "hash-b", clock() + 60)
    assert session_store.rotate(sid, "hash-a", "hash-c", clock() + 60) is False
    assert session_store.find_by_token("hash-b") is not None
    assert session_store.find_by_token("hash-c") is None


def test_expired_session_is_removed_on_lookup(session_store, clock):
    session_store.put(1, "hash-a", clock() + 60)
    clock.advance(60)
    assert session_store.find_by_token("hash-a") is None
    assert session_store.count_for_user(1) == 0


def test_delete_by_token_is_idempotent(session_store, clock):
    session_store.put(1, "hash-a", clock() + 60)
    assert session_store.delete_by_token("hash-a") == 1
    assert session_store.delete_by_token("hash-a") == 0


def test_delete_by_token_scoped_to_owner(session_store, clock):
    session_store.put(1, "hash-a", clock() + 60)
    assert session_store.delete_by_token("hash-a", user_id=2) == 0
    assert session_store.find_by_token("hash-a") is not None
    assert session_store.delete_by_token("hash-a", user_id=1) == 1


def test_delete_for_user(session_store, clock):
    session_store.put(1, "a", clock() + 60)
    session_store.put(1, "b", clock() + 60)
    session_store.put(2, "c", clock() + 60)
    assert session_store.delete_for_user(1) == 2
    assert session_store.count_for_user(1) == 0
    assert session_store.count_for_user(2) == 1


def test_delete_expired(session_store, clock):
    session_store.put(1, "short", clock() + 10)
    session_store.put(1, "long", clock() + 1000)
    clock.advance(10)
    assert session_store.delete_expired() == 1
    assert session_store.count_for_user(1) == 1
