"""Unit tests for auth/tokens.py -- JWT issuance, verification and hashing.

Covers:
- access and refresh tokens verify only as their own kind
- claims carry sub, email, type, jti and the role name
- expiry is evaluated against the injected clock
- tampered and foreign-key tokens are rejected
- two tokens minted in the same second differ
- equal signing keys are refused
"""

import base64
import json

import pytest
from jose import jwt

from auth.errors import TokenExpired, TokenInvalid, Unauthorized
from auth.models import Role, TokenKind, User
from auth.tokens import TokenIssuer, hash_secret

ACCESS_KEY = "access-signing-key-" + "a" * 32
REFRESH_KEY = "refresh-signing-key-" + "r" * 32


@pytest.fixture
def token_issuer(clock) -> TokenIssuer:
    return TokenIssuer(ACCESS_KEY, REFRESH_KEY, clock=clock)


@pytest.fixture
def user() -> User:
    return User(id=7, email="ann@example.com", name="ann", role=Role(name="viewer"))


def test_access_token_round_trip(token_issuer, user):
    claims = token_issuer.verify(token_issuer.issue_access(user), TokenKind.access)
    assert claims.user_id == 7
    assert claims.email == "ann@example.com"
    assert claims.type == TokenKind.access
    assert claims.role == "viewer"
    assert claims.exp - claims.iat == token_issuer.access_ttl


def test_refresh_token_lifetime(token_issuer, user):
    claims = token_issuer.verify(token_issuer.issue_refresh(user), TokenKind.refresh)
    assert claims.exp - claims.iat == token_issuer.refresh_ttl == 7 * 24 * 60 * 60


def test_role_claim_omitted_without_role(token_issuer):
    token = token_issuer.issue_access(User(id=1, email="x@example.com", name="x"))
    assert token_issuer.verify(token, TokenKind.access).role is None


def test_refresh_token_is_not_an_access_token(token_issuer, user):
    with pytest.raises(TokenInvalid):
        token_issuer.verify(token_issuer.issue_refresh(user), TokenKind.access)


def test_access_token_is_not_a_refresh_token(token_issuer, user):
    with pytest.raises(TokenInvalid):
        token_issuer.verify(token_issuer.issue_access(user), TokenKind.refresh)


def test_wrong_type_claim_with_right_key_is_rejected(token_issuer, clock):
    now = int(clock())
    forged = jwt.encode(
        {"sub": "7", "email": "ann@example.com", "type": "refresh", "iat": now, "exp": now + 60, "jti": "x"},
        ACCESS_KEY,
        algorithm="HS256",
    )
    with pytest.raises(TokenInvalid):
        token_issuer.verify(forged, TokenKind.access)


def test_expiry_follows_the_clock(token_issuer, user, clock):
    token = token_issuer.issue_access(user)
    clock.advance(token_issuer.access_ttl - 1)
    token_issuer.verify(token, TokenKind.access)
    clock.advance(1)
    with pytest.raises(TokenExpired):
        token_issuer.verify(token, TokenKind.access)


def test_expired_is_a_kind_of_unauthorized(token_issuer, user, clock):
    token = token_issuer.issue_access(user)
    clock.advance(token_issuer.access_ttl)
    with pytest.raises(Unauthorized):
        token_issuer.verify(token, TokenKind.access)


def test_tampered_token_is_rejected(token_issuer, user):
    """Swapping the payload (sub 7 -> 1) under the original signature must fail."""
    token = token_issuer.issue_access(user)
    header, payload, signature = token.split(".")
    claims = json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))
    claims["sub"] = "1"
    forged_payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()
    tampered = ".".join([header, forged_payload, signature])
    with pytest.raises(TokenInvalid):
        token_issuer.verify(tampered, TokenKind.access)


@pytest.mark.parametrize("garbage", ["", "not-a-jwt", "a.b.c"])
def test_garbage_is_rejected(token_issuer, garbage):
    with pytest.raises(TokenInvalid):
        token_issuer.verify(garbage, TokenKind.access)


def test_token_signed_by_another_issuer_is_rejected(token_issuer, user, clock):
    other = TokenIssuer("x" * 40, "y" * 40, clock=clock)
    with pytest.raises(TokenInvalid):
        token_issuer.verify(other.issue_access(user), TokenKind.access)


def test_tokens_minted_together_are_distinct(token_issuer, user):
    first = token_issuer.issue_refresh(user)
    second = token_issuer.issue_refresh(user)
    assert first != second


def test_equal_secrets_are_refused():
    with pytest.raises(ValueError):
        TokenIssuer(REFRESH_KEY, REFRESH_KEY)


def test_hash_secret_is_keyed_and_deterministic():
    assert hash_secret("k1", "123456") == hash_secret("k1", "123456")
    assert hash_secret("k1", "123456") != hash_secret("k2", "123456")
    assert len(hash_secret("k1", "123456")) == 64
