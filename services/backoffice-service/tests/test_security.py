"""Tests for session tokens and password hashing."""

from __future__ import annotations

import time

import jwt
import pytest

from backoffice.domain.resource import Identity
from backoffice.security.passwords import hash_password, verify_password
from backoffice.security.tokens import CredentialVerifier

from conftest import TEST_ISSUER, TEST_SECRET, bcrypt_hash


def _encode(claims: dict, secret: str = TEST_SECRET) -> str:
    return jwt.encode(claims, secret, algorithm="HS256")


def _claims(**overrides) -> dict:
    now = int(time.time())
    claims = {
        "iss": TEST_ISSUER,
        "sub": "admin-7",
        "email": "ops@example.com",
        "role": "Admin",
        "iat": now,
        "exp": now + 60,
    }
    claims.update(overrides)
    return {key: value for key, value in claims.items() if value is not None}


def test_issued_token_round_trips_identity(verifier):
    identity = Identity(subject_id="admin-1", email="admin@example.com", role="Admin")
    token, expires_in = verifier.issue(identity)

    assert expires_in == 3600
    assert verifier.verify(token) == identity


def test_missing_optional_claims_fall_back_to_defaults(verifier):
    token = _encode(_claims(email=None, role=None))

    identity = verifier.verify(token)

    assert identity == Identity(subject_id="admin-7", email="", role="user")


@pytest.mark.parametrize(
    "token",
    [
        "",
        "not-a-jwt",
        _encode(_claims(), secret="some-other-secret-of-decent-length"),
        _encode(_claims(exp=int(time.time()) - 120)),
        _encode(_claims(iss="someone.else")),
        _encode(_claims(sub="")),
        _encode(_claims(sub=None)),
    ],
    ids=["empty", "garbage", "wrong-key", "expired", "wrong-issuer", "empty-subject", "no-subject"],
)
def test_every_failure_is_the_same_invalid_result(verifier, token):
    assert verifier.verify(token) is None


def test_verifier_uses_injected_key_only():
    identity = Identity(subject_id="admin-1", email="admin@example.com", role="Admin")
    issuer_a = CredentialVerifier(secret=TEST_SECRET, issuer=TEST_ISSUER, ttl_seconds=60)
    issuer_b = CredentialVerifier(secret=TEST_SECRET + "-rotated", issuer=TEST_ISSUER, ttl_seconds=60)

    token, _ = issuer_a.issue(identity)

    assert issuer_b.verify(token) is None


def test_existing_bcrypt_hash_verifies():
    stored = bcrypt_hash("s3cret!")

    assert stored.startswith("$2b$")
    assert verify_password("s3cret!", stored)
    assert not verify_password("s3cret?", stored)


def test_new_password_hash_is_bcrypt():
    encoded = hash_password("correct horse")

    assert encoded.startswith("$2b$12$")
    assert verify_password("correct horse", encoded)
    assert not verify_password("battery staple", encoded)


def test_empty_password_is_not_hashed():
    with pytest.raises(ValueError):
        hash_password("")


@pytest.mark.parametrize(
    "stored",
    ["", "plaintext-password", "pbkdf2_sha256$1000$salt$digest", "$2b$12$truncated"],
    ids=["empty", "plaintext", "foreign-scheme", "truncated-bcrypt"],
)
def test_password_verify_rejects_malformed_hashes(stored):
    assert not verify_password("anything", stored)
