"""Administrator password hashing (bcrypt via pwdlib)."""

from __future__ import annotations

from pwdlib import PasswordHash
from pwdlib.exceptions import UnknownHashError
from pwdlib.hashers.bcrypt import BcryptHasher

# Cost 12 matches the hashes already stored in the administrators table.
_password_hash = PasswordHash((BcryptHasher(rounds=12),))


def hash_password(password: str) -> str:
    """Hash ``password`` with bcrypt."""
    if not password:
        raise ValueError("Password must not be empty")
    return _password_hash.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    """Return ``True`` if ``password`` matches the stored bcrypt ``hashed`` value."""
    if not hashed:
        return False
    try:
        return _password_hash.verify(password, hashed)
    except (UnknownHashError, ValueError):
        return False


__all__ = ["hash_password", "verify_password"]
