"""Issuing and verifying administrator session tokens."""

from __future__ import annotations

import logging
import time
from typing import Any

import jwt

from ..domain.resource import Identity

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


class CredentialVerifier:
    """Signs and verifies HS256 session JWTs with an injected key."""

    def __init__(
        self,
        *,
        secret: str,
        issuer: str,
        ttl_seconds: int,
        default_role: str = "user",
    ) -> None:
        self._secret = secret
        self._issuer = issuer
        self._ttl_seconds = ttl_seconds
        self._default_role = default_role

    def issue(self, identity: Identity) -> tuple[str, int]:
        """Create a signed JWT for an authenticated administrator.

        Parameters
        ----------
        identity:
            Administrator the token speaks for; ``subject_id`` becomes ``sub``.

        Returns
        -------
        tuple[str, int]
            The encoded JWT string and its TTL (in seconds).
        """
        now = int(time.time())
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": identity.subject_id,
            "email": identity.email,
            "role": identity.role,
            "iat": now,
            "exp": now + self._ttl_seconds,
        }
        token = jwt.encode(payload, self._secret, algorithm=ALGORITHM)
        return token, self._ttl_seconds

    def verify(self, token: str) -> Identity | None:
        """Return the identity carried by ``token`` or ``None``.

        Every failure (malformed token, bad signature, foreign issuer,
        expiry, empty subject) yields the same ``None`` so callers cannot
        tell them apart.
        """
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=self._issuer,
                options={"require": ["exp", "sub"]},
            )
        except jwt.PyJWTError as exc:
            logger.debug("credential rejected: %s", type(exc).__name__)
            return None

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            return None
        email = claims.get("email")
        role = claims.get("role")
        return Identity(
            subject_id=subject,
            email=email if isinstance(email, str) else "",
            role=role if isinstance(role, str) and role else self._default_role,
        )
