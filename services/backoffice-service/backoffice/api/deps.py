"""Request dependencies, including the authorization gate."""

from __future__ import annotations

import logging

from fastapi import Depends, Request

from ..config import get_settings
from ..domain.contracts import RequestContext
from ..domain.resource import Identity
from ..domain.service import BackofficeService
from ..errors import Unauthenticated
from ..security.tokens import CredentialVerifier

logger = logging.getLogger(__name__)

settings = get_settings()

BEARER_PREFIX = "bearer "


def get_service(request: Request) -> BackofficeService:
    """Resolve the `BackofficeService` stored on the FastAPI application state."""
    service: BackofficeService = request.app.state.backoffice_service
    return service


def get_verifier(service: BackofficeService = Depends(get_service)) -> CredentialVerifier:
    return service.verifier


def candidate_tokens(request: Request) -> list[str]:
    """Return presented session tokens, auth cookie first, then a bearer header."""
    tokens = []
    cookie = request.cookies.get(settings.auth_cookie_name)
    if cookie:
        tokens.append(cookie)
    header = request.headers.get("authorization", "")
    if header[: len(BEARER_PREFIX)].lower() == BEARER_PREFIX:
        bearer = header[len(BEARER_PREFIX):].strip()
        if bearer and bearer not in tokens:
            tokens.append(bearer)
    return tokens


def resolve_identity(request: Request, verifier: CredentialVerifier) -> Identity | None:
    """Return the identity behind the first presented token that verifies.

    A stale cookie does not mask a valid bearer token sent alongside it.
    """
    for token in candidate_tokens(request):
        identity = verifier.verify(token)
        if identity is not None:
            return identity
    return None


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    if request.client is not None:
        return request.client.host
    return "unknown"


def request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent", "unknown"),
        method=request.method,
        path=request.url.path,
    )


def require_identity(
    request: Request,
    verifier: CredentialVerifier = Depends(get_verifier),
) -> Identity:
    """Authorization gate: resolve a verified identity or refuse with 401.

    A missing token and an invalid one produce the same response, and the
    endpoint body never runs in either case.
    """
    identity = resolve_identity(request, verifier)
    if identity is None:
        logger.warning(
            "access denied for %s %s from %s",
            request.method,
            request.url.path,
            client_ip(request),
        )
        raise Unauthenticated()
    return identity
