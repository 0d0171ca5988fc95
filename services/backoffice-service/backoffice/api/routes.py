"""HTTP route definitions for the back-office service."""

from __future__ import annotations

import logging

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, Request, Response
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from .deps import get_service, request_context, require_identity, resolve_identity
from ..config import get_settings
from ..domain.contracts import RequestContext, TransitionInput
from ..domain.lifecycle import Action
from ..domain.resource import Identity, ResourceKind
from ..domain.service import BackofficeService
from ..errors import RateLimited, ResourceNotFound
from ..security.redis_throttle import RedisLoginThrottle
from ..security.throttle import InMemoryLoginThrottle, LoginThrottle

logger = logging.getLogger(__name__)

router = APIRouter()


class TransitionRequest(BaseModel):
    """Optional body accepted by lifecycle actions. Status is never client supplied."""

    model_config = ConfigDict(extra="forbid")

    reason: str | None = Field(default=None, min_length=1, max_length=500)
    notes: str | None = Field(default=None, max_length=500)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class IdentityResponse(BaseModel):
    id: str
    email: str
    role: str

    @classmethod
    def from_domain(cls, identity: Identity) -> "IdentityResponse":
        return cls(id=identity.subject_id, email=identity.email, role=identity.role)


class LoginResponse(BaseModel):
    message: str
    user: IdentityResponse
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AuthCheckResponse(BaseModel):
    authenticated: bool
    user: IdentityResponse


class AuditLogEntry(BaseModel):
    """Audit log response entry."""

    audit_id: int
    actor_id: str | None
    actor_email: str
    action: str
    target_type: str | None
    target_id: str | None
    details: str | None
    metadata: dict[str, Any]
    created_at: datetime


class AuditLogResponse(BaseModel):
    """Envelope for paginated audit log data."""

    items: list[AuditLogEntry]
    next_cursor: str | None = None


settings = get_settings()


def _build_login_throttle() -> LoginThrottle:
    """Instantiate the configured login throttle backend."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        from redis.asyncio import from_url

        logger.info("login throttle configured for redis backend at %s", settings.redis_url)
        return RedisLoginThrottle(
            from_url(settings.redis_url),
            max_attempts=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )

    logger.info("login throttle using in-memory backend")
    return InMemoryLoginThrottle(
        max_attempts=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


login_throttle = _build_login_throttle()


def _resolve_kind(collection: str) -> ResourceKind:
    kind = ResourceKind.from_collection(collection)
    if kind is None:
        raise ResourceNotFound("Not found")
    return kind


@router.post("/auth/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    response: Response,
    context: RequestContext = Depends(request_context),
    service: BackofficeService = Depends(get_service),
) -> LoginResponse:
    """Exchange administrator credentials for a session cookie."""
    if not await login_throttle.allow(payload.email):
        raise RateLimited()
    identity, token, expires_in = await service.login(payload.email, payload.password, context)
    await login_throttle.reset(payload.email)
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        max_age=expires_in,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite="lax",
        path="/",
    )
    return LoginResponse(
        message="Logged in successfully",
        user=IdentityResponse.from_domain(identity),
        access_token=token,
        expires_in=expires_in,
    )


@router.post("/auth/logout")
async def logout(
    request: Request,
    response: Response,
    context: RequestContext = Depends(request_context),
    service: BackofficeService = Depends(get_service),
) -> dict[str, str]:
    await service.logout(resolve_identity(request, service.verifier), context)
    response.delete_cookie(settings.auth_cookie_name, path="/")
    return {"message": "Logged out successfully"}


@router.get("/auth/check", response_model=AuthCheckResponse)
async def auth_check(identity: Identity = Depends(require_identity)) -> AuthCheckResponse:
    return AuthCheckResponse(authenticated=True, user=IdentityResponse.from_domain(identity))


@router.get("/resources/{kind}/{resource_id}")
async def get_resource(
    kind: str,
    resource_id: str,
    identity: Identity = Depends(require_identity),
    service: BackofficeService = Depends(get_service),
) -> dict[str, Any]:
    """Return the public view of a live account or merchant."""
    resource = await service.get_resource(_resolve_kind(kind), resource_id)
    return resource.public_view()


@router.patch("/resources/{kind}/{resource_id}/{action}")
async def transition_resource(
    kind: str,
    resource_id: str,
    action: str,
    payload: TransitionRequest | None = Body(default=None),
    identity: Identity = Depends(require_identity),
    context: RequestContext = Depends(request_context),
    service: BackofficeService = Depends(get_service),
) -> dict[str, Any]:
    """Approve, suspend, reactivate or reject an account or merchant."""
    resource_kind = _resolve_kind(kind)
    try:
        lifecycle_action = Action(action)
    except ValueError:
        raise ResourceNotFound("Not found") from None
    body = payload or TransitionRequest()
    updated = await service.transition(
        resource_kind,
        resource_id,
        lifecycle_action,
        TransitionInput(reason=body.reason, notes=body.notes),
        identity,
        context,
    )
    return updated.public_view()


@router.get("/audit/logs", response_model=AuditLogResponse)
async def list_audit_logs(
    actor_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    target_type: str | None = Query(default=None),
    target_id: str | None = Query(default=None),
    created_after: datetime | None = Query(default=None),
    created_before: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    cursor: str | None = Query(default=None),
    identity: Identity = Depends(require_identity),
    service: BackofficeService = Depends(get_service),
) -> AuditLogResponse:
    """Return paginated audit events, newest first, with optional filtering."""
    records, next_cursor = await service.list_audit_events(
        actor_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        created_after=created_after,
        created_before=created_before,
        limit=limit,
        cursor=cursor,
    )

    items = [
        AuditLogEntry(
            audit_id=record.audit_id,
            actor_id=record.actor_id,
            actor_email=record.actor_email,
            action=record.action,
            target_type=record.target_type,
            target_id=record.target_id,
            details=record.details,
            metadata=record.metadata,
            created_at=record.created_at,
        )
        for record in records
    ]
    return AuditLogResponse(items=items, next_cursor=next_cursor)
