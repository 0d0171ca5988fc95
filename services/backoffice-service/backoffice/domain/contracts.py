"""Domain-level contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from .resource import Resource, ResourceKind


@dataclass(slots=True)
class TransitionInput:
    """Validated operator input accompanying a lifecycle action."""

    reason: str | None = None
    notes: str | None = None


@dataclass(slots=True)
class RequestContext:
    """Where an administrative request came from, kept for the audit trail."""

    ip_address: str = "unknown"
    user_agent: str = "unknown"
    method: str = ""
    path: str = ""

    def as_metadata(self) -> dict[str, str]:
        return {
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "http_method": self.method,
            "endpoint": self.path,
        }


@dataclass(slots=True)
class AuditEntry:
    """An audit record before the store assigns its identifier."""

    action: str
    actor_id: str | None
    actor_email: str
    target_type: str | None = None
    target_id: str | None = None
    details: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass(slots=True)
class AuditLogRecord:
    """Row projection for items in admin_logs."""

    audit_id: int
    actor_id: str | None
    actor_email: str
    action: str
    target_type: str | None
    target_id: str | None
    details: str | None
    metadata: dict[str, Any]
    created_at: datetime


@dataclass(slots=True)
class AdministratorRecord:
    id: str
    email: str
    password_hash: str
    role: str
    deleted_at: datetime | None = None
    last_login_at: datetime | None = None


class ResourceRepository(Protocol):
    """Persistence operations the back office depends on.

    ``find_resource`` and ``update_status`` never see soft-deleted rows.
    ``update_status`` must check its predicate atomically in the store and
    return ``None`` when no row matched.
    """

    async def find_resource(self, kind: ResourceKind, resource_id: str) -> Resource | None: ...

    async def update_status(
        self,
        kind: ResourceKind,
        resource_id: str,
        *,
        expected_status: str,
        patch: dict[str, Any],
    ) -> Resource | None: ...

    async def find_administrator(self, email: str) -> AdministratorRecord | None: ...

    async def record_login(self, administrator_id: str, at: datetime) -> None: ...

    async def append_audit_record(self, entry: AuditEntry) -> AuditLogRecord: ...

    async def list_audit_records(
        self,
        *,
        actor_id: str | None = None,
        action: str | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: tuple[datetime, int] | None = None,
    ) -> tuple[list[AuditLogRecord], tuple[datetime, int] | None]: ...
