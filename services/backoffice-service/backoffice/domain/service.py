"""Back-office workflows: lifecycle transitions, sessions and audit access."""

from __future__ import annotations

from base64 import urlsafe_b64decode, urlsafe_b64encode
from datetime import datetime, timezone
import json
import logging
from typing import Callable, Optional, Tuple

from prometheus_client import Counter

from .audit import AuditLogger
from .contracts import AuditEntry, AuditLogRecord, RequestContext, ResourceRepository, TransitionInput
from .lifecycle import Action, Rejected, apply_transition
from .resource import Identity, Resource, ResourceKind
from ..errors import (
    Internal,
    InvalidCredentials,
    PersistenceError,
    ResourceNotFound,
    TransitionNotAllowed,
    ValidationFailed,
)
from ..security.passwords import verify_password
from ..security.tokens import CredentialVerifier

logger = logging.getLogger(__name__)

TRANSITIONS_TOTAL = Counter(
    "backoffice_transitions_total",
    "Lifecycle transition attempts by outcome.",
    ["kind", "action", "outcome"],
)

SYSTEM_TARGET = "system"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackofficeService:
    """Administrative workflows backed by a resource repository."""

    def __init__(
        self,
        repository: ResourceRepository,
        verifier: CredentialVerifier,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Store dependencies used to orchestrate persistence, auditing and sessions."""
        self._repository = repository
        self._verifier = verifier
        self._audit = AuditLogger(repository)
        self._clock = clock

    @property
    def verifier(self) -> CredentialVerifier:
        return self._verifier

    async def get_resource(self, kind: ResourceKind, resource_id: str) -> Resource:
        """Return a live (not soft-deleted) resource or raise ``ResourceNotFound``."""
        resource = await self._repository.find_resource(kind, resource_id)
        if resource is None or resource.is_deleted:
            raise ResourceNotFound(f"{kind.label} not found")
        return resource

    async def transition(
        self,
        kind: ResourceKind,
        resource_id: str,
        action: Action,
        payload: TransitionInput,
        identity: Identity,
        context: RequestContext,
    ) -> Resource:
        """Apply a lifecycle action to one resource and audit it.

        The status read here only selects the patch. The write re-checks that
        status atomically, so a concurrent transition that got there first
        turns this call into a ``ResourceNotFound`` rather than a lost update.
        """
        try:
            current = await self.get_resource(kind, resource_id)
            decision = apply_transition(
                kind,
                current.status,
                action,
                now=self._clock(),
                reason=payload.reason,
            )
            if isinstance(decision, Rejected):
                TRANSITIONS_TOTAL.labels(kind.value, action.value, "rejected").inc()
                logger.info(
                    "%s %s refused for %s: %s (status=%s)",
                    kind.value,
                    action.value,
                    resource_id,
                    decision.reason,
                    current.status,
                )
                raise TransitionNotAllowed(f"{kind.label} not found", reason=decision.reason)

            updated = await self._repository.update_status(
                kind,
                resource_id,
                expected_status=current.status,
                patch=decision.patch,
            )
        except ResourceNotFound as exc:
            if not isinstance(exc, TransitionNotAllowed):
                TRANSITIONS_TOTAL.labels(kind.value, action.value, "not_found").inc()
            raise
        except PersistenceError as exc:
            TRANSITIONS_TOTAL.labels(kind.value, action.value, "error").inc()
            logger.exception("failed to %s %s %s", action.value, kind.value, resource_id)
            raise Internal(f"Failed to {action.value} {kind.value}") from exc

        if updated is None:
            TRANSITIONS_TOTAL.labels(kind.value, action.value, "not_found").inc()
            logger.info(
                "%s %s on %s matched no row (status moved from %s)",
                kind.value,
                action.value,
                resource_id,
                current.status,
            )
            raise ResourceNotFound(f"{kind.label} not found")

        TRANSITIONS_TOTAL.labels(kind.value, action.value, "applied").inc()
        logger.info(
            "%s %s %s -> %s by %s",
            kind.value,
            resource_id,
            decision.previous_status,
            decision.new_status,
            identity.email or identity.subject_id,
        )

        metadata = {
            "from_status": decision.previous_status,
            "to_status": decision.new_status,
            **context.as_metadata(),
        }
        if payload.reason:
            metadata["reason"] = payload.reason
        if payload.notes:
            metadata["notes"] = payload.notes
        await self._audit.record(
            AuditEntry(
                action=action.value,
                actor_id=identity.subject_id,
                actor_email=identity.email,
                target_type=kind.value,
                target_id=resource_id,
                details=payload.reason or payload.notes,
                metadata=metadata,
            )
        )
        return updated

    async def login(
        self, email: str, password: str, context: RequestContext
    ) -> Tuple[Identity, str, int]:
        """Verify administrator credentials and mint a session token."""
        normalised = email.strip().lower()
        administrator = await self._repository.find_administrator(normalised)
        if (
            administrator is None
            or administrator.deleted_at is not None
            or not verify_password(password, administrator.password_hash)
        ):
            logger.warning("login failed for %s from %s", normalised, context.ip_address)
            await self._audit.record(
                AuditEntry(
                    action="login_failed",
                    actor_id=None,
                    actor_email=normalised,
                    target_type=SYSTEM_TARGET,
                    details="Invalid credentials",
                    metadata=context.as_metadata(),
                )
            )
            raise InvalidCredentials()

        identity = Identity(
            subject_id=administrator.id,
            email=administrator.email,
            role=administrator.role,
        )
        await self._repository.record_login(administrator.id, self._clock())
        token, expires_in = self._verifier.issue(identity)
        await self._audit.record(
            AuditEntry(
                action="login",
                actor_id=identity.subject_id,
                actor_email=identity.email,
                target_type=SYSTEM_TARGET,
                details="Administrator logged in",
                metadata=context.as_metadata(),
            )
        )
        return identity, token, expires_in

    async def logout(self, identity: Identity | None, context: RequestContext) -> None:
        """Audit the end of a session when the caller still held a valid credential."""
        if identity is not None:
            await self._audit.record(
                AuditEntry(
                    action="logout",
                    actor_id=identity.subject_id,
                    actor_email=identity.email,
                    target_type=SYSTEM_TARGET,
                    details="Administrator logged out",
                    metadata=context.as_metadata(),
                )
            )

    async def list_audit_events(
        self,
        *,
        actor_id: str | None = None,
        action: str | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[AuditLogRecord], str | None]:
        """Return audit records newest first with optional filters and cursor pagination."""
        decoded_cursor: Optional[Tuple[datetime, int]] = None
        if cursor:
            decoded_cursor = self._decode_cursor(cursor)
        records, next_cursor_tuple = await self._repository.list_audit_records(
            actor_id=actor_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            cursor=decoded_cursor,
        )
        return records, self._encode_cursor(next_cursor_tuple)

    def _encode_cursor(self, cursor: Tuple[datetime, int] | None) -> str | None:
        if cursor is None:
            return None
        created_at, audit_id = cursor
        payload = json.dumps({"created_at": created_at.isoformat(), "audit_id": audit_id})
        return urlsafe_b64encode(payload.encode("utf-8")).decode("utf-8")

    def _decode_cursor(self, cursor: str) -> Tuple[datetime, int]:
        try:
            data = json.loads(urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8"))
            created_at = datetime.fromisoformat(data["created_at"])
            audit_id = int(data["audit_id"])
            return created_at, audit_id
        except Exception as exc:
            raise ValidationFailed("invalid cursor") from exc
