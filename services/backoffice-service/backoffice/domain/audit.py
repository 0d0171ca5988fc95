"""Append-only audit trail for administrative actions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from .contracts import AuditEntry, AuditLogRecord, ResourceRepository

logger = logging.getLogger(__name__)


class AuditLogger:
    """Sole writer of audit records."""

    def __init__(self, repository: ResourceRepository) -> None:
        self._repository = repository

    async def record(self, entry: AuditEntry) -> AuditLogRecord | None:
        """Append ``entry``; a failed append is logged rather than raised.

        The state change the entry describes has already been committed by
        the time this runs, so the caller's response must not depend on it.
        """
        if entry.created_at is None:
            entry.created_at = datetime.now(timezone.utc)
        try:
            return await self._repository.append_audit_record(entry)
        except Exception:
            logger.exception(
                "failed to write audit record action=%s target=%s:%s actor=%s",
                entry.action,
                entry.target_type,
                entry.target_id,
                entry.actor_email,
            )
            return None
