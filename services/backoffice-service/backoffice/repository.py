"""Postgres repository for back-office resources, administrators and audit logs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Tuple

import psycopg
from psycopg import sql
from psycopg.rows import dict_row, tuple_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

from .domain.contracts import AdministratorRecord, AuditEntry, AuditLogRecord
from .domain.resource import Resource, ResourceKind
from .errors import PersistenceError

TABLES: dict[ResourceKind, str] = {
    ResourceKind.account: "accounts",
    ResourceKind.merchant: "merchants",
}

# Columns a lifecycle patch may write. Anything else is refused before SQL is built.
PATCHABLE_COLUMNS: dict[ResourceKind, frozenset[str]] = {
    ResourceKind.account: frozenset({"status", "updated_at", "last_activity", "deleted_at"}),
    ResourceKind.merchant: frozenset({"status", "updated_at", "decline_reason", "deleted_at"}),
}

_AUDIT_COLUMNS = (
    "audit_id, admin_id, admin_email, action, target_type, target_id, details, metadata, created_at"
)


class PostgresRepository:
    """Postgres-backed persistence with guarded status updates."""

    def __init__(self, pool: AsyncConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    async def find_resource(self, kind: ResourceKind, resource_id: str) -> Resource | None:
        """Fetch a live resource by id or return ``None``."""
        query = sql.SQL("SELECT * FROM {table} WHERE id = %s AND deleted_at IS NULL").format(
            table=sql.Identifier(TABLES[kind])
        )
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, (resource_id,))
                    row = await cur.fetchone()
        except psycopg.Error as exc:
            raise PersistenceError(f"reading {kind.value} {resource_id}") from exc
        if not row:
            return None
        return self._map_resource(kind, row)

    async def update_status(
        self,
        kind: ResourceKind,
        resource_id: str,
        *,
        expected_status: str,
        patch: dict[str, Any],
    ) -> Resource | None:
        """Apply ``patch`` only if the row is live and still in ``expected_status``.

        The predicate is evaluated by Postgres inside the single UPDATE, which
        makes it the concurrency guard for lifecycle transitions.
        """
        unknown = set(patch) - PATCHABLE_COLUMNS[kind]
        if unknown or not patch:
            raise ValueError(f"patch columns not allowed for {kind.value}: {sorted(unknown)}")

        columns = sorted(patch)
        assignments = sql.SQL(", ").join(
            sql.SQL("{} = %s").format(sql.Identifier(column)) for column in columns
        )
        query = sql.SQL(
            """
            UPDATE {table}
            SET {assignments}
            WHERE id = %s AND deleted_at IS NULL AND status = %s
            RETURNING *
            """
        ).format(table=sql.Identifier(TABLES[kind]), assignments=assignments)
        params = [patch[column] for column in columns] + [resource_id, expected_status]

        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=dict_row) as cur:
                    await cur.execute(query, params)
                    row = await cur.fetchone()
                await conn.commit()
        except psycopg.Error as exc:
            raise PersistenceError(f"updating {kind.value} {resource_id}") from exc
        if not row:
            return None
        return self._map_resource(kind, row)

    async def find_administrator(self, email: str) -> AdministratorRecord | None:
        """Return the administrator registered under ``email``."""
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=tuple_row) as cur:
                    await cur.execute(
                        """
                        SELECT id, email, password_hash, role, deleted_at, last_login_at
                        FROM administrators
                        WHERE lower(email) = %s
                        """,
                        (email,),
                    )
                    row = await cur.fetchone()
        except psycopg.Error as exc:
            raise PersistenceError("reading administrator") from exc
        if not row:
            return None
        return AdministratorRecord(
            id=str(row[0]),
            email=row[1],
            password_hash=row[2],
            role=row[3],
            deleted_at=row[4],
            last_login_at=row[5],
        )

    async def record_login(self, administrator_id: str, at: datetime) -> None:
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "UPDATE administrators SET last_login_at = %s, updated_at = %s WHERE id = %s",
                        (at, at, administrator_id),
                    )
                await conn.commit()
        except psycopg.Error as exc:
            raise PersistenceError("recording administrator login") from exc

    async def append_audit_record(self, entry: AuditEntry) -> AuditLogRecord:
        """Insert one audit row; rows are never updated or deleted."""
        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=tuple_row) as cur:
                    await cur.execute(
                        f"""
                        INSERT INTO admin_logs
                            (admin_id, admin_email, action, target_type, target_id, details, metadata, created_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, COALESCE(%s, NOW()))
                        RETURNING {_AUDIT_COLUMNS}
                        """,
                        (
                            entry.actor_id,
                            entry.actor_email,
                            entry.action,
                            entry.target_type,
                            entry.target_id,
                            entry.details,
                            Jsonb(entry.metadata),
                            entry.created_at,
                        ),
                    )
                    row = await cur.fetchone()
                await conn.commit()
        except psycopg.Error as exc:
            raise PersistenceError("appending audit record") from exc
        return self._map_audit(row)

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
        cursor: Tuple[datetime, int] | None = None,
    ) -> tuple[list[AuditLogRecord], Optional[Tuple[datetime, int]]]:
        """Return audit entries newest first with optional filters and cursor pagination."""
        limit = max(1, min(limit, 100))
        clauses = ["TRUE"]
        params: list[Any] = []

        if actor_id:
            clauses.append("admin_id = %s")
            params.append(actor_id)
        if action:
            clauses.append("action = %s")
            params.append(action)
        if target_type:
            clauses.append("target_type = %s")
            params.append(target_type)
        if target_id:
            clauses.append("target_id = %s")
            params.append(target_id)
        if created_after:
            clauses.append("created_at >= %s")
            params.append(created_after)
        if created_before:
            clauses.append("created_at <= %s")
            params.append(created_before)
        if cursor:
            clauses.append("(created_at, audit_id) < (%s, %s)")
            params.extend(cursor)

        where_sql = " AND ".join(clauses)
        query = f"""
            SELECT {_AUDIT_COLUMNS}
            FROM admin_logs
            WHERE {where_sql}
            ORDER BY created_at DESC, audit_id DESC
            LIMIT %s
        """
        params.append(limit + 1)

        try:
            async with self._pool.connection() as conn:
                async with conn.cursor(row_factory=tuple_row) as cur:
                    await cur.execute(query, params)
                    rows = await cur.fetchall()
        except psycopg.Error as exc:
            raise PersistenceError("listing audit records") from exc

        records = [self._map_audit(row) for row in rows[:limit]]
        next_cursor: Tuple[datetime, int] | None = None
        if len(rows) > limit:
            last = records[-1]
            next_cursor = (last.created_at, last.audit_id)
        return records, next_cursor

    def _map_resource(self, kind: ResourceKind, row: dict[str, Any]) -> Resource:
        """Convert a raw row into the domain ``Resource``."""
        attributes = dict(row)
        return Resource(
            kind=kind,
            id=str(attributes.pop("id")),
            status=str(attributes.pop("status")),
            deleted_at=attributes.pop("deleted_at", None),
            updated_at=attributes.pop("updated_at", None),
            attributes=attributes,
        )

    def _map_audit(self, row: tuple) -> AuditLogRecord:
        return AuditLogRecord(
            audit_id=row[0],
            actor_id=str(row[1]) if row[1] is not None else None,
            actor_email=row[2],
            action=row[3],
            target_type=row[4],
            target_id=row[5],
            details=row[6],
            metadata=row[7] or {},
            created_at=row[8],
        )
