from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

import bcrypt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from backoffice.api import routes
from backoffice.api.errors import register_exception_handlers
from backoffice.domain.contracts import AdministratorRecord, AuditEntry, AuditLogRecord
from backoffice.domain.resource import Identity, Resource, ResourceKind
from backoffice.domain.service import BackofficeService
from backoffice.errors import PersistenceError
from backoffice.security.throttle import InMemoryLoginThrottle
from backoffice.security.tokens import CredentialVerifier

TEST_SECRET = "test-secret-key-with-enough-length"
TEST_ISSUER = "backoffice.test"


def bcrypt_hash(password: str) -> str:
    """Produce a $2b$ hash like existing administrator rows, at a cheap cost."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")


class FakeRepository:
    """In-memory repository mimicking the Postgres-backed behaviours."""

    def __init__(self) -> None:
        self.resources: dict[tuple[ResourceKind, str], Resource] = {}
        self.administrators: dict[str, AdministratorRecord] = {}
        self.audit_log: list[AuditLogRecord] = []
        self.status_writes = 0
        self.fail_updates = False
        self.fail_audit = False
        self._audit_seq = 0

    def add_resource(
        self,
        kind: ResourceKind,
        resource_id: str,
        status: str,
        *,
        deleted_at: datetime | None = None,
        **attributes: Any,
    ) -> Resource:
        resource = Resource(
            kind=kind,
            id=resource_id,
            status=status,
            deleted_at=deleted_at,
            updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            attributes=attributes,
        )
        self.resources[(kind, resource_id)] = resource
        return resource

    def add_administrator(
        self,
        email: str,
        password: str,
        *,
        admin_id: str = "admin-1",
        role: str = "Admin",
        deleted_at: datetime | None = None,
    ) -> AdministratorRecord:
        record = AdministratorRecord(
            id=admin_id,
            email=email,
            password_hash=bcrypt_hash(password),
            role=role,
            deleted_at=deleted_at,
        )
        self.administrators[email.lower()] = record
        return record

    def stored(self, kind: ResourceKind, resource_id: str) -> Resource:
        return self.resources[(kind, resource_id)]

    async def find_resource(self, kind: ResourceKind, resource_id: str) -> Resource | None:
        resource = self.resources.get((kind, resource_id))
        if resource is None or resource.deleted_at is not None:
            return None
        snapshot = replace(resource, attributes=dict(resource.attributes))
        # Yield after the read so concurrent callers all see the same snapshot.
        await asyncio.sleep(0)
        return snapshot

    async def update_status(
        self,
        kind: ResourceKind,
        resource_id: str,
        *,
        expected_status: str,
        patch: dict[str, Any],
    ) -> Resource | None:
        if self.fail_updates:
            raise PersistenceError("connection reset while updating")
        resource = self.resources.get((kind, resource_id))
        if resource is None or resource.deleted_at is not None or resource.status != expected_status:
            return None
        for column, value in patch.items():
            if column in {"status", "deleted_at", "updated_at"}:
                setattr(resource, column, value)
            else:
                resource.attributes[column] = value
        self.status_writes += 1
        return replace(resource, attributes=dict(resource.attributes))

    async def find_administrator(self, email: str) -> AdministratorRecord | None:
        return self.administrators.get(email)

    async def record_login(self, administrator_id: str, at: datetime) -> None:
        for record in self.administrators.values():
            if record.id == administrator_id:
                record.last_login_at = at

    async def append_audit_record(self, entry: AuditEntry) -> AuditLogRecord:
        if self.fail_audit:
            raise PersistenceError("audit table unavailable")
        self._audit_seq += 1
        record = AuditLogRecord(
            audit_id=self._audit_seq,
            actor_id=entry.actor_id,
            actor_email=entry.actor_email,
            action=entry.action,
            target_type=entry.target_type,
            target_id=entry.target_id,
            details=entry.details,
            metadata=dict(entry.metadata),
            created_at=entry.created_at or datetime.now(timezone.utc),
        )
        self.audit_log.append(record)
        return record

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
    ):
        results = list(self.audit_log)
        if actor_id:
            results = [record for record in results if record.actor_id == actor_id]
        if action:
            results = [record for record in results if record.action == action]
        if target_type:
            results = [record for record in results if record.target_type == target_type]
        if target_id:
            results = [record for record in results if record.target_id == target_id]
        if created_after:
            results = [record for record in results if record.created_at >= created_after]
        if created_before:
            results = [record for record in results if record.created_at <= created_before]
        results.sort(key=lambda r: (r.created_at, r.audit_id), reverse=True)
        if cursor:
            results = [record for record in results if (record.created_at, record.audit_id) < cursor]
        slice_ = results[:limit]
        next_cursor = None
        if len(results) > limit:
            last = slice_[-1]
            next_cursor = (last.created_at, last.audit_id)
        return slice_, next_cursor

    def audit_actions(self) -> list[str]:
        return [record.action for record in self.audit_log]


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def verifier() -> CredentialVerifier:
    return CredentialVerifier(secret=TEST_SECRET, issuer=TEST_ISSUER, ttl_seconds=3600)


@pytest.fixture
def service(repository: FakeRepository, verifier: CredentialVerifier) -> BackofficeService:
    return BackofficeService(repository, verifier)


@pytest.fixture
def admin_identity() -> Identity:
    return Identity(subject_id="admin-1", email="admin@example.com", role="Admin")


@pytest.fixture
def auth_headers(verifier: CredentialVerifier, admin_identity: Identity) -> dict[str, str]:
    token, _ = verifier.issue(admin_identity)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api_client(service: BackofficeService):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(routes.router)
    app.state.backoffice_service = service

    original_throttle = routes.login_throttle
    routes.login_throttle = InMemoryLoginThrottle(max_attempts=2, window_seconds=60)

    with TestClient(app) as client:
        yield client

    routes.login_throttle = original_throttle
