"""Tests for the SQL issued by the Postgres repository's guarded status update."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import psycopg
import pytest

from backoffice.domain.resource import ResourceKind
from backoffice.errors import PersistenceError
from backoffice.repository import PostgresRepository

NOW = datetime(2025, 4, 2, 8, 30, tzinfo=timezone.utc)


class RecordingCursor:
    def __init__(self, connection: "RecordingConnection") -> None:
        self._connection = connection

    async def __aenter__(self) -> "RecordingCursor":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    async def execute(self, query, params=None) -> None:
        if self._connection.error is not None:
            raise self._connection.error
        self._connection.executed.append((query, params))

    async def fetchone(self):
        return self._connection.row


class RecordingConnection:
    def __init__(self, row=None, error: Exception | None = None) -> None:
        self.row = row
        self.error = error
        self.executed: list[tuple[object, object]] = []
        self.commits = 0

    def cursor(self, row_factory=None) -> RecordingCursor:
        return RecordingCursor(self)

    async def commit(self) -> None:
        self.commits += 1


class RecordingPool:
    def __init__(self, connection: RecordingConnection) -> None:
        self.conn = connection

    @asynccontextmanager
    async def connection(self):
        yield self.conn


def _normalise(query) -> str:
    return " ".join(query.as_string(None).split())


def test_update_is_guarded_by_liveness_and_expected_status():
    row = {"id": "A1", "status": "Suspended", "deleted_at": None, "updated_at": NOW, "last_activity": NOW}
    connection = RecordingConnection(row=row)
    repository = PostgresRepository(RecordingPool(connection))

    updated = asyncio.run(
        repository.update_status(
            ResourceKind.account,
            "A1",
            expected_status="Active",
            patch={"status": "Suspended", "updated_at": NOW, "last_activity": NOW},
        )
    )

    query, params = connection.executed[0]
    assert _normalise(query) == (
        'UPDATE "accounts" SET "last_activity" = %s, "status" = %s, "updated_at" = %s '
        "WHERE id = %s AND deleted_at IS NULL AND status = %s RETURNING *"
    )
    assert params == [NOW, "Suspended", NOW, "A1", "Active"]
    assert connection.commits == 1
    assert updated.status == "Suspended"
    assert updated.attributes == {"last_activity": NOW}


def test_update_matching_no_row_returns_none():
    connection = RecordingConnection(row=None)
    repository = PostgresRepository(RecordingPool(connection))

    updated = asyncio.run(
        repository.update_status(
            ResourceKind.merchant,
            "M1",
            expected_status="suspended",
            patch={"status": "active", "updated_at": NOW, "decline_reason": None},
        )
    )

    query, _ = connection.executed[0]
    assert 'UPDATE "merchants"' in _normalise(query)
    assert updated is None


@pytest.mark.parametrize(
    ("kind", "patch"),
    [
        (ResourceKind.account, {"status": "Active", "hashed_pin": "0000"}),
        (ResourceKind.account, {"status": "Active", "decline_reason": "n/a"}),
        (ResourceKind.merchant, {"status": "active", "settlement_bank_account_number": "1"}),
        (ResourceKind.merchant, {}),
    ],
)
def test_columns_outside_the_allow_list_never_reach_sql(kind, patch):
    connection = RecordingConnection()
    repository = PostgresRepository(RecordingPool(connection))

    with pytest.raises(ValueError):
        asyncio.run(repository.update_status(kind, "X1", expected_status="whatever", patch=patch))

    assert connection.executed == []


def test_driver_errors_become_persistence_errors():
    connection = RecordingConnection(error=psycopg.OperationalError("server closed the connection"))
    repository = PostgresRepository(RecordingPool(connection))

    with pytest.raises(PersistenceError):
        asyncio.run(
            repository.update_status(
                ResourceKind.account,
                "A1",
                expected_status="Active",
                patch={"status": "Suspended", "updated_at": NOW, "last_activity": NOW},
            )
        )

    assert connection.commits == 0
