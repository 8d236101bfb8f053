from __future__ import annotations

import copy
import itertools
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

import pytest

from app.domain.contracts import FLOW_ACCOUNTS, USERS
from app.domain.errors import StoreConflict, StoreWriteFailed


class FakeRecordStore:
    """In-memory record store mimicking the Postgres-backed behaviors."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[Any, dict[str, Any]]] = {USERS: {}, FLOW_ACCOUNTS: {}}
        self._ids = itertools.count(1)
        self._clock = itertools.count()
        self._lock = threading.Lock()
        self.failures: dict[tuple[str, str], StoreWriteFailed] = {}
        self.writes: list[tuple[str, Any, dict[str, Any]]] = []

    # seeding helpers -----------------------------------------------------

    def add_account(self, code: str, occupancy: int = 0, status: str = "active", email: str | None = None):
        return self.insert(
            FLOW_ACCOUNTS,
            {
                "code": code,
                "email": email or f"{code.lower()}@example.com",
                "password": f"secret-{code}",
                "occupancy": occupancy,
                "status": status,
            },
        )

    def add_user(self, status: str = "trial", personal_token: str | None = None, pool_code: str | None = None):
        user_id = str(uuid.uuid4())
        self.insert(
            USERS,
            {
                "id": user_id,
                "email": f"{user_id[:8]}@example.com",
                "status": status,
                "subscription_expiry": None,
                "personal_token": personal_token,
                "pool_code": pool_code,
            },
        )
        return user_id

    def fail_on(self, table: str, field: str, error: StoreWriteFailed | None = None) -> None:
        """Make every later write touching ``table.field`` raise."""
        self.failures[(table, field)] = error or StoreWriteFailed(f"{table}.{field} write rejected")

    def row(self, table: str, record_id: Any) -> dict[str, Any]:
        return self._tables[table][record_id]

    def account_by_code(self, code: str) -> dict[str, Any]:
        return next(row for row in self._tables[FLOW_ACCOUNTS].values() if row["code"] == code)

    # RecordStore --------------------------------------------------------

    def get_by_id(self, table: str, record_id: Any):
        with self._lock:
            row = self._tables[table].get(record_id)
            return copy.deepcopy(row) if row else None

    def filter_equals(self, table: str, field: str, value: Any):
        with self._lock:
            return [copy.deepcopy(row) for row in self._tables[table].values() if row.get(field) == value]

    def filter_less_than(
        self,
        table: str,
        field: str,
        value: Any,
        order_by: Sequence[str],
        limit: int | None = None,
    ):
        with self._lock:
            rows = [copy.deepcopy(row) for row in self._tables[table].values() if row[field] < value]
        rows.sort(key=lambda row: tuple(row[name] for name in order_by))
        return rows[:limit] if limit is not None else rows

    def select_all(self, table: str, order_by: Sequence[str] | None = None):
        with self._lock:
            rows = [copy.deepcopy(row) for row in self._tables[table].values()]
        if order_by:
            rows.sort(key=lambda row: tuple(row[name] for name in order_by))
        return rows

    def update(self, table: str, record_id: Any, fields: dict[str, Any]):
        with self._lock:
            self._check_failures(table, fields)
            row = self._tables[table].get(record_id)
            if row is None:
                raise StoreWriteFailed(f"{table} record {record_id} not found")
            if table == USERS and fields.get("personal_token"):
                self._check_unique(table, "personal_token", fields["personal_token"], record_id)
            row.update(fields)
            row["updated_at"] = datetime.now(timezone.utc)
            self.writes.append((table, record_id, dict(fields)))
            return copy.deepcopy(row)

    def insert(self, table: str, fields: dict[str, Any]):
        with self._lock:
            self._check_failures(table, fields)
            row = dict(fields)
            row.setdefault("id", next(self._ids))
            # strictly increasing so "newest first" ordering is deterministic
            row["created_at"] = datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=next(self._clock))
            row["updated_at"] = row["created_at"]
            self._tables[table][row["id"]] = row
            return copy.deepcopy(row)

    def _check_failures(self, table: str, fields: dict[str, Any]) -> None:
        for name in fields:
            error = self.failures.get((table, name))
            if error is not None:
                raise error

    def _check_unique(self, table: str, field: str, value: Any, record_id: Any) -> None:
        for other_id, row in self._tables[table].items():
            if other_id != record_id and row.get(field) == value:
                raise StoreConflict(f"{field} already in use")


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def twin_store() -> FakeRecordStore:
    """Second, independent store for side-by-side comparisons."""
    return FakeRecordStore()
