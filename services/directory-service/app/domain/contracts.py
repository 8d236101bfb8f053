"""Domain-level request contracts and the record-store port shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from schemas import SubscriptionDuration, UserStatus

USERS = "users"
FLOW_ACCOUNTS = "flow_accounts"

Record = dict[str, Any]


class RecordStore(Protocol):
    """Generic key/filter/update interface over the ``users`` and ``flow_accounts`` tables.

    Write methods raise :class:`~app.domain.errors.StoreWriteFailed` (or its
    :class:`~app.domain.errors.StoreConflict` subclass) on failure.
    """

    def get_by_id(self, table: str, record_id: Any) -> Record | None: ...

    def filter_equals(self, table: str, field: str, value: Any) -> list[Record]: ...

    def filter_less_than(
        self,
        table: str,
        field: str,
        value: Any,
        order_by: Sequence[str],
        limit: int | None = None,
    ) -> list[Record]: ...

    def select_all(self, table: str, order_by: Sequence[str] | None = None) -> list[Record]: ...

    def update(self, table: str, record_id: Any, fields: dict[str, Any]) -> Record: ...

    def insert(self, table: str, fields: dict[str, Any]) -> Record: ...


@dataclass(slots=True)
class StatusRequest:
    """Status dropdown value plus the chosen subscription duration."""

    status: UserStatus
    subscription_duration: SubscriptionDuration = SubscriptionDuration.six_months


@dataclass(slots=True)
class TokenRequest:
    """Raw personal token as typed by the operator; blank clears it."""

    personal_token: str | None = None


@dataclass(slots=True)
class CreateFlowAccountInput:
    email: str
    password: str
    code: str | None = None


@dataclass(slots=True)
class UpdateFlowAccountInput:
    email: str | None = None
    password: str | None = None
