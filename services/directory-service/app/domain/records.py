from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from schemas import AccountStatus, UserStatus

FLOW_ACCOUNT_CAPACITY = 10
# Paid-tier upgrades for tokenless users stop once this many users hold a token.
AUTHORIZED_TOKEN_LIMIT = 4

PAID_STATUSES = frozenset({UserStatus.subscription, UserStatus.lifetime})


@dataclass(slots=True)
class FlowAccount:
    """Shared external credential handed out to at most ``capacity`` users."""

    id: int
    code: str
    email: str
    password: str
    occupancy: int
    status: AccountStatus
    created_at: datetime | None = None
    capacity: int = FLOW_ACCOUNT_CAPACITY

    @property
    def is_active(self) -> bool:
        return self.status is AccountStatus.active

    @property
    def has_room(self) -> bool:
        return self.occupancy < self.capacity

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "FlowAccount":
        """Build the aggregate from a ``flow_accounts`` row."""
        return cls(
            id=record["id"],
            code=record["code"],
            email=record.get("email", ""),
            password=record.get("password", ""),
            occupancy=int(record.get("occupancy") or 0),
            status=AccountStatus(record.get("status", AccountStatus.active.value)),
            created_at=record.get("created_at"),
        )


@dataclass(slots=True)
class DirectoryUser:
    """Directory entry as seen by the entitlement and pool engine."""

    id: str
    status: UserStatus
    subscription_expiry: datetime | None = None
    personal_token: str | None = None
    pool_code: str | None = None

    @property
    def has_token(self) -> bool:
        return bool(self.personal_token and self.personal_token.strip())

    @property
    def is_paid(self) -> bool:
        return self.status in PAID_STATUSES

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "DirectoryUser":
        """Build the aggregate from a ``users`` row."""
        return cls(
            id=str(record["id"]),
            status=UserStatus(record.get("status", UserStatus.trial.value)),
            subscription_expiry=record.get("subscription_expiry"),
            personal_token=record.get("personal_token"),
            pool_code=record.get("pool_code"),
        )
