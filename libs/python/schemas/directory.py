"""Directory enums shared between the admin API and its consumers."""

from __future__ import annotations

from enum import Enum


class UserStatus(str, Enum):
    trial = "trial"
    subscription = "subscription"
    lifetime = "lifetime"
    inactive = "inactive"
    admin = "admin"


class AccountStatus(str, Enum):
    active = "active"
    inactive = "inactive"


class SubscriptionDuration(str, Enum):
    six_months = "6"
    twelve_months = "12"
    lifetime = "lifetime"

    @property
    def months(self) -> int | None:
        """Calendar months granted, or ``None`` for lifetime."""
        if self is SubscriptionDuration.lifetime:
            return None
        return int(self.value)
