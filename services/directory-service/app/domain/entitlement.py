"""Global ceiling on users authorized with a personal token while on a paid tier."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from schemas import UserStatus

from .errors import TokenCeilingReached
from .records import AUTHORIZED_TOKEN_LIMIT, PAID_STATUSES, DirectoryUser


@dataclass(frozen=True, slots=True)
class GateDecision:
    allowed: bool
    reason: TokenCeilingReached | None = None


ALLOW = GateDecision(allowed=True)


def count_authorized(users: Iterable[DirectoryUser]) -> int:
    """Number of users holding a non-blank personal token."""
    return sum(1 for user in users if user.has_token)


def can_upgrade(
    target_user: DirectoryUser,
    target_status: UserStatus,
    authorized_count: int,
) -> GateDecision:
    """Decide whether ``target_user`` may move to ``target_status``.

    Only moves from a non-paid status into subscription or lifetime are
    checked. Users who already hold a token are exempt since they do not grow
    the authorized set. ``authorized_count`` must be freshly computed by the
    caller from the current user set.
    """
    is_upgrade = target_status in PAID_STATUSES and not target_user.is_paid
    if not is_upgrade:
        return ALLOW
    if not target_user.has_token and authorized_count >= AUTHORIZED_TOKEN_LIMIT:
        return GateDecision(
            allowed=False,
            reason=TokenCeilingReached(
                "Cannot upgrade user status. Token authorization is limited to "
                f"fewer than {AUTHORIZED_TOKEN_LIMIT + 1} users."
            ),
        )
    return ALLOW
