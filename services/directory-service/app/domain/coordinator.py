"""Single "save changes" transaction over a user's status and personal token."""

from __future__ import annotations

import calendar
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from schemas import SubscriptionDuration, UserStatus

from .contracts import USERS, RecordStore, StatusRequest, TokenRequest
from .entitlement import can_upgrade, count_authorized
from .errors import DirectoryError, PartialFailure, StoreWriteFailed, UserNotFound
from .records import DirectoryUser
from ..metrics import ENTITLEMENT_DENIALS

logger = logging.getLogger(__name__)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift ``moment`` by calendar months, clamping to the end of the target month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


@dataclass(slots=True)
class SaveResult:
    """Outcome of :meth:`UserMutationCoordinator.save_changes`."""

    success: bool
    errors: list[DirectoryError] = field(default_factory=list)

    @property
    def failure(self) -> PartialFailure | None:
        return PartialFailure(self.errors) if self.errors else None

    @property
    def messages(self) -> list[str]:
        return [error.message for error in self.errors]


class UserMutationCoordinator:
    """Apply a status change and a token change concurrently, reporting every failure.

    The two sub-operations are independent: one failing never rolls back the
    other.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        max_workers: int = 2,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._max_workers = max_workers
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def save_changes(
        self,
        user_id: str,
        status_request: StatusRequest | None,
        token_request: TokenRequest | None,
    ) -> SaveResult:
        """Run both sub-operations and wait for both before returning.

        Raises :class:`UserNotFound` when ``user_id`` is unknown; every other
        domain failure is collected into the returned :class:`SaveResult`.
        """
        record = self._store.get_by_id(USERS, user_id)
        if record is None:
            raise UserNotFound("User not found")
        user = DirectoryUser.from_record(record)

        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="save") as executor:
            futures = [
                executor.submit(self._apply_status, user, status_request),
                executor.submit(self._apply_token, user, token_request),
            ]

        errors: list[DirectoryError] = []
        for future in futures:
            exc = future.exception()
            if exc is None:
                continue
            if not isinstance(exc, DirectoryError):
                raise exc
            errors.append(exc)

        if errors:
            logger.warning(
                "save for user %s finished with %d error(s): %s",
                user.id,
                len(errors),
                PartialFailure(errors),
            )
        return SaveResult(success=not errors, errors=errors)

    def _apply_status(self, user: DirectoryUser, request: StatusRequest | None) -> None:
        if request is None:
            return
        lifetime = request.subscription_duration is SubscriptionDuration.lifetime
        target = UserStatus.lifetime if lifetime else request.status

        users = self._store.select_all(USERS)
        authorized = count_authorized(DirectoryUser.from_record(row) for row in users)
        decision = can_upgrade(user, target, authorized)
        if not decision.allowed:
            ENTITLEMENT_DENIALS.inc()
            logger.info("status upgrade for user %s refused: %d users authorized", user.id, authorized)
            raise decision.reason

        if target is user.status and not lifetime:
            return

        expiry = None
        if target is UserStatus.subscription:
            expiry = add_months(self._clock(), request.subscription_duration.months)
        try:
            self._store.update(USERS, user.id, {"status": target.value, "subscription_expiry": expiry})
        except StoreWriteFailed as exc:
            raise type(exc)(f"Failed to update status: {exc.message}") from exc
        logger.info("user %s status %s -> %s", user.id, user.status.value, target.value)

    def _apply_token(self, user: DirectoryUser, request: TokenRequest | None) -> None:
        if request is None:
            return
        current = user.personal_token or ""
        new_token = (request.personal_token or "").strip()
        if new_token == current:
            return
        try:
            self._store.update(USERS, user.id, {"personal_token": new_token or None})
        except StoreWriteFailed as exc:
            raise type(exc)(f"Failed to update token: {exc.message}") from exc
        logger.info("user %s personal token %s", user.id, "updated" if new_token else "cleared")
