"""Flow-account pool allocation: selection, assignment, release and reassignment."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from .contracts import FLOW_ACCOUNTS, USERS, RecordStore
from .errors import (
    AccountFull,
    AccountNotFound,
    NoCapacity,
    NothingAssigned,
    StoreWriteFailed,
    UserNotFound,
)
from .records import FLOW_ACCOUNT_CAPACITY, DirectoryUser, FlowAccount
from ..metrics import POOL_ASSIGNMENTS, POOL_COUNTER_DRIFT, POOL_RELEASES

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^E(\d+)$")


@dataclass(slots=True)
class PoolAssignment:
    """Flow-account code and credential handed to a user."""

    user_id: str
    code: str
    email: str
    password: str


def next_code(accounts: Iterable[FlowAccount]) -> str:
    """Return the lowest free ``E<n>`` code among the active accounts, starting at ``E1``."""
    used: set[int] = set()
    for account in accounts:
        if not account.is_active:
            continue
        match = CODE_PATTERN.match(account.code)
        if match:
            used.add(int(match.group(1)))

    number = 1
    while number in used:
        number += 1
    return f"E{number}"


def select_least_loaded(accounts: Iterable[FlowAccount]) -> FlowAccount:
    """Pick the active account with room and the lowest occupancy, ties broken by code."""
    candidates = [account for account in accounts if account.is_active and account.has_room]
    if not candidates:
        raise NoCapacity("No available flow account. Please add more accounts.")
    return min(candidates, key=lambda account: (account.occupancy, account.code))


class PoolAllocator:
    """Keeps each flow account's occupancy in step with the users holding its code.

    The user pointer and the account counter are two separate store writes.
    Reads are not locked, so concurrent assignments against the same account
    may push its occupancy past capacity.
    """

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def assign(self, user_id: str, requested_code: str | None = None) -> PoolAssignment:
        """Give ``user_id`` a flow account, either ``requested_code`` or the least loaded one.

        A user who already holds a code gets a second increment; use
        :meth:`reassign` for a clean switch.
        """
        user = self._load_user(user_id)
        if requested_code:
            account = self.find_active(requested_code)
            if account is None:
                raise AccountNotFound(f"Flow account {requested_code} not found or inactive")
            if not account.has_room:
                raise AccountFull(
                    f"Flow account {requested_code} is full "
                    f"({account.occupancy}/{account.capacity} users)"
                )
            mode = "manual"
        else:
            rows = self._store.filter_less_than(
                FLOW_ACCOUNTS,
                "occupancy",
                FLOW_ACCOUNT_CAPACITY,
                order_by=("occupancy", "code"),
            )
            account = select_least_loaded(FlowAccount.from_record(row) for row in rows)
            mode = "auto"

        self._store.update(USERS, user.id, {"pool_code": account.code})
        try:
            self._store.update(FLOW_ACCOUNTS, account.id, {"occupancy": account.occupancy + 1})
        except StoreWriteFailed as exc:
            POOL_COUNTER_DRIFT.labels(operation="increment").inc()
            logger.warning(
                "assigned %s to user %s but occupancy increment failed: %s",
                account.code,
                user.id,
                exc,
            )

        POOL_ASSIGNMENTS.labels(mode=mode).inc()
        logger.info("assigned flow account %s to user %s (%s)", account.code, user.id, mode)
        return PoolAssignment(
            user_id=user.id,
            code=account.code,
            email=account.email,
            password=account.password,
        )

    def release(self, user_id: str) -> None:
        """Clear the user's code and give its slot back to the account."""
        user = self._load_user(user_id)
        if not user.pool_code:
            raise NothingAssigned("User does not have a flow account assigned")

        account = self.find_active(user.pool_code)
        if account is None:
            POOL_COUNTER_DRIFT.labels(operation="missing_account").inc()
            logger.warning(
                "flow account %s held by user %s no longer exists; skipping decrement",
                user.pool_code,
                user.id,
            )
        elif account.occupancy <= 0:
            POOL_COUNTER_DRIFT.labels(operation="underflow").inc()
            logger.warning("flow account %s already at zero occupancy", account.code)
        else:
            try:
                self._store.update(
                    FLOW_ACCOUNTS, account.id, {"occupancy": max(account.occupancy - 1, 0)}
                )
            except StoreWriteFailed as exc:
                POOL_COUNTER_DRIFT.labels(operation="decrement").inc()
                logger.warning("occupancy decrement for %s failed: %s", account.code, exc)

        self._store.update(USERS, user.id, {"pool_code": None})
        POOL_RELEASES.inc()
        logger.info("released flow account %s from user %s", user.pool_code, user.id)

    def reassign(self, user_id: str, requested_code: str | None = None) -> PoolAssignment:
        """Release then assign.

        With nothing to release this is a plain :meth:`assign`. If the assign
        half fails the user is left unassigned; the previous account is not
        restored.
        """
        try:
            self.release(user_id)
        except NothingAssigned:
            logger.info("user %s held no flow account; reassign falls back to assign", user_id)
        return self.assign(user_id, requested_code)

    def find_active(self, code: str) -> FlowAccount | None:
        """Return the active account carrying ``code`` or ``None``."""
        for row in self._store.filter_equals(FLOW_ACCOUNTS, "code", code):
            account = FlowAccount.from_record(row)
            if account.is_active:
                return account
        return None

    def _load_user(self, user_id: str) -> DirectoryUser:
        record = self._store.get_by_id(USERS, user_id)
        if record is None:
            raise UserNotFound("User not found")
        return DirectoryUser.from_record(record)
