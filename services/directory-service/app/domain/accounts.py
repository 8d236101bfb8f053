"""Administration of the flow-account pool itself."""

from __future__ import annotations

import logging

from schemas import AccountStatus

from .allocator import next_code
from .contracts import FLOW_ACCOUNTS, CreateFlowAccountInput, RecordStore, UpdateFlowAccountInput
from .errors import AccountInUse, AccountNotFound, DuplicateAccount, InvalidRequest
from .records import FlowAccount

logger = logging.getLogger(__name__)


class FlowAccountRegistry:
    """Create, edit, soft-delete and look up flow accounts."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def list_accounts(self) -> list[FlowAccount]:
        rows = self._store.select_all(FLOW_ACCOUNTS, order_by=("created_at",))
        return [FlowAccount.from_record(row) for row in reversed(rows)]

    def propose_code(self) -> str:
        """Lowest free ``E<n>`` code, filling gaps left by removed accounts."""
        return next_code(self.list_accounts())

    def create_account(self, payload: CreateFlowAccountInput) -> FlowAccount:
        email = payload.email.strip().lower()
        password = payload.password.strip()
        if not email or not password:
            raise InvalidRequest("Please fill in email and password")

        existing = self.list_accounts()
        code = (payload.code or "").strip() or next_code(existing)
        # Codes are unique among active accounts only; inactive codes are reused.
        if any(account.code == code and account.is_active for account in existing):
            raise DuplicateAccount(f"Code {code} already exists")
        if any(account.email == email for account in existing):
            raise DuplicateAccount("Email already exists in pool")

        record = self._store.insert(
            FLOW_ACCOUNTS,
            {
                "email": email,
                "password": password,
                "code": code,
                "occupancy": 0,
                "status": AccountStatus.active.value,
            },
        )
        logger.info("flow account %s added for %s", code, email)
        return FlowAccount.from_record(record)

    def update_account(self, account_id: int, payload: UpdateFlowAccountInput) -> FlowAccount:
        account = self._get(account_id)
        changes: dict[str, str] = {}
        if payload.email is not None:
            email = payload.email.strip().lower()
            if not email:
                raise InvalidRequest("Email is required")
            if email != account.email:
                if any(other.email == email and other.id != account.id for other in self.list_accounts()):
                    raise DuplicateAccount("Email already exists in pool")
                changes["email"] = email
        password = (payload.password or "").strip()
        if password and password != account.password:
            changes["password"] = password
        if not changes:
            raise InvalidRequest("No changes detected")

        record = self._store.update(FLOW_ACCOUNTS, account.id, changes)
        logger.info("flow account %s updated (%s)", account.code, ", ".join(sorted(changes)))
        return FlowAccount.from_record(record)

    def remove_account(self, account_id: int) -> None:
        """Soft delete: flip the status so historical counters stay attributable."""
        account = self._get(account_id)
        if not account.is_active:
            return
        if account.occupancy > 0:
            raise AccountInUse(
                f"Flow account {account.code} still has {account.occupancy} user(s) assigned"
            )
        self._store.update(FLOW_ACCOUNTS, account.id, {"status": AccountStatus.inactive.value})
        logger.info("flow account %s deactivated", account.code)

    def credential_for(self, code: str) -> FlowAccount:
        """Resolve the active account behind a user's code."""
        if not code or len(code) < 2:
            raise InvalidRequest("Invalid flow account code")
        for row in self._store.filter_equals(FLOW_ACCOUNTS, "code", code):
            account = FlowAccount.from_record(row)
            if account.is_active:
                return account
        raise AccountNotFound("Flow account not found for this code")

    def _get(self, account_id: int) -> FlowAccount:
        record = self._store.get_by_id(FLOW_ACCOUNTS, account_id)
        if record is None:
            raise AccountNotFound("Flow account not found")
        return FlowAccount.from_record(record)
