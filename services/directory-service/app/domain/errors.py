"""Error taxonomy for the entitlement and pool allocation engine."""

from __future__ import annotations

from typing import Any, Iterable


class DirectoryError(RuntimeError):
    """Base class for every failure an operator should see.

    Attributes:
        message: Human-readable explanation shown in the console.
        code: Stable machine identifier used by the HTTP layer.
    """

    code = "directory_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class UserNotFound(DirectoryError):
    code = "user_not_found"


class AccountNotFound(DirectoryError):
    code = "account_not_found"


class AccountFull(DirectoryError):
    code = "account_full"


class NoCapacity(DirectoryError):
    code = "no_capacity"


class NothingAssigned(DirectoryError):
    code = "nothing_assigned"


class TokenCeilingReached(DirectoryError):
    code = "token_ceiling_reached"


class AccountInUse(DirectoryError):
    code = "account_in_use"


class DuplicateAccount(DirectoryError):
    code = "duplicate_account"


class InvalidRequest(DirectoryError):
    code = "invalid_request"


class StoreWriteFailed(DirectoryError):
    """Wraps any error raised by the backing record store."""

    code = "store_write_failed"


class StoreConflict(StoreWriteFailed):
    """The store rejected a write because of a uniqueness constraint."""

    code = "store_conflict"


class PartialFailure(DirectoryError):
    """Aggregate of the sub-operation failures of a single save."""

    code = "partial_failure"

    def __init__(self, errors: Iterable[DirectoryError]) -> None:
        self.errors = list(errors)
        super().__init__(" ".join(error.message for error in self.errors))

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = [error.to_dict() for error in self.errors]
        return payload
