"""Shared schema exports."""

from .assignment import PoolAssignmentChanged
from .directory import AccountStatus, SubscriptionDuration, UserStatus
from .flow_account import FlowAccount, FlowAccountCredential

__all__ = [
    "AccountStatus",
    "FlowAccount",
    "FlowAccountCredential",
    "PoolAssignmentChanged",
    "SubscriptionDuration",
    "UserStatus",
]
