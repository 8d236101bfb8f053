"""Flow-account DTOs shared across services."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, EmailStr

from .directory import AccountStatus


class FlowAccount(BaseModel):
    id: int
    code: str
    email: EmailStr
    occupancy: int
    capacity: int
    status: AccountStatus
    created_at: datetime | None = None

    class Config:
        use_enum_values = True


class FlowAccountCredential(BaseModel):
    code: str
    email: EmailStr
    password: str
