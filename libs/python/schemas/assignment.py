"""Pool assignment event contracts."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, Field


class PoolAssignmentChanged(BaseModel):
    user_id: str
    code: str | None = Field(default=None, description="Flow-account code now held; null once released")
    email: str | None = None
    password: str | None = None
    occurred_at: datetime
