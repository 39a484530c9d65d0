# mclink/models/link_code.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LinkCode(BaseModel):
    """
    A short-lived code binding a web account to a pending Minecraft link.

    Codes are never updated in place: they are created on request, consumed on a
    successful link, and evicted by the sweep once expired.
    """
    model_config = ConfigDict(frozen=True)

    code: str = Field(min_length=1)
    owner_account_id: str
    expires_at: datetime
    created_at: datetime

    @field_validator("code")
    @classmethod
    def _normalize_code(cls, v: str) -> str:
        return v.strip().upper()

    def is_live(self, now: datetime) -> bool:
        # invalid at or after the expiry instant
        return now < self.expires_at


class IssuedCode(BaseModel):
    code: str
    expires_at: datetime
    degraded: bool = False


class ValidatedCode(BaseModel):
    owner_account_id: str
    expires_at: datetime


class CodeInfo(BaseModel):
    """Diagnostic view of a code for the admin listing."""
    code: str
    owner_account_id: str
    expires_at: datetime
    is_expired: bool
    source: str  # "database" | "memory"
    username: Optional[str] = None
