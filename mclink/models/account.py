# mclink/models/account.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MinecraftRank(BaseModel):
    server: str = "global"
    rank: str
    prefix: Optional[str] = None
    suffix: Optional[str] = None
    is_operator: bool = False
    permissions: List[str] = []


class Account(BaseModel):
    """
    Web account as seen by the link service.

    Only the linking-relevant fields are modelled. `mc_uuid` is absent (not null)
    whenever the account is unlinked.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., alias="_id")
    username: str
    email: Optional[str] = None
    role: str = "user"
    web_rank: str = "user"

    linked: bool = False
    mc_username: Optional[str] = None
    mc_uuid: Optional[str] = None
    pending_mc_username: Optional[str] = None
    linked_at: Optional[datetime] = None
    minecraft_ranks: List[MinecraftRank] = []

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_linked(self) -> bool:
        return self.linked and bool(self.mc_uuid)
