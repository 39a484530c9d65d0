# mclink/schemas/link.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class GenerateRequest(BaseModel):
    """Body of POST /generate. The username is only a hint until the plugin confirms it."""
    mc_username: Optional[str] = Field(default=None, alias="mcUsername")


class PluginLinkRequest(BaseModel):
    """
    Body of POST /validate, sent by the Minecraft plugin.
    Every field is optional here so malformed calls still get a 200 + success=false.
    """
    model_config = ConfigDict(extra="ignore")

    username: Optional[str] = None
    code: Optional[str] = None
    uuid: Optional[str] = None


class PlayerLookupRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    username: Optional[str] = None
    uuid: Optional[str] = None


class DebugCode(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    user_id: str = Field(alias="userId")
    username: str
    expires: datetime
    is_expired: bool = Field(alias="isExpired")
    source: str


class DebugCodesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    total_codes: int = Field(alias="totalCodes")
    codes: List[DebugCode]
