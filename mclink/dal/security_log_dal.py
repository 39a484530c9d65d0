# mclink/dal/security_log_dal.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from ..config import settings
from ..core.clock import to_db, utcnow

log = logging.getLogger("mclink.audit")

LINK_CODE_ISSUED = "MINECRAFT_LINK_CODE"
LINKED = "MINECRAFT_LINK"
UNLINKED = "MINECRAFT_UNLINK"
RANK_CHANGE = "RANK_CHANGE"


class SecurityLogDAL:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db[settings.COL_SECURITY_LOGS]

    async def ensure_indexes(self) -> None:
        await self.col.create_index([("account_id", ASCENDING), ("created_at", DESCENDING)])

    async def record(
        self,
        *,
        account_id: str,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """Audit writes never fail the caller."""
        doc = {
            "account_id": account_id,
            "action": action,
            "details": details or {},
            "ip": ip,
            "user_agent": user_agent,
            "created_at": to_db(utcnow()),
        }
        try:
            await self.col.insert_one(doc)
        except PyMongoError:
            log.exception("audit write failed account_id=%s action=%s", account_id, action)

    async def list_for_account(self, account_id: str, *, limit: int = 50) -> List[Dict[str, Any]]:
        cur = self.col.find({"account_id": account_id}).sort("created_at", DESCENDING).limit(limit)
        out = []
        async for d in cur:
            d["_id"] = str(d["_id"])
            out.append(d)
        return out
