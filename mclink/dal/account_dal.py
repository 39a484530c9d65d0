# mclink/dal/account_dal.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from ..config import settings
from ..core.clock import from_db, to_db, utcnow
from ..models.account import Account

_DATE_FIELDS = ("linked_at", "created_at", "updated_at")


class AccountDAL:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db[settings.COL_ACCOUNTS]

    async def ensure_indexes(self) -> None:
        await self.col.create_index([("username", ASCENDING)], unique=True)
        # Sparse: unlinked accounts carry no mc_uuid field at all, so they never
        # collide with each other. Unlinking must $unset the field, not null it.
        await self.col.create_index([("mc_uuid", ASCENDING)], unique=True, sparse=True)
        await self.col.create_index([("pending_mc_username", ASCENDING)], sparse=True)

    async def create(
        self,
        *,
        username: str,
        email: Optional[str] = None,
        role: str = "user",
        account_id: Optional[str] = None,
    ) -> Account:
        now = to_db(utcnow())
        doc = {
            "_id": account_id or str(uuid.uuid4()),
            "username": username,
            "email": email,
            "role": role,
            "web_rank": "user",
            "linked": False,
            "minecraft_ranks": [],
            "created_at": now,
            "updated_at": now,
        }
        await self.col.insert_one(doc)
        return _to_model(doc)

    async def find_by_id(self, account_id: str) -> Optional[Account]:
        d = await self.col.find_one({"_id": account_id})
        return _to_model(d) if d else None

    async def find_by_uuid(self, mc_uuid: str) -> Optional[Account]:
        d = await self.col.find_one({"mc_uuid": mc_uuid})
        return _to_model(d) if d else None

    async def find_by_mc_username(self, mc_username: str) -> Optional[Account]:
        d = await self.col.find_one({"mc_username": mc_username})
        return _to_model(d) if d else None

    async def find_pending(self, mc_username: str) -> Optional[Account]:
        """Most recently updated unlinked account that asked to link exactly this name."""
        d = await self.col.find_one(
            {"pending_mc_username": mc_username, "linked": False},
            sort=[("updated_at", DESCENDING)],
        )
        return _to_model(d) if d else None

    async def set_pending_username(self, account_id: str, mc_username: str) -> bool:
        r = await self.col.update_one(
            {"_id": account_id},
            {"$set": {"pending_mc_username": mc_username, "updated_at": to_db(utcnow())}},
        )
        return r.matched_count == 1

    async def set_link(self, account_id: str, *, mc_username: str, mc_uuid: str) -> bool:
        """
        Mark the account linked. Returns False if the account no longer exists.
        A concurrent claim of the same UUID surfaces as DuplicateKeyError.
        """
        now = to_db(utcnow())
        r = await self.col.update_one(
            {"_id": account_id},
            {
                "$set": {
                    "mc_username": mc_username,
                    "mc_uuid": mc_uuid,
                    "linked": True,
                    "linked_at": now,
                    "updated_at": now,
                },
                "$unset": {"pending_mc_username": ""},
            },
        )
        return r.matched_count == 1

    async def clear_link(self, account_id: str) -> bool:
        r = await self.col.update_one(
            {"_id": account_id},
            {
                "$set": {"linked": False, "updated_at": to_db(utcnow())},
                "$unset": {
                    "mc_uuid": "",
                    "mc_username": "",
                    "pending_mc_username": "",
                    "linked_at": "",
                },
            },
        )
        return r.matched_count == 1

    async def update_ranks(
        self, account_id: str, *, web_rank: str, minecraft_ranks: List[Dict[str, Any]]
    ) -> Optional[Account]:
        r = await self.col.find_one_and_update(
            {"_id": account_id},
            {"$set": {"web_rank": web_rank, "minecraft_ranks": minecraft_ranks, "updated_at": to_db(utcnow())}},
            return_document=True,
        )
        return _to_model(r) if r else None


def _to_model(doc: Dict[str, Any]) -> Account:
    d = dict(doc)
    d["_id"] = str(d["_id"])
    for k in _DATE_FIELDS:
        if isinstance(d.get(k), datetime):
            d[k] = from_db(d[k])
    return Account(**d)
