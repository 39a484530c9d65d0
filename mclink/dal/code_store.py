# mclink/dal/code_store.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..config import settings
from ..core.clock import from_db, to_db
from ..core.errors import CodeStoreError, DuplicateCodeError
from ..models.link_code import LinkCode

log = logging.getLogger("mclink.codes.store")


class CodeRepository(Protocol):
    """
    Keyed storage for link codes. Both the durable store and the volatile
    mirror implement this, so the lifecycle manager can treat them alike.

    Implementations raise CodeStoreError when the tier is unavailable.
    """

    async def insert(self, record: LinkCode) -> None: ...

    async def delete_for_owner(self, owner_account_id: str, *, except_code: Optional[str] = None) -> int: ...

    async def find_live(self, code: str, now: datetime) -> Optional[LinkCode]: ...

    async def find_live_for_owner(self, owner_account_id: str, now: datetime) -> Optional[LinkCode]: ...

    async def delete(self, code: str) -> bool: ...

    async def delete_expired(self, now: datetime) -> int: ...

    async def list_codes(self) -> List[LinkCode]: ...


class MongoCodeStore:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.col = db[settings.COL_LINK_CODES]

    async def ensure_indexes(self) -> None:
        await self.col.create_index([("code", ASCENDING)], unique=True)
        await self.col.create_index([("owner_account_id", ASCENDING)])
        await self.col.create_index([("expires_at", ASCENDING)])

    async def insert(self, record: LinkCode) -> None:
        doc = {
            "code": record.code,
            "owner_account_id": record.owner_account_id,
            "expires_at": to_db(record.expires_at),
            "created_at": to_db(record.created_at),
        }
        try:
            await self.col.insert_one(doc)
        except DuplicateKeyError as e:
            raise DuplicateCodeError(record.code) from e
        except PyMongoError as e:
            raise CodeStoreError(f"insert failed: {e}") from e

    async def delete_for_owner(self, owner_account_id: str, *, except_code: Optional[str] = None) -> int:
        query: Dict[str, Any] = {"owner_account_id": owner_account_id}
        if except_code:
            query["code"] = {"$ne": except_code}
        try:
            r = await self.col.delete_many(query)
        except PyMongoError as e:
            raise CodeStoreError(f"delete_for_owner failed: {e}") from e
        return r.deleted_count

    async def find_live(self, code: str, now: datetime) -> Optional[LinkCode]:
        try:
            d = await self.col.find_one({"code": code, "expires_at": {"$gt": to_db(now)}})
        except PyMongoError as e:
            raise CodeStoreError(f"find_live failed: {e}") from e
        return _to_model(d) if d else None

    async def find_live_for_owner(self, owner_account_id: str, now: datetime) -> Optional[LinkCode]:
        try:
            cur = (
                self.col.find({"owner_account_id": owner_account_id, "expires_at": {"$gt": to_db(now)}})
                .sort("created_at", DESCENDING)
                .limit(1)
            )
            docs = [d async for d in cur]
        except PyMongoError as e:
            raise CodeStoreError(f"find_live_for_owner failed: {e}") from e
        return _to_model(docs[0]) if docs else None

    async def delete(self, code: str) -> bool:
        try:
            r = await self.col.delete_one({"code": code})
        except PyMongoError as e:
            raise CodeStoreError(f"delete failed: {e}") from e
        return r.deleted_count == 1

    async def delete_expired(self, now: datetime) -> int:
        try:
            r = await self.col.delete_many({"expires_at": {"$lte": to_db(now)}})
        except PyMongoError as e:
            raise CodeStoreError(f"delete_expired failed: {e}") from e
        return r.deleted_count

    async def list_codes(self) -> List[LinkCode]:
        try:
            cur = self.col.find({}).sort("created_at", ASCENDING)
            return [_to_model(d) async for d in cur]
        except PyMongoError as e:
            raise CodeStoreError(f"list_codes failed: {e}") from e


def _to_model(doc: Dict[str, Any]) -> LinkCode:
    return LinkCode(
        code=doc["code"],
        owner_account_id=doc["owner_account_id"],
        expires_at=from_db(doc["expires_at"]),
        created_at=from_db(doc.get("created_at") or doc["expires_at"]),
    )
