# mclink/db/mongodb.py
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from ..config import settings

_client: AsyncIOMotorClient | None = None
_db: AsyncIOMotorDatabase | None = None


def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        # Motor/pymongo handles mongodb+srv Atlas URIs and TLS automatically
        _client = AsyncIOMotorClient(settings.MONGO_URI)
        _db = _client[settings.MONGO_DB]
    return _db


def close_db() -> None:
    global _client, _db
    if _client:
        _client.close()
        _client = None
        _db = None
