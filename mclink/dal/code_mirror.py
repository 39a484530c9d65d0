# mclink/dal/code_mirror.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from ..models.link_code import LinkCode

log = logging.getLogger("mclink.codes.mirror")


class VolatileCodeMirror:
    """
    Process-local copy of the link-code store, used when MongoDB is unavailable.

    Created once at process start and owned by the lifecycle manager. Entries are
    never persisted; expired ones are evicted by the sweep or when a lookup
    stumbles over them. Not shared across server instances, so the durable store
    remains the source of truth in multi-instance deployments.
    """
    def __init__(self) -> None:
        self._codes: Dict[str, LinkCode] = {}

    def __len__(self) -> int:
        return len(self._codes)

    def __contains__(self, code: str) -> bool:
        return code in self._codes

    async def insert(self, record: LinkCode) -> None:
        self._codes[record.code] = record

    async def delete_for_owner(self, owner_account_id: str, *, except_code: Optional[str] = None) -> int:
        stale = [
            c
            for c, rec in self._codes.items()
            if rec.owner_account_id == owner_account_id and c != except_code
        ]
        for c in stale:
            self._codes.pop(c, None)
        return len(stale)

    async def find_live(self, code: str, now: datetime) -> Optional[LinkCode]:
        rec = self._codes.get(code)
        if not rec:
            return None
        if not rec.is_live(now):
            log.debug("evicting expired mirror code=%s", code)
            self._codes.pop(code, None)
            return None
        return rec

    async def find_live_for_owner(self, owner_account_id: str, now: datetime) -> Optional[LinkCode]:
        best: Optional[LinkCode] = None
        for c, rec in list(self._codes.items()):
            if rec.owner_account_id != owner_account_id:
                continue
            if not rec.is_live(now):
                self._codes.pop(c, None)
                continue
            if best is None or rec.created_at > best.created_at:
                best = rec
        return best

    async def delete(self, code: str) -> bool:
        return self._codes.pop(code, None) is not None

    async def delete_expired(self, now: datetime) -> int:
        expired = [c for c, rec in self._codes.items() if not rec.is_live(now)]
        for c in expired:
            self._codes.pop(c, None)
        return len(expired)

    async def list_codes(self) -> List[LinkCode]:
        return list(self._codes.values())
