# mclink/services/link_codes.py
from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional, Set

from ..config import settings
from ..core.clock import Clock, utcnow
from ..core.errors import CodeStoreError, DuplicateCodeError
from ..dal.code_mirror import VolatileCodeMirror
from ..dal.code_store import CodeRepository
from ..models.link_code import CodeInfo, IssuedCode, LinkCode, ValidatedCode

log = logging.getLogger("mclink.codes")

CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_GENERATE_ATTEMPTS = 5


def generate_code(length: int | None = None) -> str:
    n = length or settings.LINK_CODE_LENGTH
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(n))


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


@dataclass
class SweepResult:
    durable: int = 0
    memory: int = 0
    durable_failed: bool = False


class LinkCodeManager:
    """
    Issues, looks up and retires link codes across two tiers.

    The durable store is always tried first; the volatile mirror answers when the
    durable store has nothing or is unavailable. Writes go to both. Durable
    failures never fail the caller: generation degrades to memory-only and says so.
    """

    def __init__(
        self,
        *,
        store: CodeRepository,
        mirror: VolatileCodeMirror,
        clock: Clock = utcnow,
        code_length: int | None = None,
    ):
        self.store = store
        self.mirror = mirror
        self._clock = clock
        self._code_length = code_length or settings.LINK_CODE_LENGTH
        # owners whose older durable codes may still exist after a degraded generate
        self._unpurged: Set[str] = set()

    def now(self):
        return self._clock()

    # ----------------- generate -----------------

    async def generate(self, owner_account_id: str, ttl_minutes: int | None = None) -> IssuedCode:
        ttl = _clamp_ttl(ttl_minutes)
        now = self.now()
        expires_at = now + timedelta(minutes=ttl)

        degraded = False
        record: Optional[LinkCode] = None
        try:
            removed = await self.store.delete_for_owner(owner_account_id)
            if removed:
                log.info("replaced %d prior link code(s) owner=%s", removed, owner_account_id)
            record = await self._insert_unique(owner_account_id, now, expires_at)
            self._unpurged.discard(owner_account_id)
        except CodeStoreError as e:
            log.warning("durable link code write failed owner=%s err=%s; memory only", owner_account_id, e)
            degraded = True
            self._unpurged.add(owner_account_id)

        if record is None:
            record = LinkCode(
                code=self._fresh_code(),
                owner_account_id=owner_account_id,
                expires_at=expires_at,
                created_at=now,
            )

        await self.mirror.delete_for_owner(owner_account_id)
        await self.mirror.insert(record)

        log.info(
            "issued link code owner=%s expires_at=%s ttl_min=%s degraded=%s",
            owner_account_id,
            record.expires_at.isoformat(),
            ttl,
            degraded,
        )
        return IssuedCode(code=record.code, expires_at=record.expires_at, degraded=degraded)

    async def _insert_unique(self, owner_account_id: str, now, expires_at) -> LinkCode:
        for attempt in range(1, MAX_GENERATE_ATTEMPTS + 1):
            record = LinkCode(
                code=self._fresh_code(),
                owner_account_id=owner_account_id,
                expires_at=expires_at,
                created_at=now,
            )
            try:
                await self.store.insert(record)
                return record
            except DuplicateCodeError:
                log.debug("code collision attempt=%d", attempt)
        raise CodeStoreError(f"no unique code after {MAX_GENERATE_ATTEMPTS} attempts")

    async def _purge_stale(self, owner_account_id: str, keep: Optional[str]) -> bool:
        try:
            removed = await self.store.delete_for_owner(owner_account_id, except_code=keep)
        except CodeStoreError as e:
            log.warning("stale link code purge failed owner=%s err=%s", owner_account_id, e)
            return False
        self._unpurged.discard(owner_account_id)
        if removed:
            log.info("purged %d stale durable link code(s) owner=%s", removed, owner_account_id)
        return True

    async def _is_stale(self, rec: LinkCode, now) -> bool:
        """
        A durable hit is stale when its owner was issued a newer code while the
        store was down. The newest code then lives only in the mirror.
        """
        owner = rec.owner_account_id
        if owner not in self._unpurged:
            return False
        current = await self.mirror.find_live_for_owner(owner, now)
        keep = current.code if current else None
        await self._purge_stale(owner, keep)
        return keep != rec.code

    def _fresh_code(self) -> str:
        # skip values the mirror already holds (memory-only codes are invisible to Mongo's index)
        while True:
            code = generate_code(self._code_length)
            if code not in self.mirror:
                return code

    # ----------------- lookups -----------------

    async def get_active_for(self, owner_account_id: str) -> Optional[IssuedCode]:
        now = self.now()
        rec: Optional[LinkCode] = None
        try:
            rec = await self.store.find_live_for_owner(owner_account_id, now)
        except CodeStoreError as e:
            log.warning("durable lookup failed owner=%s err=%s; checking memory", owner_account_id, e)

        if rec is not None and await self._is_stale(rec, now):
            rec = None

        if rec is None:
            rec = await self.mirror.find_live_for_owner(owner_account_id, now)
        if rec is None:
            return None
        return IssuedCode(code=rec.code, expires_at=rec.expires_at)

    async def validate(self, code: str) -> Optional[ValidatedCode]:
        """Check a code without consuming it."""
        key = normalize_code(code)
        if not key:
            return None

        now = self.now()
        rec: Optional[LinkCode] = None
        try:
            rec = await self.store.find_live(key, now)
        except CodeStoreError as e:
            log.warning("durable validate failed code=%s err=%s; checking memory", key, e)

        if rec is not None and await self._is_stale(rec, now):
            log.info("ignoring superseded durable link code %s", key)
            rec = None

        if rec is None:
            rec = await self.mirror.find_live(key, now)
            if rec is not None:
                log.info("link code %s answered from memory", key)

        if rec is None:
            log.debug("no live link code for %s", key)
            return None
        return ValidatedCode(owner_account_id=rec.owner_account_id, expires_at=rec.expires_at)

    # ----------------- removal -----------------

    async def remove(self, code: str) -> None:
        key = normalize_code(code)
        if not key:
            return
        try:
            await self.store.delete(key)
        except CodeStoreError as e:
            log.warning("durable delete failed code=%s err=%s", key, e)
        await self.mirror.delete(key)
        log.info("removed link code %s", key)

    async def sweep(self) -> SweepResult:
        now = self.now()
        result = SweepResult()
        try:
            result.durable = await self.store.delete_expired(now)
        except CodeStoreError as e:
            log.warning("durable sweep failed err=%s", e)
            result.durable_failed = True
        result.memory = await self.mirror.delete_expired(now)

        if not result.durable_failed:
            for owner in list(self._unpurged):
                current = await self.mirror.find_live_for_owner(owner, now)
                await self._purge_stale(owner, current.code if current else None)

        if result.durable or result.memory:
            log.info(
                "swept expired link codes durable=%d memory=%d remaining_memory=%d",
                result.durable,
                result.memory,
                len(self.mirror),
            )
        return result

    # ----------------- diagnostics -----------------

    async def list_all(self) -> List[CodeInfo]:
        now = self.now()
        out: Dict[str, CodeInfo] = {}
        try:
            for rec in await self.store.list_codes():
                if rec.is_live(now):
                    out[rec.code] = _info(rec, now, "database")
        except CodeStoreError as e:
            log.warning("durable listing failed err=%s; memory only", e)

        for rec in await self.mirror.list_codes():
            if rec.code not in out:
                out[rec.code] = _info(rec, now, "memory")
        return list(out.values())


def _info(rec: LinkCode, now, source: str) -> CodeInfo:
    return CodeInfo(
        code=rec.code,
        owner_account_id=rec.owner_account_id,
        expires_at=rec.expires_at,
        is_expired=not rec.is_live(now),
        source=source,
    )


def _clamp_ttl(ttl_minutes: int | None) -> int:
    if not ttl_minutes or ttl_minutes < 1:
        return settings.LINK_CODE_TTL_MINUTES
    return min(ttl_minutes, settings.LINK_CODE_MAX_TTL_MINUTES)
