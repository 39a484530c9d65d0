# mclink/services/rank_sync.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..dal.account_dal import AccountDAL
from ..dal.security_log_dal import RANK_CHANGE, SecurityLogDAL
from ..models.account import Account

log = logging.getLogger("mclink.ranks")

# LuckPerms group -> web rank
RANK_MAPPING: Dict[str, str] = {
    "owner": "owner",
    "admin": "admin",
    "moderator": "moderator",
    "helper": "helper",
    "developer": "developer",
    "builder": "content_creator",
    "donor": "donor",
    "tiktok": "tiktok_sub",
    "default": "user",
}

# Lowest first
RANK_PRIORITY: List[str] = [
    "default",
    "tiktok",
    "donor",
    "builder",
    "helper",
    "moderator",
    "admin",
    "developer",
    "owner",
]

OP_PERMISSION = "minecraft.command.op"


def group_name(group: Dict[str, Any]) -> str:
    return str(group.get("group") or group.get("name") or "default")


def highest_group(groups: List[Dict[str, Any]]) -> str:
    best, best_prio = "default", -1
    for g in groups:
        name = group_name(g)
        prio = RANK_PRIORITY.index(name) if name in RANK_PRIORITY else -1
        if prio > best_prio:
            best, best_prio = name, prio
    return best


def is_operator(groups: List[Dict[str, Any]]) -> bool:
    return any(OP_PERMISSION in (g.get("permissions") or []) for g in groups)


def web_rank_for(groups: List[Dict[str, Any]]) -> str:
    if is_operator(groups):
        return "admin"
    return RANK_MAPPING.get(highest_group(groups), "user")


class RankSync:
    """
    Mirrors a linked player's LuckPerms groups onto their web account.

    Disabled when no LuckPerms API URL is configured. Failures are logged and
    reported as None; rank sync never blocks or fails a link.
    """

    def __init__(
        self,
        *,
        accounts: AccountDAL,
        audit: SecurityLogDAL,
        api_url: Optional[str],
        timeout_seconds: float = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.accounts = accounts
        self.audit = audit
        self.api_url = api_url.rstrip("/") if api_url else None
        self.timeout = timeout_seconds
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_url)

    async def fetch_groups(self, mc_uuid: str) -> Optional[List[Dict[str, Any]]]:
        if not self.api_url:
            return None
        url = f"{self.api_url}/player/{mc_uuid}/groups"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.get(url)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("luckperms fetch failed uuid=%s err=%s", mc_uuid, e)
            return None

        if not isinstance(data, list):
            log.warning("luckperms returned unexpected payload uuid=%s type=%s", mc_uuid, type(data).__name__)
            return None
        return [g for g in data if isinstance(g, dict)]

    async def sync_player_rank(self, mc_uuid: str) -> Optional[Account]:
        if not self.enabled:
            log.debug("rank sync disabled; skipping uuid=%s", mc_uuid)
            return None

        groups = await self.fetch_groups(mc_uuid)
        if not groups:
            log.warning("no LuckPerms groups for uuid=%s", mc_uuid)
            return None

        account = await self.accounts.find_by_uuid(mc_uuid)
        if not account:
            log.warning("no account linked to uuid=%s", mc_uuid)
            return None

        op = is_operator(groups)
        new_rank = web_rank_for(groups)
        ranks = [
            {
                "server": g.get("server") or "global",
                "rank": group_name(g),
                "prefix": g.get("prefix"),
                "suffix": g.get("suffix"),
                "is_operator": op,
                "permissions": list(g.get("permissions") or []),
            }
            for g in groups
        ]

        updated = await self.accounts.update_ranks(account.id, web_rank=new_rank, minecraft_ranks=ranks)
        if updated and account.web_rank != new_rank:
            log.info("rank changed account=%s %s -> %s", account.username, account.web_rank, new_rank)
            await self.audit.record(
                account_id=account.id,
                action=RANK_CHANGE,
                details={
                    "previous_rank": account.web_rank,
                    "new_rank": new_rank,
                    "source": "luckperms_sync",
                    "is_operator": op,
                },
            )
        return updated
