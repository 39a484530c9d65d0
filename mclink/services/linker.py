# mclink/services/linker.py
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

from ..core.clock import utcnow
from ..core.errors import LinkError, message_for
from ..dal.account_dal import AccountDAL
from ..dal.security_log_dal import LINK_CODE_ISSUED, LINKED, UNLINKED, SecurityLogDAL
from ..events.sink import LINKED as EV_LINKED
from ..events.sink import UNLINKED as EV_UNLINKED
from ..events.sink import EventSink
from ..models.link_code import IssuedCode
from .link_codes import LinkCodeManager

log = logging.getLogger("mclink.link")

MC_USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{3,16}$")
MC_UUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}$"
)


def valid_mc_username(name: Optional[str]) -> bool:
    return bool(name) and MC_USERNAME_RE.match(name) is not None


def canonical_uuid(raw: Optional[str]) -> Optional[str]:
    """Lowercase hyphenated form, or None when the input is not a UUID."""
    if not raw or not MC_UUID_RE.match(raw):
        return None
    return str(uuid.UUID(raw))


@dataclass
class LinkResult:
    ok: bool
    error: Optional[LinkError] = None
    account_id: Optional[str] = None
    username: Optional[str] = None
    mc_uuid: Optional[str] = None

    @property
    def message(self) -> Optional[str]:
        return message_for(self.error) if self.error else None

    @classmethod
    def fail(cls, error: LinkError) -> "LinkResult":
        return cls(ok=False, error=error)


@dataclass
class CodeRequest:
    ok: bool
    error: Optional[LinkError] = None
    issued: Optional[IssuedCode] = None

    @property
    def warning(self) -> Optional[str]:
        if self.issued and self.issued.degraded:
            return message_for(LinkError.storage_degraded)
        return None


@dataclass
class UnlinkResult:
    found: bool
    already_unlinked: bool = False
    previous_mc_username: Optional[str] = None
    previous_mc_uuid: Optional[str] = None


class LinkApplier:
    """
    Ties a web account to a Minecraft identity using a validated link code.

    A code is only consumed after the account update has been persisted, so a
    rejected or failed link leaves the code usable.
    """

    def __init__(
        self,
        *,
        codes: LinkCodeManager,
        accounts: AccountDAL,
        events: EventSink,
        audit: SecurityLogDAL,
    ):
        self.codes = codes
        self.accounts = accounts
        self.events = events
        self.audit = audit

    async def request_code(
        self,
        account_id: str,
        *,
        mc_username: Optional[str] = None,
        ttl_minutes: Optional[int] = None,
        client: Optional[Dict[str, Any]] = None,
    ) -> CodeRequest:
        if mc_username is not None and not valid_mc_username(mc_username):
            return CodeRequest(ok=False, error=LinkError.invalid_input)

        account = await self.accounts.find_by_id(account_id)
        if not account:
            return CodeRequest(ok=False, error=LinkError.owner_account_missing)
        if account.is_linked:
            return CodeRequest(ok=False, error=LinkError.already_linked)

        if mc_username:
            await self.accounts.set_pending_username(account_id, mc_username)

        issued = await self.codes.generate(account_id, ttl_minutes)
        await self.audit.record(
            account_id=account_id,
            action=LINK_CODE_ISSUED,
            details={"mc_username": mc_username, "degraded": issued.degraded},
            **(client or {}),
        )
        return CodeRequest(ok=True, issued=issued)

    async def apply_link(self, code: str, mc_username: str, mc_uuid: str) -> LinkResult:
        if not valid_mc_username(mc_username):
            log.warning("rejecting link: bad username %r", mc_username)
            return LinkResult.fail(LinkError.invalid_input)
        uuid_norm = canonical_uuid(mc_uuid)
        if not uuid_norm:
            log.warning("rejecting link: bad uuid %r", mc_uuid)
            return LinkResult.fail(LinkError.invalid_input)
        if not (code or "").strip():
            return LinkResult.fail(LinkError.invalid_or_expired_code)

        validated = await self.codes.validate(code)
        if not validated:
            return LinkResult.fail(LinkError.invalid_or_expired_code)

        owner_id = validated.owner_account_id
        owner = await self.accounts.find_by_id(owner_id)
        if not owner:
            log.error("link code %s points at missing account %s", code.upper(), owner_id)
            return LinkResult.fail(LinkError.owner_account_missing)

        holder = await self.accounts.find_by_uuid(uuid_norm)
        if holder and holder.id != owner.id:
            log.warning(
                "uuid %s already linked to %s; rejecting request for %s",
                uuid_norm,
                holder.username,
                owner.username,
            )
            return LinkResult.fail(LinkError.uuid_already_linked)

        try:
            matched = await self.accounts.set_link(owner.id, mc_username=mc_username, mc_uuid=uuid_norm)
        except DuplicateKeyError:
            log.warning("uuid %s claimed concurrently; keeping code for %s", uuid_norm, owner.username)
            return LinkResult.fail(LinkError.uuid_already_linked)
        except PyMongoError:
            log.exception("account update failed while linking account=%s uuid=%s; code kept", owner.id, uuid_norm)
            return LinkResult.fail(LinkError.link_persist_failed)

        if not matched:
            log.error("account %s vanished during link; code kept", owner.id)
            return LinkResult.fail(LinkError.owner_account_missing)

        await self.codes.remove(code)

        await self.audit.record(
            account_id=owner.id,
            action=LINKED,
            details={"mc_username": mc_username, "mc_uuid": uuid_norm, "success": True},
        )
        self.events.emit(
            EV_LINKED,
            {
                "account_id": owner.id,
                "mc_username": mc_username,
                "mc_uuid": uuid_norm,
                "timestamp": utcnow().isoformat(),
            },
        )
        log.info("linked account=%s mc_username=%s", owner.username, mc_username)
        return LinkResult(ok=True, account_id=owner.id, username=owner.username, mc_uuid=uuid_norm)

    async def unlink(self, account_id: str, *, client: Optional[Dict[str, Any]] = None) -> UnlinkResult:
        account = await self.accounts.find_by_id(account_id)
        if not account:
            return UnlinkResult(found=False)

        if not account.linked and not account.mc_uuid:
            return UnlinkResult(found=True, already_unlinked=True)

        await self.accounts.clear_link(account.id)

        await self.audit.record(
            account_id=account.id,
            action=UNLINKED,
            details={"mc_username": account.mc_username, "mc_uuid": account.mc_uuid},
            **(client or {}),
        )
        self.events.emit(
            EV_UNLINKED,
            {
                "account_id": account.id,
                "previous_mc_username": account.mc_username,
                "previous_mc_uuid": account.mc_uuid,
                "timestamp": utcnow().isoformat(),
            },
        )
        log.info("unlinked account=%s mc_username=%s", account.username, account.mc_username)
        return UnlinkResult(
            found=True,
            previous_mc_username=account.mc_username,
            previous_mc_uuid=account.mc_uuid,
        )
