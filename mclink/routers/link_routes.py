# mclink/routers/link_routes.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse

from ..core.errors import LinkError, message_for
from ..core.session import current_account, require_admin
from ..models.account import Account
from ..schemas.link import (
    DebugCode,
    DebugCodesResponse,
    GenerateRequest,
    PlayerLookupRequest,
    PluginLinkRequest,
)
from ..services.linker import LinkApplier, canonical_uuid, valid_mc_username

router = APIRouter(prefix="/api/linkcode", tags=["linkcode"])
log = logging.getLogger("mclink.routes")


def _client(request: Request) -> Dict[str, Any]:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def _fail(error: LinkError, status_code: int = 200) -> ORJSONResponse:
    return ORJSONResponse(status_code=status_code, content={"success": False, "error": message_for(error)})


PLUGIN_PATHS = frozenset(
    f"{router.prefix}{p}" for p in ("/validate", "/player", "/pending")
)


async def plugin_validation_handler(request: Request, exc: RequestValidationError):
    """The plugin only reads the success flag; answer malformed bodies with 200 there too."""
    if request.url.path.rstrip("/") in PLUGIN_PATHS:
        log.info("malformed plugin request path=%s errors=%d", request.url.path, len(exc.errors()))
        return ORJSONResponse(status_code=200, content={"success": False, "error": "Invalid request"})
    return await request_validation_exception_handler(request, exc)


# -------- web session endpoints -----------------------------------------------

@router.post("/generate")
async def generate_code(
    request: Request,
    payload: Optional[GenerateRequest] = None,
    expiry_minutes: Optional[int] = Query(None, alias="expiryMinutes"),
    account: Account = Depends(current_account),
):
    linker: LinkApplier = request.app.state.linker
    res = await linker.request_code(
        account.id,
        mc_username=payload.mc_username if payload else None,
        ttl_minutes=expiry_minutes,
        client=_client(request),
    )
    if not res.ok:
        if res.error == LinkError.owner_account_missing:
            raise HTTPException(404, detail="User not found")
        return _fail(res.error, status_code=400)

    body: Dict[str, Any] = {
        "success": True,
        "code": res.issued.code,
        "expires": res.issued.expires_at.isoformat(),
    }
    if res.warning:
        body["warning"] = res.warning
    return body


@router.get("/")
async def get_active_code(request: Request, account: Account = Depends(current_account)):
    info = await request.app.state.code_manager.get_active_for(account.id)
    if not info:
        return {"success": False, "error": "No active link code found"}
    return {"success": True, "code": info.code, "expires": info.expires_at.isoformat()}


@router.delete("/")
async def unlink_account(request: Request, account: Account = Depends(current_account)):
    linker: LinkApplier = request.app.state.linker
    res = await linker.unlink(account.id, client=_client(request))
    if not res.found:
        raise HTTPException(404, detail="User not found")
    if res.already_unlinked:
        return {"message": "Account already unlinked", "alreadyUnlinked": True}
    return {"message": "Account unlinked successfully"}


@router.get("/debug/codes", response_model=DebugCodesResponse)
async def debug_codes(request: Request, admin: Account = Depends(require_admin)):
    accounts = request.app.state.account_dal
    codes = []
    for info in await request.app.state.code_manager.list_all():
        owner = await accounts.find_by_id(info.owner_account_id)
        codes.append(
            DebugCode(
                code=info.code,
                user_id=info.owner_account_id,
                username=owner.username if owner else "Unknown user",
                expires=info.expires_at,
                is_expired=info.is_expired,
                source=info.source,
            )
        )
    return DebugCodesResponse(total_codes=len(codes), codes=codes)


# -------- plugin endpoints (always 200 + success flag) ------------------------

@router.post("/validate")
async def validate_link(payload: PluginLinkRequest, request: Request, background_tasks: BackgroundTasks):
    if not payload.code:
        return _fail(LinkError.invalid_or_expired_code)

    linker: LinkApplier = request.app.state.linker
    res = await linker.apply_link(payload.code, payload.username or "", payload.uuid or "")
    if not res.ok:
        log.info("plugin link rejected error=%s", res.error.value)
        return _fail(res.error)

    rank_sync = getattr(request.app.state, "rank_sync", None)
    if rank_sync is not None and rank_sync.enabled:
        background_tasks.add_task(rank_sync.sync_player_rank, res.mc_uuid)

    return {
        "success": True,
        "message": "Account successfully linked",
        "user": {"id": res.account_id, "username": res.username},
    }


@router.post("/player")
async def lookup_player(payload: PlayerLookupRequest, request: Request):
    if not payload.username or not payload.uuid:
        return {"success": False, "error": "Username and UUID are required"}

    uuid_norm = canonical_uuid(payload.uuid)
    if not uuid_norm:
        return {"success": False, "error": "Invalid UUID format"}

    accounts = request.app.state.account_dal
    account = await accounts.find_by_uuid(uuid_norm)
    if not account:
        account = await accounts.find_by_mc_username(payload.username)

    if not account:
        return {"success": False, "message": "No linked account found", "shouldRegister": True}
    return {
        "success": True,
        "message": "User information retrieved",
        "user": {"id": account.id, "username": account.username, "linked": account.is_linked},
    }


@router.post("/pending")
async def lookup_pending(payload: PlayerLookupRequest, request: Request):
    """
    Code a player asked for on the website, looked up when they join the server.
    Only an unlinked account that named exactly this player can match.
    """
    if not payload.username or not payload.uuid:
        return {"success": False, "error": "Username and UUID are required"}
    if not valid_mc_username(payload.username):
        return {"success": False, "error": "Invalid username format"}

    uuid_norm = canonical_uuid(payload.uuid)
    if not uuid_norm:
        return {"success": False, "error": "Invalid UUID format"}

    accounts = request.app.state.account_dal
    if await accounts.find_by_uuid(uuid_norm):
        return {"success": False, "message": "Player is already linked"}

    account = await accounts.find_pending(payload.username)
    issued = await request.app.state.code_manager.get_active_for(account.id) if account else None
    if not issued:
        return {"success": False, "message": "No pending link codes found"}

    log.info("pending link code found for mc_username=%s account=%s", payload.username, account.id)
    return {
        "success": True,
        "code": issued.code,
        "expires": issued.expires_at.isoformat(),
        "message": "Pending link code found",
    }
