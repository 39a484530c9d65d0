# mclink/core/session.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from ..config import settings
from ..models.account import Account

log = logging.getLogger("mclink.auth")


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.SESSION_SIGNING_SECRET, salt="mclink-session")


def issue_session_token(account_id: str) -> str:
    return _serializer().dumps({"id": account_id})


def read_session_token(token: str) -> Optional[str]:
    try:
        data = _serializer().loads(token, max_age=settings.SESSION_TTL_SECONDS)
    except SignatureExpired:
        log.info("expired session token")
        return None
    except BadSignature:
        log.warning("bad session token signature")
        return None
    if not isinstance(data, dict):
        return None
    return data.get("id")


def _token_from_request(request: Request) -> Optional[str]:
    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


async def current_account(request: Request) -> Account:
    token = _token_from_request(request)
    if not token:
        raise HTTPException(401, detail="No token, authorization denied")
    account_id = read_session_token(token)
    if not account_id:
        raise HTTPException(401, detail="Invalid token")

    account = await request.app.state.account_dal.find_by_id(account_id)
    if not account:
        raise HTTPException(404, detail="User not found")
    return account


async def require_admin(account: Account = Depends(current_account)) -> Account:
    if account.role != "admin":
        raise HTTPException(403, detail="Unauthorized")
    return account
