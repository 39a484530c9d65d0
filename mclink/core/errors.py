# mclink/core/errors.py
from __future__ import annotations

from enum import Enum


class LinkError(str, Enum):
    invalid_input = "invalid_input"
    invalid_or_expired_code = "invalid_or_expired_code"
    owner_account_missing = "owner_account_missing"
    uuid_already_linked = "uuid_already_linked"
    already_linked = "already_linked"
    storage_degraded = "storage_degraded"
    link_persist_failed = "link_persist_failed"


# Messages surfaced to the plugin and the web client
MESSAGES = {
    LinkError.invalid_input: "Invalid username or UUID format",
    LinkError.invalid_or_expired_code: "Invalid or expired link code",
    LinkError.owner_account_missing: "Linked user not found",
    LinkError.uuid_already_linked: "This Minecraft account is already linked to another user",
    LinkError.already_linked: "Your account is already linked with a Minecraft account",
    LinkError.storage_degraded: "Stored in memory only due to database error",
    LinkError.link_persist_failed: "Failed to save user data",
}


def message_for(kind: LinkError) -> str:
    return MESSAGES[kind]


class CodeStoreError(Exception):
    """A link-code storage tier could not complete an operation."""


class DuplicateCodeError(CodeStoreError):
    """The code value is already held by another live record."""
