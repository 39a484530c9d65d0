# mclink/events/sink.py
from __future__ import annotations

from typing import Any, Dict, List, Protocol, Tuple

LINKED = "account.linked"
UNLINKED = "account.unlinked"


class EventSink(Protocol):
    """
    Fire-and-forget notifications for linked/unlinked accounts.
    `emit` must return immediately; callers never wait on delivery.
    """

    def emit(self, event: str, payload: Dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class InMemoryEventSink:
    """Keeps emitted events in process; used when no broker is configured."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((event, payload))

    def of(self, event: str) -> List[Dict[str, Any]]:
        return [p for e, p in self.events if e == event]

    async def close(self) -> None:
        return None
