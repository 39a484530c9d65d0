# mclink/services/sweeper.py
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .link_codes import LinkCodeManager

log = logging.getLogger("mclink.sweep")


class LinkCodeSweeper:
    """Evicts expired link codes from both tiers on a fixed interval."""

    def __init__(self, manager: LinkCodeManager, interval_seconds: float):
        self.manager = manager
        self.interval = interval_seconds
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="link-code-sweeper")
        log.info("link code sweeper started interval=%ss", self.interval)

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        log.info("link code sweeper stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                await self.manager.sweep()
            except Exception:
                log.exception("link code sweep failed")
