"""Фоновая очистка простаивающих сессий."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from tracker_mcp.core.session import SessionRegistry

logger = logging.getLogger("tracker_mcp.core.sweeper")


class SessionSweeper:
    """Периодически вызывает `SessionRegistry.sweep_expired` независимо от трафика."""

    def __init__(self, registry: SessionRegistry, *, interval: float, max_age: float) -> None:
        self._registry = registry
        self._interval = interval
        self._max_age = max_age
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="session-sweeper")
        logger.info(
            "Session sweeper started (interval=%.1fs, max_age=%.1fs)",
            self._interval,
            self._max_age,
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Session sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self._registry.sweep_expired(self._max_age)
            except Exception:  # pragma: no cover - guardrail
                logger.exception("Session sweep failed")


__all__ = ["SessionSweeper"]
