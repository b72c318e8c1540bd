from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger("zakerbot.autosave")


class AutoSaver:
    """Fixed-interval flush of session state, alongside the save-on-change writes."""

    def __init__(self, flush: Callable[[], None], interval_seconds: float = 60.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._flush = flush
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the flush loop on the running event loop; no-op if already running."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Cancel the loop and run one last flush."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.flush_once()

    def flush_once(self) -> None:
        """Purpose: Run the flush callback once, never raising.
        Inputs/Outputs: No inputs; no return value.
        Side Effects / State: Writes session state through the callback.
        Dependencies: Uses the injected flush callable.
        Failure Modes: Exceptions are logged so the loop keeps its schedule.
        If Removed: A single storage error would stop all periodic saves.
        Testing Notes: A raising callback is logged and the next tick still runs.
        """
        # Storage problems degrade to a log line.
        try:
            self._flush()
        except Exception:
            logger.error("autosave status=failed", exc_info=True)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.flush_once()
