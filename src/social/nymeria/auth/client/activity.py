import asyncio
import contextlib
import logging
from typing import NoReturn, Optional

from social.nymeria.auth.client.orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)


class ActivityTicker:
    """
    Periodically report activity for the orchestrator's current session.

    The tick is a no-op while the orchestrator is not authenticated. A failed tick is
    logged and the loop carries on.
    """

    def __init__(
        self, orchestrator: SessionOrchestrator, interval: Optional[float] = None
    ) -> None:
        self.orchestrator = orchestrator
        self.interval = (
            interval
            if interval is not None
            else orchestrator.settings.activity_interval
        )
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> NoReturn:
        logger.info("Starting activity ticker")
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.orchestrator.touch()
            except Exception:
                logger.exception("Activity tick failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.exceptions.CancelledError):
            await self._task
        self._task = None
