"""
Cooperative periodic ledger refresh.

One asyncio task ticks every interval. A tick starts a refresh only when the
session is Active and the previous refresh has finished; otherwise it is
skipped, never queued.
"""
import asyncio
from typing import Optional

from delta_gateway.constants import LEDGER_REFRESH_INTERVAL
from delta_gateway.execution.position_ledger import PositionLedger
from delta_gateway.monitoring.logger import get_logger
from delta_gateway.runtime.session import SessionController

logger = get_logger(__name__)


class PositionPoller:
    def __init__(
        self,
        ledger: PositionLedger,
        session: SessionController,
        interval_seconds: float = LEDGER_REFRESH_INTERVAL,
        sleep=asyncio.sleep,
    ):
        self.ledger = ledger
        self.session = session
        self.interval_seconds = interval_seconds
        self._sleep = sleep
        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self.completed_refreshes = 0
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    async def tick(self) -> bool:
        """
        One timer tick.

        Returns:
            True if a refresh was started
        """
        if not self.session.is_active():
            return False
        if self.refresh_in_flight:
            self.skipped_ticks += 1
            logger.debug("Refresh still in flight, skipping tick", skipped_ticks=self.skipped_ticks)
            return False
        self._refresh_task = asyncio.create_task(self._refresh_once())
        return True

    async def _refresh_once(self) -> None:
        try:
            updated = await self.ledger.refresh()
            self.completed_refreshes += 1
            if updated:
                logger.debug("Ledger refresh updated positions", updated=updated)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Ledger refresh failed", error=str(e), error_type=type(e).__name__)

    async def _run(self) -> None:
        logger.info("Position poller started", interval_seconds=self.interval_seconds)
        while self._running:
            await self._sleep(self.interval_seconds)
            if not self._running:
                break
            await self.tick()

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._running = False
        for task in (self._loop_task, self._refresh_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._loop_task = None
        self._refresh_task = None
        logger.info(
            "Position poller stopped",
            completed_refreshes=self.completed_refreshes,
            skipped_ticks=self.skipped_ticks,
        )
