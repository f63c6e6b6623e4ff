"""
Periodic discovery poller
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

class DiscoveryPoller:
    """
    Fires a discovery cycle every ``interval`` seconds.

    A tick that arrives while the previous cycle is still running is dropped,
    not queued: discovery is idempotent and the next tick comes soon enough.
    """

    def __init__(self, interval: float, run_cycle: Callable[[], Awaitable[object]]):
        self.interval = interval
        self._run_cycle = run_cycle
        self._inflight: Optional[asyncio.Task] = None
        self.running = False
        self.stats = {
            'ticks': 0,
            'cycles_started': 0,
            'ticks_dropped': 0,
            'cycle_errors': 0
        }

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def tick(self) -> bool:
        """Start a cycle unless one is in flight. Returns True if started."""
        self.stats['ticks'] += 1
        if self.busy:
            self.stats['ticks_dropped'] += 1
            logger.info("[POLL] Previous discovery still running, dropping tick")
            return False

        self.stats['cycles_started'] += 1
        self._inflight = asyncio.create_task(self._guarded_cycle())
        return True

    async def _guarded_cycle(self):
        try:
            return await self._run_cycle()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats['cycle_errors'] += 1
            logger.error(f"[POLL] Discovery cycle error: {e}")
            return None

    async def run(self):
        """Background service loop"""
        self.running = True
        logger.info(f"[POLL] Discovery poller started (every {self.interval}s)")

        while self.running:
            await asyncio.sleep(self.interval)
            if not self.running:
                break
            self.tick()

    async def stop(self):
        self.running = False
        if self.busy:
            self._inflight.cancel()
            await asyncio.gather(self._inflight, return_exceptions=True)
        logger.info(
            f"[POLL] Poller stopped: {self.stats['cycles_started']} cycles, "
            f"{self.stats['ticks_dropped']} dropped ticks"
        )
