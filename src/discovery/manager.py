"""
Main discovery manager: time-bounded mDNS browse with incremental delivery
"""

import asyncio
import logging
import time
from contextlib import aclosing
from typing import AsyncIterator, Callable, Dict, List, Optional

from errors import DiscoveryInitError
from .models import Endpoint, DiscoveryResult, DiscoveryState
from .mdns_source import AdvertisementSource, MdnsAdvertisementSource

logger = logging.getLogger(__name__)

SourceFactory = Callable[[], AdvertisementSource]

class DiscoveryRun:
    """
    One browse call. Iterate ``stream()`` (or the run itself) with ``async for``
    to receive endpoints in advertisement arrival order; afterwards ``state``
    tells how it ended and ``done`` is set. A consumer that stops early leaves
    the run ABORTED.

    The deadline is absolute and fixed when browsing starts. Resolver
    teardown after the deadline is bounded by ``close_grace`` seconds.
    """

    def __init__(self, source_factory: SourceFactory, service_type: str,
                 timeout: float, close_grace: float = 1.0):
        self._source_factory = source_factory
        self.service_type = service_type
        self.timeout = timeout
        self.close_grace = close_grace

        self.state = DiscoveryState.IDLE
        self.error: Optional[DiscoveryInitError] = None
        self.endpoints: List[Endpoint] = []
        self.done = asyncio.Event()
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None

    def __aiter__(self) -> AsyncIterator[Endpoint]:
        return self._iterate()

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    async def _iterate(self) -> AsyncIterator[Endpoint]:
        if self.state != DiscoveryState.IDLE:
            raise RuntimeError("A discovery run can only be iterated once")

        loop = asyncio.get_running_loop()
        self.started_at = time.monotonic()
        source = self._source_factory()

        try:
            await source.start(self.service_type)
        except DiscoveryInitError as e:
            self.error = e
            logger.error(f"[DISCOVERY] Init failed: {e}")
            await self._shutdown(source)
            self._finish(DiscoveryState.INIT_FAILED)
            return

        deadline = loop.time() + self.timeout
        self.state = DiscoveryState.BROWSING
        final_state = DiscoveryState.ABORTED
        logger.info(f"[DISCOVERY] Browsing {self.service_type} for {self.timeout:.1f}s")

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    final_state = DiscoveryState.TIMED_OUT
                    break
                try:
                    advertisement = await asyncio.wait_for(source.queue.get(), remaining)
                except asyncio.TimeoutError:
                    final_state = DiscoveryState.TIMED_OUT
                    break

                if advertisement is None:
                    # Resolver closed the stream before the deadline
                    final_state = DiscoveryState.COMPLETED
                    break

                for address in advertisement.addresses:
                    endpoint = Endpoint(name=advertisement.name, host=address, port=advertisement.port)
                    self.endpoints.append(endpoint)
                    yield endpoint
        finally:
            if final_state is DiscoveryState.ABORTED:
                logger.warning(f"[DISCOVERY] Run aborted by its consumer after {len(self.endpoints)} endpoints")
            await self._shutdown(source)
            self._finish(final_state)

    async def _shutdown(self, source: AdvertisementSource) -> None:
        try:
            await asyncio.wait_for(source.close(), self.close_grace)
        except asyncio.TimeoutError:
            logger.warning(f"[DISCOVERY] Resolver teardown exceeded {self.close_grace:.1f}s grace, abandoning")
        except Exception as e:
            logger.warning(f"[DISCOVERY] Resolver teardown failed: {e}")

    def _finish(self, state: DiscoveryState) -> None:
        self.state = state
        self.finished_at = time.monotonic()
        self.done.set()
        logger.info(
            f"[DISCOVERY] Run {state.value}: {len(self.endpoints)} endpoints in {self.duration_seconds:.1f}s"
        )

    def stream(self) -> aclosing:
        """
        Endpoint iterator as an async context manager. Leaving the block closes
        the resolver right away, even when the consumer breaks out or raises.
        """
        return aclosing(self.__aiter__())

    async def collect(self) -> DiscoveryResult:
        """Drain the run and return everything it produced"""
        async with self.stream() as endpoints:
            async for _ in endpoints:
                pass
        return self.result()

    def result(self) -> DiscoveryResult:
        return DiscoveryResult(
            endpoints=list(self.endpoints),
            state=self.state,
            duration_seconds=self.duration_seconds,
            error=str(self.error) if self.error else None,
        )

class DeviceDiscovery:
    """Discovery service for devices advertising over mDNS"""

    def __init__(self, config: Dict, source_factory: Optional[SourceFactory] = None):
        self.config = config
        self.service_type = config.get('service_type', '_http._tcp.local.')
        self.discovery_timeout = config.get('timeout_seconds', 5)
        self.close_grace = config.get('close_grace_seconds', 1.0)
        resolve_timeout = config.get('resolve_timeout_seconds', 2.0)
        self._source_factory = source_factory or (lambda: MdnsAdvertisementSource(resolve_timeout))

    def browse(self, timeout: Optional[float] = None) -> DiscoveryRun:
        """Create a discovery run. Nothing happens until it is iterated."""
        return DiscoveryRun(
            self._source_factory,
            self.service_type,
            timeout if timeout is not None else self.discovery_timeout,
            self.close_grace,
        )

    async def discover(self, timeout: Optional[float] = None) -> DiscoveryResult:
        """Run one browse to completion"""
        return await self.browse(timeout).collect()
