"""
Advertisement sources for device discovery

A source pushes resolved advertisements into an asyncio queue owned by a
single discovery run. The run is the only closer of the stream: once
closed, further offers are discarded, and a second close is a no-op.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Set

from zeroconf import IPVersion, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from errors import DiscoveryInitError
from .models import Advertisement, display_name

logger = logging.getLogger(__name__)

class AdvertisementSource(ABC):
    """Base class for anything that produces advertisements for one run"""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._finished = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def start(self, service_type: str) -> None:
        """Begin browsing. Raises DiscoveryInitError if the resolver is unavailable."""

    async def _teardown(self) -> None:
        """Release resolver resources. Called at most once."""

    def offer(self, advertisement: Advertisement) -> bool:
        """Hand an advertisement to the run unless the stream is already closed"""
        if self._closed or self._finished:
            logger.debug(f"Dropping advertisement after close: {advertisement.name}")
            return False
        self.queue.put_nowait(advertisement)
        return True

    def finish(self) -> None:
        """Signal that the resolver has no more advertisements"""
        if self._closed or self._finished:
            return
        self._finished = True
        self.queue.put_nowait(None)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._teardown()

class MdnsAdvertisementSource(AdvertisementSource):
    """Browses DNS-SD services over mDNS with zeroconf (IPv4 only)"""

    def __init__(self, resolve_timeout: float = 2.0):
        super().__init__()
        self.resolve_timeout = resolve_timeout
        self._aiozc: Optional[AsyncZeroconf] = None
        self._browser: Optional[AsyncServiceBrowser] = None
        self._resolving: Set[asyncio.Task] = set()

    async def start(self, service_type: str) -> None:
        try:
            self._aiozc = AsyncZeroconf(ip_version=IPVersion.V4Only)
            self._browser = AsyncServiceBrowser(
                self._aiozc.zeroconf,
                [service_type],
                handlers=[self._on_service_state_change],
            )
        except Exception as e:
            logger.error(f"[DISCOVERY] Failed to initialize mDNS resolver: {e}")
            if self._aiozc is not None:
                await self._aiozc.async_close()
                self._aiozc = None
            raise DiscoveryInitError(f"mDNS resolver unavailable: {e}") from e
        logger.debug(f"[DISCOVERY] Browsing for {service_type}")

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        if state_change not in (ServiceStateChange.Added, ServiceStateChange.Updated):
            return
        if self._closed:
            return
        logger.debug(f"mDNS: {state_change.name} {name}")
        task = asyncio.ensure_future(self._resolve(service_type, name))
        self._resolving.add(task)
        task.add_done_callback(self._resolving.discard)

    async def _resolve(self, service_type: str, name: str) -> None:
        info = AsyncServiceInfo(service_type, name)
        try:
            # zeroconf takes the request timeout in milliseconds
            found = await info.async_request(self._aiozc.zeroconf, timeout=self.resolve_timeout * 1000)
        except Exception as e:
            logger.warning(f"Failed to resolve service {name}: {e}")
            return
        if not found or info.port is None:
            logger.debug(f"Service {name} did not resolve")
            return

        addresses = info.parsed_addresses(IPVersion.V4Only)
        if not addresses:
            logger.warning(f"No IPv4 addresses for service {name}")
            return

        self.offer(Advertisement(
            name=display_name(name, service_type),
            port=info.port,
            addresses=addresses,
        ))

    async def _teardown(self) -> None:
        for task in list(self._resolving):
            task.cancel()
        if self._resolving:
            await asyncio.gather(*self._resolving, return_exceptions=True)

        if self._browser is not None:
            await self._browser.async_cancel()
            self._browser = None
        if self._aiozc is not None:
            await self._aiozc.async_close()
            self._aiozc = None
        logger.debug("[DISCOVERY] mDNS resolver closed")
