"""
In-memory device registry

Ordered by first sighting, keyed by endpoint name, with a selection cursor.
Every read and write goes through one lock so discovery, the poller and API
handlers can share a single instance.
"""

import logging
import threading
import dataclasses
from typing import Dict, Iterable, List, Optional

from discovery.models import Endpoint

logger = logging.getLogger(__name__)

class DeviceRegistry:
    """Deduplicated, ordered collection of discovered endpoints"""

    def __init__(self):
        self._lock = threading.RLock()
        self._entries: Dict[str, Endpoint] = {}  # dicts keep insertion order
        self._selected_index = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._entries

    @property
    def selected_index(self) -> int:
        with self._lock:
            return self._selected_index

    def _clamp_selection(self) -> None:
        size = len(self._entries)
        if size == 0:
            self._selected_index = 0
        elif self._selected_index >= size:
            self._selected_index = size - 1
        elif self._selected_index < 0:
            self._selected_index = 0

    def merge(self, endpoint: Endpoint) -> bool:
        """
        Insert or update by name. An existing entry keeps its position and
        takes the new host, port and state. Returns True if it was new.
        """
        with self._lock:
            existing = self._entries.get(endpoint.name)
            if existing is not None:
                existing.host = endpoint.host
                existing.port = endpoint.port
                existing.is_on = endpoint.is_on
                return False
            self._entries[endpoint.name] = dataclasses.replace(endpoint)
            self._clamp_selection()
            logger.debug(f"Registry: added {endpoint.name} ({endpoint.host}:{endpoint.port})")
            return True

    def replace(self, endpoints: Iterable[Endpoint]) -> None:
        """Swap in a new snapshot. Duplicate names collapse by the merge rule."""
        fresh: Dict[str, Endpoint] = {}
        for endpoint in endpoints:
            existing = fresh.get(endpoint.name)
            if existing is not None:
                existing.host = endpoint.host
                existing.port = endpoint.port
                existing.is_on = endpoint.is_on
            else:
                fresh[endpoint.name] = dataclasses.replace(endpoint)

        with self._lock:
            dropped = [name for name in self._entries if name not in fresh]
            self._entries = fresh
            self._clamp_selection()
        if dropped:
            logger.info(f"Registry: dropped {len(dropped)} vanished devices: {', '.join(dropped)}")

    def all(self) -> List[Endpoint]:
        """Snapshot copy in first-seen order"""
        with self._lock:
            return [dataclasses.replace(endpoint) for endpoint in self._entries.values()]

    def get(self, name: str) -> Optional[Endpoint]:
        with self._lock:
            endpoint = self._entries.get(name)
            return dataclasses.replace(endpoint) if endpoint is not None else None

    def selected(self) -> Optional[Endpoint]:
        with self._lock:
            if not self._entries:
                return None
            endpoint = list(self._entries.values())[self._selected_index]
            return dataclasses.replace(endpoint)

    def advance_selection(self) -> Optional[Endpoint]:
        """Move the cursor to the next device, wrapping around. No-op when empty."""
        with self._lock:
            if not self._entries:
                return None
            self._selected_index = (self._selected_index + 1) % len(self._entries)
            return self.selected()

    def set_state(self, name: str, is_on: bool) -> bool:
        """Update the cached state of one device. False if it is not registered."""
        with self._lock:
            endpoint = self._entries.get(name)
            if endpoint is None:
                return False
            endpoint.is_on = is_on
            return True
