"""
Device Sync Server - Main orchestrator for all services
"""

import asyncio
import dataclasses
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Deque, Dict, List, Optional

import uvicorn

from config_loader import load_config, setup_logging
from discovery import DeviceDiscovery, DiscoveryState, Endpoint, EndpointFilter
from onem2m import OneM2MClient, RegistrationOutcome
from registry import DeviceRegistry
from services.poller import DiscoveryPoller

logger = logging.getLogger(__name__)

class StartupStatus(Enum):
    """Outcome of bootstrap registration"""
    PENDING = "pending"
    READY = "ready"
    DEGRADED = "degraded"
    FAILED = "failed"

@dataclass
class StartupResult:
    status: StartupStatus
    reason: Optional[str] = None
    entity: Optional[RegistrationOutcome] = None
    container: Optional[RegistrationOutcome] = None

class SyncMode(Enum):
    """How a discovery cycle writes into the registry"""
    MERGE = "merge"      # Incremental, entries appear as they are found
    REPLACE = "replace"  # Fresh snapshot swapped in at the end, vanished devices drop

@dataclass
class CycleReport:
    """Summary of one discovery cycle"""
    mode: SyncMode
    state: DiscoveryState = DiscoveryState.IDLE
    found: int = 0
    accepted: int = 0
    rejected: int = 0
    state_reads_failed: int = 0
    duration_seconds: float = 0.0
    error: Optional[str] = None

ProgressCallback = Callable[[str], None]

class DeviceSyncServer:
    """
    Main server: bootstrap registration on the CSE, discovery cycles into the
    registry, periodic re-scan and device toggling.

    Only one discovery cycle runs at a time; a second request while one is in
    flight is dropped. Toggles are serialized per device inside this process.
    Writers in other processes are not coordinated with: the last write wins.
    """

    def __init__(self, config_path: str = "config/config.yaml", config: Optional[Dict] = None,
                 client: Optional[OneM2MClient] = None, discovery: Optional[DeviceDiscovery] = None,
                 registry: Optional[DeviceRegistry] = None):
        if config is None:
            config = load_config(config_path)
            setup_logging(config)
        self.config = config

        discovery_config = self.config['discovery']
        self.registry = registry or DeviceRegistry()
        self.client = client or OneM2MClient(self.config['cse'])
        self.discovery = discovery or DeviceDiscovery(discovery_config)
        self.endpoint_filter = EndpointFilter(
            name_marker=discovery_config.get('name_marker'),
            well_known_port=discovery_config.get('well_known_port'),
        )
        self.read_state_on_discovery = discovery_config.get('read_state_on_discovery', True)

        # Periodic re-scan replaces the snapshot so devices that went away drop out
        self.poller = DiscoveryPoller(
            discovery_config.get('poll_interval_seconds', 15),
            lambda: self.run_discovery_cycle(SyncMode.REPLACE),
        )

        self.startup_result = StartupResult(StartupStatus.PENDING)
        self.last_cycle: Optional[CycleReport] = None

        self._cycle_lock = asyncio.Lock()
        self._toggle_locks: Dict[str, asyncio.Lock] = {}
        self._toggle_seq = 0
        self._toggled_at: Dict[str, int] = {}  # Device name -> sequence number of its last successful toggle
        self._background_cycles: List[asyncio.Task] = []

        self.progress_callbacks: List[ProgressCallback] = []
        self.progress_log: Deque[str] = deque(maxlen=self.config.get('logging', {}).get('progress_history', 200))

        self.running = False
        self.tasks: List[asyncio.Task] = []
        self._api_server: Optional[uvicorn.Server] = None
        self._stopping = False
        self._stopped = asyncio.Event()

        self.stats = {
            'cycles_completed': 0,
            'cycles_dropped': 0,
            'toggles': 0,
            'toggle_failures': 0
        }

    # ================== PROGRESS NOTIFICATION ==================

    def add_progress_callback(self, callback: ProgressCallback):
        """Add an observer for human-readable progress messages"""
        self.progress_callbacks.append(callback)

    def _notify(self, message: str):
        stamped = f"{datetime.now(timezone.utc).strftime('%H:%M:%S')} {message}"
        self.progress_log.append(stamped)
        logger.info(message)
        for callback in list(self.progress_callbacks):
            try:
                callback(message)
            except Exception as e:
                logger.warning(f"Progress callback {callback!r} failed: {e}")

    # ================== LIFECYCLE ==================

    async def start(self):
        """Bootstrap, populate the registry, then run the poller and API"""
        logger.info("Starting oneM2M Device Sync Server...")

        try:
            await self.bootstrap()
            self.running = True

            await self.trigger_discovery()

            if self.config['discovery'].get('poller_enabled', True):
                self.tasks.append(asyncio.create_task(self.poller.run()))

            logger.info(f"All services started successfully ({len(self.tasks)} background tasks)")

            if self.config['api'].get('enabled', True):
                await self._start_api_server()
            else:
                await self._stopped.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}")
            await self.stop()
            raise

    async def stop(self):
        """Stop all server services gracefully"""
        if self._stopping:
            # Another caller is already shutting down: wait for it
            await self._stopped.wait()
            return
        self._stopping = True
        logger.info("Stopping server...")
        self.running = False

        if self._api_server is not None:
            self._api_server.should_exit = True

        await self.poller.stop()

        for task in self.tasks + self._background_cycles:
            task.cancel()
        if self.tasks or self._background_cycles:
            await asyncio.gather(*self.tasks, *self._background_cycles, return_exceptions=True)

        await self.client.close()
        self._stopped.set()

        logger.info(
            f"Server stopped: {self.stats['cycles_completed']} discovery cycles, "
            f"{self.stats['toggles']} toggles ({self.stats['toggle_failures']} failed)"
        )

    async def _start_api_server(self):
        """Start the FastAPI server"""
        from api.main_api import DeviceAPI

        api = DeviceAPI(self)
        config = uvicorn.Config(
            api.app,
            host=self.config['api']['host'],
            port=self.config['api']['port'],
            log_level="info",
            access_log=False  # We handle our own logging
        )
        self._api_server = uvicorn.Server(config)

        logger.info(f"Starting API server on {self.config['api']['host']}:{self.config['api']['port']}")
        await self._api_server.serve()

    # ================== BOOTSTRAP REGISTRATION ==================

    async def bootstrap(self) -> StartupResult:
        """
        Idempotent registration of our entity and container on the CSE.
        Safe on every start: an existing entity is detected up front and a
        409 from either POST counts as success.
        """
        self._notify(f"Registering {self.client.entity_name} on {self.client.cse_url}...")

        if await self.client.entity_exists():
            entity = RegistrationOutcome.ALREADY_EXISTS
            self._notify(f"Entity {self.client.entity_name} already registered")
        else:
            entity = await self.client.register_entity()

        if not entity.usable:
            result = StartupResult(
                StartupStatus.FAILED,
                reason=f"Entity registration failed on {self.client.cse_url}",
                entity=entity,
            )
        else:
            container = await self.client.register_container()
            if not container.ok:
                result = StartupResult(StartupStatus.DEGRADED, reason="Container registration failed",
                                       entity=entity, container=container)
            elif entity is RegistrationOutcome.FORBIDDEN:
                result = StartupResult(StartupStatus.DEGRADED, reason="CSE refused entity registration (403)",
                                       entity=entity, container=container)
            else:
                result = StartupResult(StartupStatus.READY, entity=entity, container=container)

        self.startup_result = result
        if result.reason:
            self._notify(f"Startup {result.status.value}: {result.reason}")
        else:
            self._notify(f"Startup {result.status.value}")
        return result

    # ================== DISCOVERY CYCLES ==================

    @property
    def discovery_running(self) -> bool:
        return self._cycle_lock.locked()

    async def trigger_discovery(self) -> Optional[CycleReport]:
        """Manual discovery: entries are merged as they are found"""
        return await self.run_discovery_cycle(SyncMode.MERGE)

    def start_discovery_in_background(self) -> bool:
        """Schedule a manual discovery without waiting. False if one is already running."""
        if self.discovery_running:
            self.stats['cycles_dropped'] += 1
            return False
        task = asyncio.create_task(self.trigger_discovery())
        self._background_cycles.append(task)
        task.add_done_callback(self._background_cycles.remove)
        return True

    async def run_discovery_cycle(self, mode: SyncMode = SyncMode.MERGE) -> Optional[CycleReport]:
        """
        Browse, filter, read state and write into the registry.
        Returns None when another cycle is already running.
        """
        if self._cycle_lock.locked():
            self.stats['cycles_dropped'] += 1
            self._notify("Discovery already in progress, request dropped")
            return None

        async with self._cycle_lock:
            report = CycleReport(mode=mode)
            accumulator: List[Endpoint] = []
            started = time.monotonic()
            toggles_before = self._toggle_seq

            self._notify(f"Searching for devices ({mode.value})...")
            run = self.discovery.browse()

            async with run.stream() as endpoints:
                async for endpoint in endpoints:
                    report.found += 1
                    if not self.endpoint_filter.accepts(endpoint):
                        report.rejected += 1
                        self._notify(f"Ignored {endpoint.name} at {endpoint.host}:{endpoint.port}")
                        continue

                    endpoint = await self._refresh_state(endpoint, report)
                    report.accepted += 1

                    if mode is SyncMode.MERGE:
                        self._keep_newer_toggle(endpoint, toggles_before)
                        is_new = self.registry.merge(endpoint)
                        verb = "Found" if is_new else "Updated"
                    else:
                        accumulator.append(endpoint)
                        verb = "Found"
                    self._notify(
                        f"{verb} {endpoint.name} at {endpoint.host}:{endpoint.port} "
                        f"({'on' if endpoint.is_on else 'off'})"
                    )

            report.state = run.state
            report.duration_seconds = time.monotonic() - started

            if run.state is DiscoveryState.INIT_FAILED:
                # Nothing is known about the network: keep the previous snapshot
                report.error = str(run.error)
                self._notify(f"Discovery unavailable: {run.error}")
            elif mode is SyncMode.REPLACE:
                for endpoint in accumulator:
                    self._keep_newer_toggle(endpoint, toggles_before)
                self.registry.replace(accumulator)
                self._prune_toggle_state()

            self.stats['cycles_completed'] += 1
            self.last_cycle = report
            self._notify(
                f"Discovery {report.state.value}: {report.accepted} accepted, {report.rejected} ignored, "
                f"{len(self.registry)} devices registered"
            )
            return report

    def _keep_newer_toggle(self, endpoint: Endpoint, toggles_before: int):
        """A toggle that finished after the cycle started wins over the state read during it"""
        if self._toggled_at.get(endpoint.name, 0) <= toggles_before:
            return
        cached = self.registry.get(endpoint.name)
        if cached is not None:
            endpoint.is_on = cached.is_on

    def _prune_toggle_state(self):
        """Forget per-device toggle bookkeeping for devices no longer registered"""
        for name in list(self._toggle_locks):
            if name not in self.registry and not self._toggle_locks[name].locked():
                del self._toggle_locks[name]
        for name in list(self._toggled_at):
            if name not in self.registry:
                del self._toggled_at[name]

    async def _refresh_state(self, endpoint: Endpoint, report: CycleReport) -> Endpoint:
        """Read device state. A failed read keeps the previously cached state."""
        endpoint = dataclasses.replace(endpoint)
        cached = self.registry.get(endpoint.name)
        if cached is not None:
            endpoint.is_on = cached.is_on

        if not self.read_state_on_discovery:
            return endpoint

        result = await self.client.read_state(endpoint)
        if result.ok:
            endpoint.is_on = result.state
        else:
            report.state_reads_failed += 1
            self._notify(
                f"Could not read state of {endpoint.name}, keeping {'on' if endpoint.is_on else 'off'}"
            )
        return endpoint

    # ================== DEVICE CONTROL ==================

    def _toggle_lock(self, name: str) -> asyncio.Lock:
        lock = self._toggle_locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._toggle_locks[name] = lock
        return lock

    async def toggle(self, name: str) -> bool:
        """Flip one device. The cached state is updated only if the write succeeds."""
        async with self._toggle_lock(name):
            endpoint = self.registry.get(name)
            if endpoint is None:
                self._notify(f"Cannot toggle {name}: not registered")
                return False

            self.stats['toggles'] += 1
            ok = await self.client.write_state(endpoint, endpoint.is_on)
            if not ok:
                self.stats['toggle_failures'] += 1
                self._notify(f"Failed to toggle {name}")
                return False

            new_state = not endpoint.is_on
            self.registry.set_state(name, new_state)
            self._toggle_seq += 1
            self._toggled_at[name] = self._toggle_seq
            self._notify(f"{name} turned {'on' if new_state else 'off'}")
            return True

    async def toggle_selected(self) -> bool:
        """Toggle the device under the registry's selection cursor"""
        endpoint = self.registry.selected()
        if endpoint is None:
            self._notify("No device selected")
            return False
        return await self.toggle(endpoint.name)
