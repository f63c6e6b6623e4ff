"""
Main FastAPI application setup

Local HTTP API used by the UI: device list, selection cursor, toggling,
manual discovery and health of the sync server.
"""

from fastapi import FastAPI
import logging

# Import modular route factories
from .system_routes import create_system_routes
from .device_routes import create_device_routes

logger = logging.getLogger(__name__)


class DeviceAPI:
    """Local HTTP API over a running DeviceSyncServer"""

    def __init__(self, server):
        self.server = server
        self.app = FastAPI(
            title="oneM2M Device Sync Server",
            description="Local API for discovered devices, selection, toggling and discovery status",
            version="1.0.0"
        )
        self._setup_routes()

    def _setup_routes(self):
        """Setup FastAPI routes using modular approach"""
        system_router = create_system_routes(self.server)
        device_router = create_device_routes(self.server)

        self.app.include_router(system_router)
        self.app.include_router(device_router)
        logger.debug(f"API routes registered: {len(self.app.routes)}")
