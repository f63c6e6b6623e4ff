"""
oneM2M Device Sync Server - Main Entry Point
"""

import asyncio
import signal
import sys
import logging
import os

from services.device_sync_server import DeviceSyncServer, StartupStatus

logger = logging.getLogger(__name__)

async def main() -> int:
    """Run the sync server until SIGINT/SIGTERM. Exit code 1 on failure."""
    config_path = os.environ.get('CONFIG_FILE', 'config/config.yaml')

    try:
        server = DeviceSyncServer(config_path=config_path)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Cannot start with configuration {config_path}: {e}")
        return 1

    logger.info(f"Using configuration file: {config_path}")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: _request_stop(server, s))

    try:
        await server.start()
    except Exception as e:
        logger.error(f"Server failed: {e}")
        return 1
    finally:
        await server.stop()

    if server.startup_result.status is StartupStatus.FAILED:
        logger.warning(f"Exited without a usable CSE registration: {server.startup_result.reason}")
    return 0

def _request_stop(server: DeviceSyncServer, sig: signal.Signals):
    logger.info(f"Received {sig.name}, shutting down...")
    asyncio.get_running_loop().create_task(server.stop())

def run():
    """Console script entry"""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nServer stopped by user")
        sys.exit(0)

if __name__ == "__main__":
    run()
