# HTTP Helper for CSE connections
# Session configuration for the oneM2M CSE and directly addressed devices (plain HTTP)

import aiohttp
import logging

logger = logging.getLogger(__name__)

def create_cse_session(timeout_seconds: float = 5) -> aiohttp.ClientSession:
    """
    Create properly configured aiohttp session for CSE and device connections (always HTTP)
    Prevents connection leaks with proper cleanup and limits
    """
    connector = aiohttp.TCPConnector(
        limit=20,                   # Total connection pool limit
        limit_per_host=4,           # Discovery reads and toggles share one host at most
        ssl=False,                  # CSE and devices use HTTP only
        enable_cleanup_closed=True
    )

    logger.debug(f"Creating CSE session (timeout={timeout_seconds}s)")
    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout_seconds)
    )
