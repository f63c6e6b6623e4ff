"""
Error taxonomy for the sync server

All of these are recovered at the operation boundary and turned into a
result value plus a log line. None of them terminate the process.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for recoverable sync server errors"""


class TransportError(SyncError):
    """Connection, DNS or timeout failure talking to a CSE or device"""


class ProtocolError(SyncError):
    """Unexpected HTTP status code"""

    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        super().__init__(message or f"Unexpected HTTP status {status}")


class ParseError(SyncError):
    """Malformed body or missing JSON fields"""


class DiscoveryInitError(SyncError):
    """The mDNS resolver could not be initialized"""
