"""
Server orchestration and background services
"""

from .device_sync_server import DeviceSyncServer, StartupResult, StartupStatus, SyncMode, CycleReport
from .poller import DiscoveryPoller

__all__ = ['DeviceSyncServer', 'StartupResult', 'StartupStatus', 'SyncMode', 'CycleReport', 'DiscoveryPoller']
