"""
API module for device control and monitoring
"""

from .main_api import DeviceAPI
from .device_routes import create_device_routes
from .system_routes import create_system_routes

__all__ = ['DeviceAPI', 'create_device_routes', 'create_system_routes']
