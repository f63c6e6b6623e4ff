"""
Registry module for discovered devices
"""

from .device_registry import DeviceRegistry

__all__ = ['DeviceRegistry']
