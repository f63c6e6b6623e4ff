"""
Discovery module for mDNS device discovery
"""

from .manager import DeviceDiscovery, DiscoveryRun
from .models import Endpoint, Advertisement, DiscoveryResult, DiscoveryState, EndpointFilter
from .mdns_source import AdvertisementSource, MdnsAdvertisementSource

__all__ = ['DeviceDiscovery', 'DiscoveryRun', 'Endpoint', 'Advertisement', 'DiscoveryResult',
           'DiscoveryState', 'EndpointFilter', 'AdvertisementSource', 'MdnsAdvertisementSource']
