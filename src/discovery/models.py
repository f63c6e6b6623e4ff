"""
Discovery data structures and models
"""

from typing import List, Optional
from dataclasses import dataclass, field
from enum import Enum

@dataclass
class Endpoint:
    """Represents a discovered device endpoint"""
    name: str  # Display name from the advertisement, identity key
    host: str
    port: int
    is_on: bool = False  # Cached state, may be stale

    def to_dict(self) -> dict:
        return {"name": self.name, "host": self.host, "port": self.port, "is_on": self.is_on}

@dataclass
class Advertisement:
    """A resolved mDNS service advertisement"""
    name: str
    port: int
    addresses: List[str] = field(default_factory=list)  # IPv4 only

class DiscoveryState(Enum):
    """Lifecycle of a single discovery run"""
    IDLE = "idle"
    BROWSING = "browsing"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    INIT_FAILED = "init_failed"
    ABORTED = "aborted"  # Consumer stopped or was cancelled before the run ended

@dataclass
class DiscoveryResult:
    """Results from one finished discovery run"""
    endpoints: List[Endpoint]
    state: DiscoveryState
    duration_seconds: float
    error: Optional[str] = None

@dataclass
class EndpointFilter:
    """Acceptance rule for the registry: name marker or well-known port"""
    name_marker: Optional[str] = None
    well_known_port: Optional[int] = None

    def accepts(self, endpoint: Endpoint) -> bool:
        if self.name_marker and self.name_marker.lower() in endpoint.name.lower():
            return True
        if self.well_known_port is not None and endpoint.port == self.well_known_port:
            return True
        return False

def display_name(service_name: str, service_type: str) -> str:
    """Strip the service type suffix from a DNS-SD instance name"""
    suffix = "." + service_type.rstrip(".") + "."
    if service_name.endswith(suffix):
        return service_name[:-len(suffix)]
    if service_name.endswith(suffix[:-1]):
        return service_name[:-len(suffix) + 1]
    return service_name
