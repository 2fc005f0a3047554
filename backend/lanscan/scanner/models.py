"""Value types shared by the sweep, the discovery channels and the correlator."""

import ipaddress
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class DeviceType(str, Enum):
    REGULAR = "regular"
    ROUTER = "router"
    AIRPLAY = "airplay"
    GOOGLE_CAST = "google_cast"
    APPLE_DEVICE = "apple_device"


class ServiceKind(str, Enum):
    APPLE_MOBILE = "apple_mobile"
    AIRPLAY = "airplay"
    GOOGLE_CAST = "google_cast"


class ScanState(str, Enum):
    IDLE = "idle"
    AUTHORIZING = "authorizing"
    SCANNING = "scanning"
    CORRELATING = "correlating"


@dataclass
class Device:
    """A device seen on the local subnet, keyed by its IPv4 host address."""
    name: str
    host: str
    mac_address: Optional[str] = None
    model: Optional[str] = None
    type: DeviceType = DeviceType.REGULAR


@dataclass
class DiscoveredService:
    """
    A confirmed mDNS advertisement, produced by one discovery channel.

    `name`, `mac_address` and `model` are already extracted from the
    instance name and TXT metadata by the channel's extraction rule.
    """
    kind: ServiceKind
    service_name: str
    host: str
    name: str
    mac_address: Optional[str] = None
    model: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class ProbeCompleted:
    """One probing unit finished."""
    host: str
    reachable: bool


@dataclass
class ServiceFound:
    """A discovery channel delivered a service."""
    service: DiscoveredService


@dataclass
class ScanResult:
    """Snapshot of the last finished scan."""
    devices: List[Device]
    started_at: datetime
    completed_at: datetime
    subnet: str
    hosts_probed: int


def is_loopback(host: str) -> bool:
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def rewrite_loopback(service: DiscoveredService, local_address: str) -> DiscoveredService:
    """Replace a loopback endpoint with the machine's LAN address."""
    if local_address and is_loopback(service.host):
        service.host = local_address
    return service
