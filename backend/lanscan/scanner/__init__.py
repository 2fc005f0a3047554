# Scanner module
from .models import Device, DeviceType, DiscoveredService, ScanResult, ScanState, ServiceKind
from .network_scanner import NetworkScanner
from .subnet import compute_host_range
from .correlator import merge_devices

__all__ = [
    "NetworkScanner",
    "Device",
    "DeviceType",
    "DiscoveredService",
    "ScanResult",
    "ScanState",
    "ServiceKind",
    "compute_host_range",
    "merge_devices",
]
