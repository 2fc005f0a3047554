"""Folds discovered services onto the reachable hosts."""

from dataclasses import replace
from typing import Dict, Iterable, List

from .models import Device, DeviceType, DiscoveredService


def _first_by_host(services: Iterable[DiscoveredService]) -> Dict[str, DiscoveredService]:
    by_host: Dict[str, DiscoveredService] = {}
    for service in services:
        by_host.setdefault(service.host, service)
    return by_host


def merge_devices(
    hosts: Iterable[Device],
    apple_services: Iterable[DiscoveredService],
    airplay_services: Iterable[DiscoveredService],
    cast_services: Iterable[DiscoveredService],
) -> List[Device]:
    """
    Overlay service discovery results onto reachable devices.

    Overlays are applied in a fixed order and each one overwrites what the
    previous one set: Apple mobile-device (MAC, name), then AirPlay (MAC,
    model, name), then Cast (name, model; MAC is left alone). A host with
    no matching service keeps its reachability classification and its
    address as name. Output order follows `hosts`; input devices are not
    modified.
    """
    apple = _first_by_host(apple_services)
    airplay = _first_by_host(airplay_services)
    cast = _first_by_host(cast_services)

    results: List[Device] = []
    seen = set()

    for device in hosts:
        if device.host in seen:
            continue
        seen.add(device.host)

        merged = replace(device)

        service = apple.get(merged.host)
        if service is not None:
            merged.mac_address = service.mac_address
            merged.name = service.name
            merged.type = DeviceType.APPLE_DEVICE

        service = airplay.get(merged.host)
        if service is not None:
            merged.mac_address = service.mac_address
            merged.model = service.model
            merged.name = service.name
            merged.type = DeviceType.AIRPLAY

        service = cast.get(merged.host)
        if service is not None:
            merged.name = service.name
            merged.model = service.model
            merged.type = DeviceType.GOOGLE_CAST

        results.append(merged)

    return results
