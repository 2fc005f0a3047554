"""
Discovery channels for the device-advertisement protocols we care about.

Each channel browses one mDNS service type. For every newly advertised
instance it resolves addresses and TXT metadata, confirms one IPv4
endpoint with a throwaway UDP connection (an advertisement alone does not
prove the address is usable from here), extracts the protocol-specific
fields and hands a DiscoveredService to its callback, once per instance.
"""

import asyncio
import ipaddress
import logging
import socket
from typing import Awaitable, Callable, Optional, Set

from ..core.errors import ServiceResolutionError
from .discovery_provider import BrowseHandle, ResolvedService, ServiceDiscoveryProvider
from .models import DiscoveredService, ServiceKind

logger = logging.getLogger(__name__)

APPLE_MOBILE_SERVICE = "_apple-mobdev2._tcp.local."
AIRPLAY_SERVICE = "_airplay._tcp.local."
GOOGLE_CAST_SERVICE = "_googlecast._tcp.local."

LOCAL_SUFFIX = ".local."

# UDP discard port, used when an advertisement carries no port
DISCARD_PORT = 9

EndpointConfirmer = Callable[[str, int, float], Awaitable[Optional[str]]]


async def confirm_endpoint(address: str, port: int, timeout: float) -> Optional[str]:
    """
    Open a UDP "connection" to the endpoint and return the peer's IPv4 address.

    Connecting a datagram socket sends nothing but does require a route to
    the address; the peer name also tells us the actual address family.
    """
    loop = asyncio.get_running_loop()
    try:
        transport, _ = await asyncio.wait_for(
            loop.create_datagram_endpoint(
                asyncio.DatagramProtocol,
                remote_addr=(address, port or DISCARD_PORT),
                family=socket.AF_INET
            ),
            timeout=timeout
        )
    except (asyncio.TimeoutError, OSError) as e:
        logger.debug(f"Endpoint {address}:{port} not usable: {e}")
        return None

    try:
        peer = transport.get_extra_info('peername')
    finally:
        transport.close()

    if not peer:
        return None

    host = str(peer[0]).split('%')[0]
    try:
        if ipaddress.ip_address(host).version != 4:
            return None
    except ValueError:
        return None
    return host


def instance_name(name: str, service_type: str) -> str:
    """Strip the service type from a full instance name."""
    suffix = "." + service_type
    if name.endswith(suffix):
        return name[:-len(suffix)]
    return name


class ServiceDiscoveryChannel:
    """Browses one service type and delivers confirmed, enriched services."""

    kind: ServiceKind
    service_type: str

    def __init__(
        self,
        provider: ServiceDiscoveryProvider,
        resolve_timeout: float = 5.0,
        confirm_timeout: float = 2.0,
        confirm: EndpointConfirmer = confirm_endpoint,
    ):
        self.provider = provider
        self.resolve_timeout = resolve_timeout
        self.confirm_timeout = confirm_timeout
        self.confirm = confirm
        self._handle: Optional[BrowseHandle] = None
        self._on_discovered: Optional[Callable[[DiscoveredService], None]] = None
        self._tasks: Set[asyncio.Task] = set()
        self._seen: Set[str] = set()
        self._stopped = True

    @property
    def is_running(self) -> bool:
        return not self._stopped

    async def start(self, on_discovered: Callable[[DiscoveredService], None]) -> None:
        """Start browsing; `on_discovered` is called once per confirmed instance."""
        await self.stop()

        self._on_discovered = on_discovered
        self._seen = set()
        self._stopped = False
        self._handle = await self.provider.browse(self.service_type, self._on_service_added)
        logger.info(f"Browsing {self.service_type}")

    async def stop(self) -> None:
        """Stop browsing and drop in-flight resolutions. Safe to call repeatedly."""
        self._stopped = True
        self._on_discovered = None

        handle, self._handle = self._handle, None
        if handle is not None:
            try:
                await handle.cancel()
            except Exception as e:
                logger.warning(f"Error cancelling browse of {self.service_type}: {e}")

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    def _on_service_added(self, name: str) -> None:
        if self._stopped or name in self._seen:
            return
        self._seen.add(name)

        task = asyncio.create_task(self._process(name))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process(self, name: str) -> None:
        try:
            service = await self._resolve_and_extract(name)
        except ServiceResolutionError as e:
            logger.warning(f"Service did not resolve: {e}")
            service = None

        if service is None:
            # allow a later re-advertisement to try again
            self._seen.discard(name)
            return

        callback = self._on_discovered
        if self._stopped or callback is None:
            return

        logger.debug(f"{self.kind.value}: {service.name} at {service.host}")
        callback(service)

    async def _resolve_and_extract(self, name: str) -> Optional[DiscoveredService]:
        resolved = await self.provider.resolve(self.service_type, name, self.resolve_timeout)
        if resolved is None:
            logger.debug(f"No answer resolving {name}")
            return None

        host = None
        for address in resolved.ipv4_addresses():
            host = await self.confirm(address, resolved.port, self.confirm_timeout)
            if host:
                break

        if host is None:
            logger.debug(f"No usable IPv4 endpoint for {name}")
            return None

        return await self.extract(name, host, resolved)

    async def extract(self, name: str, host: str,
                      resolved: ResolvedService) -> Optional[DiscoveredService]:
        raise NotImplementedError


class AppleMobileChannel(ServiceDiscoveryChannel):
    """
    Apple mobile-device proxy (`_apple-mobdev2._tcp`).

    Instance names look like "aa:bb:cc:dd:ee:ff@fe80::...": the part before
    the "@" is the device's hardware address. The human readable name is the
    instance's target hostname, which takes one more resolution round-trip.
    """

    kind = ServiceKind.APPLE_MOBILE
    service_type = APPLE_MOBILE_SERVICE

    async def extract(self, name: str, host: str,
                      resolved: ResolvedService) -> Optional[DiscoveredService]:
        instance = instance_name(name, self.service_type)
        mac_address = instance.split('@', 1)[0].upper()

        hostname = await self.provider.resolve_hostname(
            self.service_type, name, self.resolve_timeout
        )
        if not hostname:
            raise ServiceResolutionError(self.service_type, name, "no hostname")

        if hostname.endswith(LOCAL_SUFFIX):
            hostname = hostname[:-len(LOCAL_SUFFIX)]

        return DiscoveredService(
            kind=self.kind,
            service_name=instance,
            host=host,
            name=hostname,
            mac_address=mac_address,
            metadata=dict(resolved.properties),
        )


class AirPlayChannel(ServiceDiscoveryChannel):
    """AirPlay receivers (`_airplay._tcp`): device id and model from TXT."""

    kind = ServiceKind.AIRPLAY
    service_type = AIRPLAY_SERVICE

    async def extract(self, name: str, host: str,
                      resolved: ResolvedService) -> Optional[DiscoveredService]:
        instance = instance_name(name, self.service_type)
        txt = resolved.properties
        return DiscoveredService(
            kind=self.kind,
            service_name=instance,
            host=host,
            name=instance,
            mac_address=txt.get('deviceid'),
            model=txt.get('model'),
            metadata=dict(txt),
        )


class GoogleCastChannel(ServiceDiscoveryChannel):
    """Cast receivers (`_googlecast._tcp`): friendly name and model from TXT."""

    kind = ServiceKind.GOOGLE_CAST
    service_type = GOOGLE_CAST_SERVICE

    async def extract(self, name: str, host: str,
                      resolved: ResolvedService) -> Optional[DiscoveredService]:
        instance = instance_name(name, self.service_type)
        txt = resolved.properties
        return DiscoveredService(
            kind=self.kind,
            service_name=instance,
            host=host,
            name=txt.get('fn') or instance,
            model=txt.get('md'),
            metadata=dict(txt),
        )
