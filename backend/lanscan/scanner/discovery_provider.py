"""
mDNS/DNS-SD transport used by the discovery channels.

`ServiceDiscoveryProvider` is the capability the channels depend on:
browse a service type, resolve an instance to addresses and TXT metadata,
and look up the instance's hostname. `ZeroconfProvider` implements it on
top of python-zeroconf's asyncio API with a single shared responder.
"""

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Union

from zeroconf import Error as ZeroconfError
from zeroconf import InterfaceChoice, IPVersion, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from ..core.errors import ServiceResolutionError

logger = logging.getLogger(__name__)


@dataclass
class ResolvedService:
    """Addresses, port and TXT metadata of one advertised instance."""
    name: str
    service_type: str
    addresses: List[str] = field(default_factory=list)
    port: int = 0
    properties: Dict[str, str] = field(default_factory=dict)
    server: Optional[str] = None

    def ipv4_addresses(self) -> List[str]:
        result = []
        for address in self.addresses:
            try:
                if ipaddress.ip_address(address).version == 4:
                    result.append(address)
            except ValueError:
                continue
        return result


class BrowseHandle:
    """A running browse; cancel() stops further `on_added` calls."""

    async def cancel(self) -> None:
        raise NotImplementedError


class ServiceDiscoveryProvider:
    """Abstract mDNS/DNS-SD capability."""

    async def browse(self, service_type: str, on_added: Callable[[str], None]) -> BrowseHandle:
        """Start browsing `service_type`, calling `on_added(name)` per new instance."""
        raise NotImplementedError

    async def resolve(self, service_type: str, name: str,
                      timeout: float) -> Optional[ResolvedService]:
        """Resolve an instance; None if nothing answered within `timeout` seconds."""
        raise NotImplementedError

    async def resolve_hostname(self, service_type: str, name: str,
                               timeout: float) -> Optional[str]:
        """Resolve the target hostname (e.g. "iPhone.local.") of an instance."""
        raise NotImplementedError

    async def close(self) -> None:
        pass


def decode_properties(properties: Dict[Union[bytes, str], Optional[Union[bytes, str]]]) -> Dict[str, str]:
    """Decode TXT records; a key without a value is a boolean flag."""
    records = {}
    for key, value in (properties or {}).items():
        if isinstance(key, bytes):
            key = key.decode('utf-8', errors='ignore')
        if value is None:
            value = 'true'
        elif isinstance(value, bytes):
            value = value.decode('utf-8', errors='ignore')
        records[key] = value
    return records


class _ZeroconfBrowseHandle(BrowseHandle):

    def __init__(self, browser: AsyncServiceBrowser):
        self._browser: Optional[AsyncServiceBrowser] = browser

    async def cancel(self) -> None:
        browser, self._browser = self._browser, None
        if browser is not None:
            await browser.async_cancel()


class ZeroconfProvider(ServiceDiscoveryProvider):
    """
    python-zeroconf backed provider.

    One AsyncZeroconf instance (IPv4 only) is created lazily and shared by
    every browse and resolution until close(). `addresses` are the local
    IPv4 addresses to bind to; all interfaces when omitted.
    """

    def __init__(self, addresses: Optional[Sequence[str]] = None):
        self.addresses = list(addresses) if addresses else None
        self._aiozc: Optional[AsyncZeroconf] = None

    def _get_zeroconf(self) -> AsyncZeroconf:
        if self._aiozc is None:
            interfaces = self.addresses or InterfaceChoice.All
            self._aiozc = AsyncZeroconf(interfaces=interfaces, ip_version=IPVersion.V4Only)
        return self._aiozc

    async def browse(self, service_type: str, on_added: Callable[[str], None]) -> BrowseHandle:
        aiozc = self._get_zeroconf()

        def on_service_state_change(
            zeroconf: Zeroconf,
            service_type: str,
            name: str,
            state_change: ServiceStateChange,
        ) -> None:
            if state_change is ServiceStateChange.Added:
                logger.debug(f"mDNS: found {name}")
                on_added(name)

        browser = AsyncServiceBrowser(
            aiozc.zeroconf,
            [service_type],
            handlers=[on_service_state_change],
        )
        return _ZeroconfBrowseHandle(browser)

    async def resolve(self, service_type: str, name: str,
                      timeout: float) -> Optional[ResolvedService]:
        aiozc = self._get_zeroconf()
        info = AsyncServiceInfo(service_type, name)

        try:
            # async_request takes milliseconds
            found = await info.async_request(aiozc.zeroconf, int(timeout * 1000))
        except (OSError, ZeroconfError) as e:
            raise ServiceResolutionError(service_type, name, str(e)) from e

        if not found:
            return None

        return ResolvedService(
            name=name,
            service_type=service_type,
            addresses=info.parsed_addresses(IPVersion.V4Only),
            port=info.port or 0,
            properties=decode_properties(info.properties),
            server=info.server,
        )

    async def resolve_hostname(self, service_type: str, name: str,
                               timeout: float) -> Optional[str]:
        resolved = await self.resolve(service_type, name, timeout)
        if resolved is None:
            return None
        return resolved.server

    async def close(self) -> None:
        aiozc, self._aiozc = self._aiozc, None
        if aiozc is not None:
            await aiozc.async_close()
