"""Local interface queries: address, netmask and default gateway."""

import logging
from typing import Optional

import netifaces

logger = logging.getLogger(__name__)


class NetworkEnvironment:
    """Answers questions about the local IPv4 configuration ("" when unknown)."""

    def local_ipv4_address(self) -> str:
        raise NotImplementedError

    def local_ipv4_netmask(self) -> str:
        raise NotImplementedError

    def default_gateway_ipv4(self) -> Optional[str]:
        raise NotImplementedError


class StaticEnvironment(NetworkEnvironment):
    """Fixed answers, for a configured subnet or for tests."""

    def __init__(self, address: str, netmask: str, gateway: Optional[str] = None):
        self.address = address
        self.netmask = netmask
        self.gateway = gateway

    def local_ipv4_address(self) -> str:
        return self.address

    def local_ipv4_netmask(self) -> str:
        return self.netmask

    def default_gateway_ipv4(self) -> Optional[str]:
        return self.gateway


class NetifacesEnvironment(NetworkEnvironment):
    """
    Reads interface configuration through netifaces.

    Uses `interface` when given, otherwise the interface carrying the IPv4
    default route.
    """

    def __init__(self, interface: Optional[str] = None):
        self.interface = interface

    def _default_gateway(self) -> Optional[tuple]:
        try:
            gateways = netifaces.gateways()
        except Exception as e:
            logger.warning(f"Error reading gateways: {e}")
            return None
        return gateways.get('default', {}).get(netifaces.AF_INET)

    def _interface_name(self) -> Optional[str]:
        if self.interface:
            return self.interface
        default_gateway = self._default_gateway()
        if default_gateway:
            return default_gateway[1]
        return None

    def _ipv4_info(self) -> dict:
        interface = self._interface_name()
        if not interface:
            logger.warning("No network interface with an IPv4 default route")
            return {}
        try:
            addrs = netifaces.ifaddresses(interface)
        except ValueError as e:
            logger.warning(f"Unknown interface {interface}: {e}")
            return {}
        entries = addrs.get(netifaces.AF_INET) or []
        return entries[0] if entries else {}

    def local_ipv4_address(self) -> str:
        return self._ipv4_info().get('addr', '')

    def local_ipv4_netmask(self) -> str:
        return self._ipv4_info().get('netmask', '')

    def default_gateway_ipv4(self) -> Optional[str]:
        default_gateway = self._default_gateway()
        if not default_gateway:
            return None
        if self.interface and default_gateway[1] != self.interface:
            return None
        return default_gateway[0]
