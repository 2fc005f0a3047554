"""
Local network permission checks.

The scan must not emit any probing or browsing traffic until one of these
gates has answered. On Linux there is no permission prompt; what can fail
is opening the multicast responder (no usable interface, port in use,
sandboxed process), so the multicast gate publishes a short-lived probe
service and reports whether that worked.
"""

import logging
import socket
from typing import Callable, Optional

from zeroconf import Error as ZeroconfError
from zeroconf import InterfaceChoice, IPVersion, ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

logger = logging.getLogger(__name__)

PROBE_SERVICE_TYPE = "_lnp._tcp.local."
PROBE_SERVICE_NAME = "LocalNetworkPrivacy"
PROBE_SERVICE_PORT = 1100


class PermissionGate:

    async def request_authorization(self) -> bool:
        raise NotImplementedError


class StaticPermissionGate(PermissionGate):
    """Always answers with the same decision."""

    def __init__(self, granted: bool = True):
        self.granted = granted

    async def request_authorization(self) -> bool:
        return self.granted


class MulticastPermissionGate(PermissionGate):
    """Grants access when a probe service can be published over mDNS."""

    def __init__(self, address_provider: Optional[Callable[[], str]] = None):
        self.address_provider = address_provider

    def _probe_info(self) -> ServiceInfo:
        address = self.address_provider() if self.address_provider else ""
        addresses = [socket.inet_aton(address)] if address else []
        return ServiceInfo(
            PROBE_SERVICE_TYPE,
            f"{PROBE_SERVICE_NAME}-{socket.gethostname().split('.')[0]}.{PROBE_SERVICE_TYPE}",
            port=PROBE_SERVICE_PORT,
            addresses=addresses,
        )

    async def request_authorization(self) -> bool:
        aiozc = None
        try:
            info = self._probe_info()
            aiozc = AsyncZeroconf(interfaces=InterfaceChoice.All, ip_version=IPVersion.V4Only)
            await aiozc.async_register_service(info)
            await aiozc.async_unregister_service(info)
        except (OSError, ZeroconfError) as e:
            logger.warning(f"Local network permission has been denied: {e}")
            return False
        finally:
            if aiozc is not None:
                try:
                    await aiozc.async_close()
                except (OSError, ZeroconfError) as e:
                    logger.debug(f"Error closing probe responder: {e}")

        logger.info("Local network permission has been granted")
        return True
