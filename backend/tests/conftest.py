"""Fakes for the scanner's four external collaborators."""

import asyncio
import random
from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest

from lanscan.scanner.discovery_provider import BrowseHandle, ResolvedService, ServiceDiscoveryProvider
from lanscan.scanner.environment import StaticEnvironment
from lanscan.scanner.network_scanner import NetworkScanner
from lanscan.scanner.permission import StaticPermissionGate
from lanscan.scanner.ping_prober import EchoOutcome, EchoTransport, ProbePolicy


class FakeEchoTransport(EchoTransport):
    """Replies for hosts in `alive`, times out for everything else."""

    def __init__(self, alive: Set[str] = frozenset(), jitter: float = 0.0,
                 block: bool = False, script: Optional[Dict[str, List]] = None):
        self.alive = set(alive)
        self.jitter = jitter
        self.block = block
        self.script = {host: list(outcomes) for host, outcomes in (script or {}).items()}
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def echo(self, host: str, timeout: float) -> EchoOutcome:
        self.calls.append(host)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.block:
                await asyncio.Event().wait()
            if self.jitter:
                await asyncio.sleep(random.uniform(0, self.jitter))
            if host in self.script and self.script[host]:
                outcome = self.script[host].pop(0)
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
            if host in self.alive:
                return EchoOutcome.REPLY
            return EchoOutcome.TIMEOUT
        finally:
            self.active -= 1


class _FakeBrowseHandle(BrowseHandle):

    def __init__(self, provider: "FakeProvider", service_type: str, handles: list):
        self.provider = provider
        self.service_type = service_type
        self.handles = handles

    async def cancel(self) -> None:
        for handle in self.handles:
            handle.cancel()
        self.provider.cancelled.append(self.service_type)


class FakeProvider(ServiceDiscoveryProvider):
    """
    Scripted mDNS provider.

    `add_service()` schedules an Added event `delay` seconds after browsing
    starts; `services` and `hostnames` answer resolutions.
    """

    def __init__(self):
        self.advertisements: Dict[str, List[Tuple[str, float]]] = {}
        self.services: Dict[str, ResolvedService] = {}
        self.hostnames: Dict[str, str] = {}
        self.listeners: Dict[str, Callable[[str], None]] = {}
        self.browsed: List[str] = []
        self.cancelled: List[str] = []
        self.resolve_calls: List[str] = []
        self.resolve_gate: Optional[asyncio.Event] = None
        self.closed = False

    def add_service(self, service_type: str, instance: str, addresses: List[str],
                    properties: Optional[Dict[str, str]] = None, hostname: Optional[str] = None,
                    delay: float = 0.0, port: int = 7000) -> str:
        name = f"{instance}.{service_type}"
        self.advertisements.setdefault(service_type, []).append((name, delay))
        self.services[name] = ResolvedService(
            name=name,
            service_type=service_type,
            addresses=list(addresses),
            port=port,
            properties=dict(properties or {}),
            server=hostname,
        )
        if hostname is not None:
            self.hostnames[name] = hostname
        return name

    async def browse(self, service_type, on_added):
        loop = asyncio.get_running_loop()
        self.browsed.append(service_type)
        self.listeners[service_type] = on_added
        handles = [
            loop.call_later(delay, on_added, name)
            for name, delay in self.advertisements.get(service_type, [])
        ]
        return _FakeBrowseHandle(self, service_type, handles)

    async def resolve(self, service_type, name, timeout):
        self.resolve_calls.append(name)
        if self.resolve_gate is not None:
            await self.resolve_gate.wait()
        return self.services.get(name)

    async def resolve_hostname(self, service_type, name, timeout):
        return self.hostnames.get(name)

    async def close(self):
        self.closed = True


async def passthrough_confirm(address: str, port: int, timeout: float) -> Optional[str]:
    return address


async def refusing_confirm(address: str, port: int, timeout: float) -> Optional[str]:
    return None


class ProviderFactory:
    """Hands out one FakeProvider per session and remembers them."""

    def __init__(self, configure: Optional[Callable[[FakeProvider], None]] = None):
        self.configure = configure
        self.created: List[FakeProvider] = []

    def __call__(self) -> FakeProvider:
        provider = FakeProvider()
        if self.configure:
            self.configure(provider)
        self.created.append(provider)
        return provider


# 192.168.1.8/29: hosts .9 - .14
LOCAL_ADDRESS = "192.168.1.10"
NETMASK = "255.255.255.248"
GATEWAY = "192.168.1.9"
SUBNET_HOSTS = [f"192.168.1.{d}" for d in range(9, 15)]


@pytest.fixture
def environment():
    return StaticEnvironment(LOCAL_ADDRESS, NETMASK, GATEWAY)


@pytest.fixture
def fast_policy():
    return ProbePolicy(timeout=0.01, interval=0.0, max_timeouts=2, max_send_failures=10)


@pytest.fixture
def make_scanner(environment, fast_policy):
    """Build a NetworkScanner wired to fakes."""

    def factory(echo=None, providers=None, granted=True, grace_period=0.3,
                workers=4, env=None, confirm=passthrough_confirm):
        return NetworkScanner(
            environment=env or environment,
            permission_gate=StaticPermissionGate(granted),
            echo_transport=echo or FakeEchoTransport(),
            provider_factory=providers or ProviderFactory(),
            probe_policy=fast_policy,
            workers=workers,
            grace_period=grace_period,
            resolve_timeout=0.5,
            confirm_timeout=0.5,
            confirm=confirm,
        )

    return factory
