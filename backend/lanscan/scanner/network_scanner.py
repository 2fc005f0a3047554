import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from ..core.config import settings
from ..core.errors import NoNetworkError, PermissionDeniedError, ScanError
from .correlator import merge_devices
from .discovery_provider import ServiceDiscoveryProvider, ZeroconfProvider
from .environment import NetifacesEnvironment, NetworkEnvironment
from .models import (
    Device,
    DeviceType,
    DiscoveredService,
    ProbeCompleted,
    ScanResult,
    ScanState,
    ServiceFound,
    ServiceKind,
    rewrite_loopback,
)
from .permission import MulticastPermissionGate, PermissionGate, StaticPermissionGate
from .ping_prober import EchoTransport, PingTransport, ProbePolicy, ProbeSweep, ReachabilityProber
from .service_browser import (
    AirPlayChannel,
    AppleMobileChannel,
    EndpointConfirmer,
    GoogleCastChannel,
    ServiceDiscoveryChannel,
    confirm_endpoint,
)
from .subnet import compute_host_range, format_subnet

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Any]
CompletionCallback = Callable[[List[Device]], Any]
FailureCallback = Callable[[Exception], Any]

CHANNEL_CLASSES: Tuple[Type[ServiceDiscoveryChannel], ...] = (
    AppleMobileChannel,
    AirPlayChannel,
    GoogleCastChannel,
)


@dataclass
class SweepFinished:
    """Queued after the last ProbeCompleted of a sweep."""
    error: Optional[BaseException] = None


@dataclass
class ScanSession:
    """State of one scan. Only the session task mutates it."""
    on_progress: Optional[ProgressCallback] = None
    on_complete: Optional[CompletionCallback] = None
    on_failure: Optional[FailureCallback] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    local_address: str = ""
    netmask: str = ""
    gateway: Optional[str] = None
    hosts: List[str] = field(default_factory=list)
    reachable: Dict[str, Device] = field(default_factory=dict)
    services: Dict[ServiceKind, List[DiscoveredService]] = field(
        default_factory=lambda: {kind: [] for kind in ServiceKind}
    )
    completed: int = 0
    provider: Optional[ServiceDiscoveryProvider] = None
    channels: List[ServiceDiscoveryChannel] = field(default_factory=list)
    sweep_task: Optional[asyncio.Task] = None
    task: Optional[asyncio.Task] = None

    @property
    def total(self) -> int:
        return len(self.hosts)

    def emit(self, event: Any) -> None:
        self.queue.put_nowait(event)


class NetworkScanner:
    """
    Discovers devices on the local subnet.

    A scan pings every host of the subnet while three mDNS channels
    (Apple mobile-device, AirPlay, Cast) listen for advertisements. When
    the last host has been probed and the discovery grace period has
    elapsed, the reachable hosts are merged with whatever services were
    found and the result is reported.
    """

    def __init__(
        self,
        environment: Optional[NetworkEnvironment] = None,
        permission_gate: Optional[PermissionGate] = None,
        echo_transport: Optional[EchoTransport] = None,
        provider_factory: Optional[Callable[[], ServiceDiscoveryProvider]] = None,
        probe_policy: Optional[ProbePolicy] = None,
        workers: Optional[int] = None,
        grace_period: Optional[float] = None,
        resolve_timeout: Optional[float] = None,
        confirm_timeout: Optional[float] = None,
        confirm: EndpointConfirmer = confirm_endpoint,
    ):
        self.environment = environment or NetifacesEnvironment(settings.NETWORK_INTERFACE)
        if permission_gate is None:
            if settings.REQUIRE_PERMISSION_PROBE:
                permission_gate = MulticastPermissionGate(self.environment.local_ipv4_address)
            else:
                permission_gate = StaticPermissionGate(True)
        self.permission_gate = permission_gate
        self.echo_transport = echo_transport or PingTransport()
        self.provider_factory = provider_factory or self._zeroconf_provider
        self.probe_policy = probe_policy or ProbePolicy(
            timeout=settings.PING_TIMEOUT,
            interval=settings.PING_INTERVAL,
            max_timeouts=settings.PING_MAX_TIMEOUTS,
            max_send_failures=settings.PING_MAX_SEND_FAILURES,
        )
        self.workers = workers or settings.PROBE_WORKERS
        self.grace_period = settings.DISCOVERY_GRACE_PERIOD if grace_period is None else grace_period
        self.resolve_timeout = resolve_timeout or settings.SERVICE_RESOLVE_TIMEOUT
        self.confirm_timeout = confirm_timeout or settings.ENDPOINT_CONFIRM_TIMEOUT
        self.confirm = confirm

        self.last_result: Optional[ScanResult] = None
        self._state = ScanState.IDLE
        self._session: Optional[ScanSession] = None
        # one session at a time: start() stops and creates under the lock
        self._lock = asyncio.Lock()
        self._callbacks = []

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._session is not None

    @property
    def progress(self) -> Tuple[int, int]:
        """(completed, total) of the running scan, (0, 0) when idle."""
        session = self._session
        if session is None:
            return (0, 0)
        return (session.completed, session.total)

    def _zeroconf_provider(self) -> ZeroconfProvider:
        """Browse only on the scanned interface's address when it is known."""
        address = self.environment.local_ipv4_address()
        return ZeroconfProvider([address] if address else None)

    def register_callback(self, callback):
        """Register a callback for scan events."""
        self._callbacks.append(callback)

    def unregister_callback(self, callback):
        """Unregister a callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def _notify_callbacks(self, event_type: str, data: dict):
        """Notify all registered callbacks."""
        for callback in self._callbacks:
            try:
                await callback(event_type, data)
            except Exception as e:
                logger.error(f"Callback error: {e}")

    async def _invoke(self, callback: Optional[Callable], *args) -> None:
        """Call a plain or coroutine callback; its errors never break the scan."""
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Callback error: {e}")

    async def start(
        self,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompletionCallback] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> None:
        """
        Start a scan in the background.

        Any scan already running is stopped and discarded first. Returns as
        soon as the scan is scheduled.

        Args:
            on_progress: Called with (completed, total) after every probed host
            on_complete: Called once with the final device list
            on_failure: Called once if the scan cannot run (e.g. permission denied)
        """
        async with self._lock:
            await self._stop_session()

            session = ScanSession(
                on_progress=on_progress,
                on_complete=on_complete,
                on_failure=on_failure,
            )
            self._session = session
            self._state = ScanState.AUTHORIZING
            session.task = asyncio.create_task(self._run(session))

    async def stop(self) -> None:
        """Cancel the running scan, if any. No callback fires afterwards."""
        async with self._lock:
            await self._stop_session()

    async def _stop_session(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        self._state = ScanState.IDLE

        task = session.task
        if task is not None and not task.done():
            task.cancel()
            if task is not asyncio.current_task():
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        await self._teardown(session)
        logger.info("Scan stopped")

    async def scan(self, on_progress: Optional[ProgressCallback] = None) -> List[Device]:
        """
        Run one scan and return its devices.

        Raises:
            PermissionDeniedError: Local network access was refused
            ScanError: The scan was stopped before it finished
        """
        outcome: Dict[str, Any] = {}

        def completed(devices: List[Device]) -> None:
            outcome['devices'] = devices

        def failed(error: Exception) -> None:
            outcome['error'] = error

        await self.start(on_progress, completed, failed)
        task = self._session.task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            await self.stop()
            raise

        if 'error' in outcome:
            raise outcome['error']
        if 'devices' not in outcome:
            raise ScanError("Scan was stopped before it finished")
        return outcome['devices']

    async def _run(self, session: ScanSession) -> None:
        error: Optional[Exception] = None
        devices: List[Device] = []
        try:
            devices = await self._scan(session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
        finally:
            await self._teardown(session)

        if self._session is session:
            self._session = None
            self._state = ScanState.IDLE

        subnet = format_subnet(session.local_address, session.netmask)

        if error is not None:
            logger.error(f"Scan failed: {error}")
            await self._notify_callbacks("scan_failed", {"error": str(error)})
            await self._invoke(session.on_failure, error)
            return

        self.last_result = ScanResult(
            devices=devices,
            started_at=session.started_at,
            completed_at=datetime.now(timezone.utc),
            subnet=subnet,
            hosts_probed=session.total,
        )
        logger.info(f"Scan completed: {len(devices)} devices on {subnet or 'no subnet'}")
        await self._notify_callbacks("scan_completed", {
            "subnet": subnet,
            "devices_found": len(devices),
            "hosts_probed": session.total,
        })
        await self._invoke(session.on_complete, devices)

    def _set_state(self, session: ScanSession, state: ScanState) -> None:
        if self._session is session:
            self._state = state

    async def _authorize(self) -> bool:
        try:
            return await self.permission_gate.request_authorization()
        except Exception as e:
            logger.error(f"Permission check failed: {e}")
            return False

    async def _scan(self, session: ScanSession) -> List[Device]:
        self._set_state(session, ScanState.AUTHORIZING)
        if not await self._authorize():
            raise PermissionDeniedError()

        session.local_address = self.environment.local_ipv4_address() or ""
        session.netmask = self.environment.local_ipv4_netmask() or ""
        session.gateway = self.environment.default_gateway_ipv4() or None

        if session.local_address and session.netmask:
            session.hosts = compute_host_range(session.local_address, session.netmask)
        else:
            logger.warning(f"Cannot scan: {NoNetworkError()}")
            session.hosts = []

        subnet = format_subnet(session.local_address, session.netmask)
        logger.info(f"Scanning {subnet or 'no subnet'}: {session.total} hosts, gateway {session.gateway}")
        await self._notify_callbacks("scan_started", {
            "subnet": subnet,
            "total": session.total,
        })

        await self._start_channels(session)

        sweep = ProbeSweep(ReachabilityProber(self.echo_transport, self.probe_policy), self.workers)
        session.sweep_task = asyncio.create_task(sweep.run(session.hosts, session.emit))
        session.sweep_task.add_done_callback(
            lambda task: session.emit(SweepFinished(
                None if task.cancelled() else task.exception()
            ))
        )
        self._set_state(session, ScanState.SCANNING)

        while True:
            event = await session.queue.get()
            if isinstance(event, SweepFinished):
                if event.error is not None:
                    raise ScanError(f"Reachability sweep failed: {event.error}") from event.error
                break
            await self._handle_event(session, event)

        await self._collect_grace_period(session)

        self._set_state(session, ScanState.CORRELATING)
        hosts = [session.reachable[host] for host in session.hosts if host in session.reachable]
        return merge_devices(
            hosts,
            session.services[ServiceKind.APPLE_MOBILE],
            session.services[ServiceKind.AIRPLAY],
            session.services[ServiceKind.GOOGLE_CAST],
        )

    async def _start_channels(self, session: ScanSession) -> None:
        session.provider = self.provider_factory()

        def on_discovered(service: DiscoveredService) -> None:
            session.emit(ServiceFound(service))

        for channel_class in CHANNEL_CLASSES:
            channel = channel_class(
                session.provider,
                resolve_timeout=self.resolve_timeout,
                confirm_timeout=self.confirm_timeout,
                confirm=self.confirm,
            )
            session.channels.append(channel)
            try:
                await channel.start(on_discovered)
            except Exception as e:
                logger.warning(f"Could not browse {channel.service_type}: {e}")

    async def _collect_grace_period(self, session: ScanSession) -> None:
        """Keep folding in service events for `grace_period` seconds after the sweep."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.grace_period

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                event = await asyncio.wait_for(session.queue.get(), timeout=remaining)
            except asyncio.TimeoutError:
                break
            await self._handle_event(session, event)

        while not session.queue.empty():
            await self._handle_event(session, session.queue.get_nowait())

    async def _handle_event(self, session: ScanSession, event: Any) -> None:
        if isinstance(event, ProbeCompleted):
            session.completed += 1
            if event.reachable:
                device_type = DeviceType.ROUTER if event.host == session.gateway else DeviceType.REGULAR
                session.reachable[event.host] = Device(
                    name=event.host,
                    host=event.host,
                    type=device_type,
                )
            await self._invoke(session.on_progress, session.completed, session.total)
            await self._notify_callbacks("scan_progress", {
                "completed": session.completed,
                "total": session.total,
            })
        elif isinstance(event, ServiceFound):
            service = rewrite_loopback(event.service, session.local_address)
            session.services[service.kind].append(service)

    async def _teardown(self, session: ScanSession) -> None:
        """Stop the sweep, the channels and the responder. Idempotent."""
        sweep_task, session.sweep_task = session.sweep_task, None
        if sweep_task is not None:
            if not sweep_task.done():
                sweep_task.cancel()
            await asyncio.gather(sweep_task, return_exceptions=True)

        channels, session.channels = session.channels, []
        for channel in channels:
            await channel.stop()

        provider, session.provider = session.provider, None
        if provider is not None:
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"Error closing service discovery: {e}")
