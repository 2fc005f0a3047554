"""
ICMP reachability probing.

A probing unit pings one host periodically until it answers or the retry
policy gives up on it. A sweep runs one unit per host under a bounded
worker pool and reports each unit's completion as it happens.
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from ..core.errors import TransportError
from .models import ProbeCompleted

logger = logging.getLogger(__name__)


class EchoOutcome(str, Enum):
    REPLY = "reply"
    TIMEOUT = "timeout"
    SEND_FAILED = "send_failed"


class ProbeResult(str, Enum):
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


@dataclass
class ProbePolicy:
    """Timeout/retry policy for one probing unit."""
    timeout: float = 2.0
    interval: float = 1.0
    max_timeouts: int = 2
    max_send_failures: int = 10


class EchoTransport:
    """Sends a single echo request to a host and reports what happened."""

    async def echo(self, host: str, timeout: float) -> EchoOutcome:
        raise NotImplementedError


class PingTransport(EchoTransport):
    """Echo transport backed by the system `ping` binary."""

    def __init__(self, binary: str = "ping"):
        self.binary = binary

    @staticmethod
    def is_available(binary: str = "ping") -> bool:
        return shutil.which(binary) is not None

    async def echo(self, host: str, timeout: float) -> EchoOutcome:
        wait = str(max(1, int(round(timeout))))
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary, "-c", "1", "-W", wait, host,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL
            )
        except (FileNotFoundError, PermissionError) as e:
            raise TransportError(f"Cannot run {self.binary}: {e}") from e

        try:
            await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        # iputils ping: 0 = reply, 1 = no reply, 2 = any other error
        if process.returncode == 0:
            return EchoOutcome.REPLY
        if process.returncode == 1:
            return EchoOutcome.TIMEOUT
        return EchoOutcome.SEND_FAILED


class ReachabilityProber:
    """Decides whether one host answers echo requests."""

    def __init__(self, transport: EchoTransport, policy: Optional[ProbePolicy] = None):
        self.transport = transport
        self.policy = policy or ProbePolicy()

    async def probe(self, host: str) -> ProbeResult:
        """
        Ping `host` every `policy.interval` seconds until it replies.

        Gives up after more than `max_timeouts` consecutive timeouts, more
        than `max_send_failures` consecutive send failures, or the first
        unrecoverable transport error.
        """
        loop = asyncio.get_running_loop()
        timeouts = 0
        send_failures = 0

        while True:
            started = loop.time()
            try:
                outcome = await self.transport.echo(host, self.policy.timeout)
            except TransportError as e:
                logger.debug(f"Probe of {host} aborted: {e}")
                return ProbeResult.UNREACHABLE

            if outcome == EchoOutcome.REPLY:
                return ProbeResult.REACHABLE

            if outcome == EchoOutcome.TIMEOUT:
                timeouts += 1
                send_failures = 0
                if timeouts > self.policy.max_timeouts:
                    return ProbeResult.UNREACHABLE
            else:
                send_failures += 1
                timeouts = 0
                if send_failures > self.policy.max_send_failures:
                    return ProbeResult.UNREACHABLE

            remaining = self.policy.interval - (loop.time() - started)
            if remaining > 0:
                await asyncio.sleep(remaining)


class ProbeSweep:
    """Runs one probing unit per host under a bounded worker pool."""

    def __init__(self, prober: ReachabilityProber, workers: int = 64):
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.prober = prober
        self.workers = workers

    async def run(self, hosts: List[str], emit: Callable[[ProbeCompleted], None]) -> None:
        """
        Probe every host, calling `emit` once per host as each unit completes.

        Returns when all units have completed. Cancelling the sweep cancels
        every in-flight unit.
        """
        if not hosts:
            return

        semaphore = asyncio.Semaphore(self.workers)

        async def unit(host: str) -> None:
            async with semaphore:
                try:
                    result = await self.prober.probe(host)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning(f"Probe of {host} failed: {e}")
                    result = ProbeResult.UNREACHABLE
            emit(ProbeCompleted(host=host, reachable=result == ProbeResult.REACHABLE))

        tasks = [asyncio.create_task(unit(host)) for host in hosts]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
