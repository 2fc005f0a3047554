"""Tests for reachability probing and the bounded sweep."""

import asyncio

import pytest

from lanscan.core.errors import TransportError
from lanscan.scanner.ping_prober import (
    EchoOutcome,
    PingTransport,
    ProbePolicy,
    ProbeResult,
    ProbeSweep,
    ReachabilityProber,
)

from .conftest import FakeEchoTransport


@pytest.fixture
def policy():
    return ProbePolicy(timeout=0.01, interval=0.0, max_timeouts=2, max_send_failures=10)


class TestReachabilityProber:
    """Tests for a single probing unit."""

    @pytest.mark.asyncio
    async def test_reply_is_reachable(self, policy):
        """Should report reachable on the first reply."""
        transport = FakeEchoTransport(alive={"10.0.0.2"})
        prober = ReachabilityProber(transport, policy)

        assert await prober.probe("10.0.0.2") == ProbeResult.REACHABLE
        assert transport.calls == ["10.0.0.2"]

    @pytest.mark.asyncio
    async def test_gives_up_after_timeout_limit(self, policy):
        """Should stop once timeouts exceed the limit."""
        transport = FakeEchoTransport()
        prober = ReachabilityProber(transport, policy)

        assert await prober.probe("10.0.0.3") == ProbeResult.UNREACHABLE
        assert len(transport.calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_send_failure_limit(self, policy):
        """Should stop once send failures exceed the limit."""
        transport = FakeEchoTransport(script={"10.0.0.4": [EchoOutcome.SEND_FAILED] * 20})
        prober = ReachabilityProber(transport, policy)

        assert await prober.probe("10.0.0.4") == ProbeResult.UNREACHABLE
        assert len(transport.calls) == 11

    @pytest.mark.asyncio
    async def test_late_reply_is_reachable(self, policy):
        """Should keep trying while under the limits."""
        transport = FakeEchoTransport(
            alive={"10.0.0.5"},
            script={"10.0.0.5": [EchoOutcome.TIMEOUT, EchoOutcome.SEND_FAILED, EchoOutcome.TIMEOUT]},
        )
        prober = ReachabilityProber(transport, policy)

        assert await prober.probe("10.0.0.5") == ProbeResult.REACHABLE
        assert len(transport.calls) == 4

    @pytest.mark.asyncio
    async def test_send_failure_resets_timeout_streak(self, policy):
        """Should only count consecutive timeouts."""
        script = [EchoOutcome.TIMEOUT, EchoOutcome.TIMEOUT, EchoOutcome.SEND_FAILED,
                  EchoOutcome.TIMEOUT, EchoOutcome.TIMEOUT, EchoOutcome.REPLY]
        transport = FakeEchoTransport(script={"10.0.0.6": script})
        prober = ReachabilityProber(transport, policy)

        assert await prober.probe("10.0.0.6") == ProbeResult.REACHABLE

    @pytest.mark.asyncio
    async def test_transport_error_is_unreachable(self, policy):
        """Should end the unit on an unrecoverable transport error."""
        transport = FakeEchoTransport(
            alive={"10.0.0.7"},
            script={"10.0.0.7": [TransportError("socket closed")]},
        )
        prober = ReachabilityProber(transport, policy)

        assert await prober.probe("10.0.0.7") == ProbeResult.UNREACHABLE
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_attempts_are_paced(self):
        """Should wait out the interval between attempts."""
        transport = FakeEchoTransport()
        prober = ReachabilityProber(transport, ProbePolicy(timeout=0.01, interval=0.05, max_timeouts=2))
        loop = asyncio.get_running_loop()

        started = loop.time()
        await prober.probe("10.0.0.8")

        assert loop.time() - started >= 0.09


class TestProbeSweep:
    """Tests for the bounded worker pool."""

    def test_rejects_empty_pool(self, policy):
        """Should require at least one worker."""
        with pytest.raises(ValueError):
            ProbeSweep(ReachabilityProber(FakeEchoTransport(), policy), workers=0)

    @pytest.mark.asyncio
    async def test_emits_once_per_host(self, policy):
        """Should report every host exactly once."""
        hosts = [f"10.0.0.{d}" for d in range(1, 21)]
        transport = FakeEchoTransport(alive={"10.0.0.3", "10.0.0.17"}, jitter=0.01)
        events = []

        await ProbeSweep(ReachabilityProber(transport, policy), workers=5).run(hosts, events.append)

        assert sorted(e.host for e in events) == sorted(hosts)
        assert {e.host for e in events if e.reachable} == {"10.0.0.3", "10.0.0.17"}

    @pytest.mark.asyncio
    async def test_respects_worker_bound(self, policy):
        """Should never run more units at once than there are workers."""
        hosts = [f"10.0.1.{d}" for d in range(1, 41)]
        transport = FakeEchoTransport(alive=set(hosts), jitter=0.005)

        await ProbeSweep(ReachabilityProber(transport, policy), workers=3).run(hosts, lambda e: None)

        assert transport.max_active <= 3
        assert len(transport.calls) == 40

    @pytest.mark.asyncio
    async def test_empty_host_list(self, policy):
        """Should finish immediately without emitting."""
        events = []

        await ProbeSweep(ReachabilityProber(FakeEchoTransport(), policy)).run([], events.append)

        assert events == []

    @pytest.mark.asyncio
    async def test_unit_error_counts_as_unreachable(self, policy):
        """Should report a host whose probe blew up as unreachable."""
        transport = FakeEchoTransport(script={"10.0.0.9": [RuntimeError("boom")]})
        events = []

        await ProbeSweep(ReachabilityProber(transport, policy)).run(["10.0.0.9"], events.append)

        assert len(events) == 1
        assert events[0].reachable is False

    @pytest.mark.asyncio
    async def test_cancel_stops_units(self, policy):
        """Should cancel in-flight units when the sweep is cancelled."""
        transport = FakeEchoTransport(block=True)
        events = []
        sweep = ProbeSweep(ReachabilityProber(transport, policy), workers=2)

        task = asyncio.create_task(sweep.run(["10.0.0.1", "10.0.0.2", "10.0.0.3"], events.append))
        await asyncio.sleep(0.02)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert events == []
        assert transport.active == 0


class _FakeProcess:

    def __init__(self, returncode):
        self._code = returncode
        self.returncode = None

    async def wait(self):
        self.returncode = self._code
        return self._code

    def kill(self):
        pass


class _HangingProcess:

    def __init__(self):
        self.returncode = None
        self.killed = False
        self.waits = 0
        self._exited = asyncio.Event()

    async def wait(self):
        self.waits += 1
        await self._exited.wait()
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9
        self._exited.set()


class TestPingTransport:
    """Tests for the ping-binary transport."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,outcome", [
        (0, EchoOutcome.REPLY),
        (1, EchoOutcome.TIMEOUT),
        (2, EchoOutcome.SEND_FAILED),
    ])
    async def test_exit_codes(self, monkeypatch, code, outcome):
        """Should map ping's exit status to an echo outcome."""
        calls = []

        async def fake_exec(*args, **kwargs):
            calls.append(args)
            return _FakeProcess(code)

        monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)

        assert await PingTransport().echo("192.168.1.1", 2.0) == outcome
        assert calls == [("ping", "-c", "1", "-W", "2", "192.168.1.1")]

    @pytest.mark.asyncio
    async def test_missing_binary(self, monkeypatch):
        """Should raise TransportError when ping cannot be run."""

        async def fake_exec(*args, **kwargs):
            raise FileNotFoundError(args[0])

        monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)

        with pytest.raises(TransportError):
            await PingTransport("no-such-ping").echo("192.168.1.1", 1.0)

    @pytest.mark.asyncio
    async def test_cancel_kills_and_reaps(self, monkeypatch):
        """Should kill the ping process and wait for it when cancelled."""
        process = _HangingProcess()

        async def fake_exec(*args, **kwargs):
            return process

        monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)

        task = asyncio.create_task(PingTransport().echo("192.168.1.1", 1.0))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert process.killed
        assert process.waits == 2
        assert process.returncode == -9
