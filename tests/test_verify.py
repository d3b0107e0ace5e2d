"""
Brief: Tests for addrselect.verify single-fire verification race.

Inputs:
  - None

Outputs:
  - None
"""

import asyncio
import socket
import threading

import pytest

from addrselect.verify import (
    Failed,
    Ready,
    SingleFireGate,
    TimedOut,
    probe_tcp_connection,
    verify_tcp_connection,
)


class _Writer:
    def __init__(self, peer):
        self._peer = peer
        self.closed = False
        self.written = []

    def get_extra_info(self, key):
        if key == "peername":
            return self._peer
        return None

    def write(self, data):  # pragma: no cover - must never be called
        self.written.append(data)

    def close(self):
        self.closed = True


def test_gate_delivers_first_outcome_only():
    """
    Brief: A late failure after Ready is discarded without raising.

    Inputs:
      - Ready then Failed then TimedOut

    Outputs:
      - None: Asserts only the first outcome is kept
    """
    gate = SingleFireGate()
    assert gate.fire(Ready("192.0.2.1")) is True
    assert gate.fire(Failed("late")) is False
    assert gate.fire(TimedOut()) is False
    assert gate.outcome == Ready("192.0.2.1")
    assert gate.fired


def test_gate_failure_then_ready_keeps_failure():
    gate = SingleFireGate()
    gate.fire(Failed("refused"))
    gate.fire(Ready("192.0.2.1"))
    assert gate.outcome == Failed("refused")


def test_gate_wait_resolves_once_under_thread_race():
    """
    Brief: Many threads racing fire() produce exactly one delivery.

    Inputs:
      - 16 threads firing distinct Ready outcomes

    Outputs:
      - None: Asserts one winner and wait() returns it
    """

    async def run():
        loop = asyncio.get_running_loop()
        gate = SingleFireGate(loop)
        wins = []
        barrier = threading.Barrier(16)

        def worker(i):
            barrier.wait()
            if gate.fire(Ready(f"192.0.2.{i}")):
                wins.append(i)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        outcome = await gate.wait()
        return wins, outcome, gate.outcome

    wins, outcome, stored = asyncio.run(run())
    assert len(wins) == 1
    assert outcome == stored == Ready(f"192.0.2.{wins[0]}")


def test_gate_wait_without_loop_raises():
    with pytest.raises(RuntimeError):
        asyncio.run(SingleFireGate().wait())


def test_probe_ready_returns_peer_and_closes_without_payload():
    writer = _Writer(("2001:db8::1%eth0", 443, 0, 0))

    async def connect(host, port):
        assert (host, port) == ("example.com", 443)
        return object(), writer

    outcome = asyncio.run(probe_tcp_connection("example.com", 443, connect=connect))
    assert outcome == Ready("2001:db8::1")
    assert writer.closed
    assert writer.written == []


def test_probe_failed_connection():
    async def connect(host, port):
        raise ConnectionRefusedError("refused")

    outcome = asyncio.run(probe_tcp_connection("example.com", 443, connect=connect))
    assert isinstance(outcome, Failed)
    assert "refused" in outcome.reason


def test_probe_timeout_then_late_failure_is_ignored():
    """
    Brief: A timer firing first wins; the cancelled attempt's callback is dropped.

    Inputs:
      - connect coroutine that never completes

    Outputs:
      - None: Asserts TimedOut delivered without errors
    """
    cancelled = []

    async def connect(host, port):
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise
        raise AssertionError("unreachable")

    async def run():
        outcome = await probe_tcp_connection("example.com", 443, timeout=0.05, connect=connect)
        # Give the cancelled attempt a chance to run its done callback.
        await asyncio.sleep(0.01)
        return outcome

    assert asyncio.run(run()) == TimedOut()
    assert cancelled == [True]


@pytest.mark.parametrize("port", [0, 70000, -1, "abc"])
def test_probe_invalid_port_fails_without_connecting(port):
    called = []

    async def connect(host, p):  # pragma: no cover - must not be called
        called.append(p)
        return object(), _Writer(("192.0.2.1", p))

    outcome = asyncio.run(probe_tcp_connection("example.com", port, connect=connect))
    assert isinstance(outcome, Failed)
    assert called == []


def test_probe_missing_peer_reports_failure():
    writer = _Writer(None)

    async def connect(host, port):
        return object(), writer

    outcome = asyncio.run(probe_tcp_connection("example.com", 443, connect=connect))
    assert outcome == Failed("remote endpoint unavailable")
    assert writer.closed


def test_verify_tcp_connection_maps_outcomes():
    async def ok(host, port):
        return object(), _Writer(("192.0.2.5", port))

    async def bad(host, port):
        raise OSError("unreachable")

    assert asyncio.run(verify_tcp_connection("example.com", 80, connect=ok)) == "192.0.2.5"
    assert asyncio.run(verify_tcp_connection("example.com", 80, connect=bad)) is None


@pytest.mark.slow
def test_verify_against_local_listener():
    """
    Brief: Real connection to a localhost listener reports 127.0.0.1.

    Inputs:
      - a listening socket on 127.0.0.1

    Outputs:
      - None: Asserts verified address
    """
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.bind(("127.0.0.1", 0))
    srv.listen(1)
    port = srv.getsockname()[1]
    try:
        assert asyncio.run(verify_tcp_connection("127.0.0.1", port, timeout=2.0)) == "127.0.0.1"
    finally:
        srv.close()
