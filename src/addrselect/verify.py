"""Live TCP verification of the address the OS actually picks.

Brief:
  Open a TCP connection to (host, port), read the peer address off the
  established connection and close it straight away without sending any
  payload. The result is advisory: a failure or timeout only means "no
  verified address".

Notes:
  - Three completion sources race: the connection succeeding, the
    connection failing and a timer. All of them go through a
    SingleFireGate, which delivers the first outcome and drops the rest.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_VERIFY_TIMEOUT = 3.0


@dataclass(frozen=True)
class Ready:
    """Connection established; address is the numeric peer address."""

    address: str


@dataclass(frozen=True)
class Failed:
    """Connection attempt errored (refused, unreachable, resolution failure)."""

    reason: str


@dataclass(frozen=True)
class TimedOut:
    """Neither Ready nor Failed arrived within the timeout."""


Outcome = Union[Ready, Failed, TimedOut]

Connector = Callable[[str, int], Awaitable[Tuple[Any, Any]]]


class SingleFireGate:
    """Brief: One-shot latch that accepts the first outcome only.

    Inputs:
      - loop: Optional event loop. When given, wait() can be awaited for the
        delivered outcome.

    Outputs:
      - SingleFireGate instance.

    Notes:
      - fire() is safe to call from any thread and any number of times; only
        the first call is delivered, later calls return False.

    Example:
      >>> gate = SingleFireGate()
      >>> gate.fire(Ready("192.0.2.1"))
      True
      >>> gate.fire(Failed("late"))
      False
      >>> gate.outcome
      Ready(address='192.0.2.1')
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._lock = threading.Lock()
        self._fired = False
        self._outcome: Optional[Outcome] = None
        self._loop = loop
        self._future: Optional[asyncio.Future] = (
            loop.create_future() if loop is not None else None
        )

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def outcome(self) -> Optional[Outcome]:
        return self._outcome

    def fire(self, outcome: Outcome) -> bool:
        with self._lock:
            if self._fired:
                logger.debug("Discarding late verification outcome %r", outcome)
                return False
            self._fired = True
            self._outcome = outcome

        if self._future is not None and self._loop is not None:
            self._loop.call_soon_threadsafe(self._deliver, outcome)
        return True

    def _deliver(self, outcome: Outcome) -> None:
        if self._future is not None and not self._future.done():
            self._future.set_result(outcome)

    async def wait(self) -> Outcome:
        if self._future is None:
            raise RuntimeError("SingleFireGate.wait() requires an event loop")
        return await self._future


def _peer_address(writer: Any) -> Optional[str]:
    """Brief: Numeric remote address of an established stream, zone stripped."""

    peer = None
    try:
        peer = writer.get_extra_info("peername")
    except (AttributeError, OSError):
        peer = None
    if not peer:
        try:
            sock = writer.get_extra_info("socket")
            peer = sock.getpeername() if sock is not None else None
        except (AttributeError, OSError):
            peer = None
    if isinstance(peer, (tuple, list)) and peer:
        return str(peer[0]).split("%", 1)[0]
    if isinstance(peer, str) and peer:
        return peer.split("%", 1)[0]
    return None


def _close(writer: Any) -> None:
    try:
        writer.close()
    except (AttributeError, OSError, RuntimeError) as exc:
        logger.debug("Closing verification connection failed: %s", exc)


async def probe_tcp_connection(
    host: str,
    port: int,
    *,
    timeout: float = DEFAULT_VERIFY_TIMEOUT,
    connect: Optional[Connector] = None,
) -> Outcome:
    """Brief: Race a TCP connect against a timer and report the first outcome.

    Inputs:
      - host: Hostname (resolved by the platform's connect path) or address.
      - port: TCP port, 1..65535.
      - timeout: Seconds before TimedOut fires.
      - connect: Optional coroutine function (host, port) -> (reader, writer);
        defaults to asyncio.open_connection.

    Outputs:
      - Ready(address) | Failed(reason) | TimedOut(). Never raises for
        network errors.
    """

    try:
        port_num = int(port)
    except (TypeError, ValueError):
        return Failed(f"invalid port {port!r}")
    if not 1 <= port_num <= 65535:
        return Failed(f"invalid port {port_num}")

    loop = asyncio.get_running_loop()
    gate = SingleFireGate(loop)
    opener = connect or asyncio.open_connection

    async def _attempt() -> Tuple[Any, Any]:
        return await opener(host, port_num)

    task = loop.create_task(_attempt())

    def _on_done(t: asyncio.Task) -> None:
        if t.cancelled():
            gate.fire(Failed("cancelled"))
            return
        exc = t.exception()
        if exc is not None:
            gate.fire(Failed(str(exc) or type(exc).__name__))
            return
        _reader, writer = t.result()
        address = _peer_address(writer)
        # Tear down before reporting; no payload is ever exchanged.
        _close(writer)
        if address:
            gate.fire(Ready(address))
        else:
            gate.fire(Failed("remote endpoint unavailable"))

    task.add_done_callback(_on_done)
    timer = loop.call_later(max(0.0, float(timeout)), gate.fire, TimedOut())
    try:
        outcome = await gate.wait()
    finally:
        timer.cancel()
        if not task.done():
            task.cancel()
    return outcome


async def verify_tcp_connection(
    host: str,
    port: int,
    *,
    timeout: float = DEFAULT_VERIFY_TIMEOUT,
    connect: Optional[Connector] = None,
) -> Optional[str]:
    """Brief: Address the OS connected to, or None when unverifiable.

    Inputs:
      - host, port, timeout, connect: see probe_tcp_connection().

    Outputs:
      - str address on Ready; None on Failed/TimedOut.
    """

    outcome = await probe_tcp_connection(host, port, timeout=timeout, connect=connect)
    if isinstance(outcome, Ready):
        logger.debug("TCP ready remote=%s domain=%s", outcome.address, host)
        return outcome.address
    if isinstance(outcome, Failed):
        logger.debug("TCP verification failed domain=%s error=%s", host, outcome.reason)
    else:
        logger.debug("TCP verification timed out domain=%s after %ss", host, timeout)
    return None
