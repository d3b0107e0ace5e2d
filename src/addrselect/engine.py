"""Lookup pipeline orchestration.

Brief:
  AddressEngine ties the components together behind the lookup cache:

    cache hit            -> cached LookupResult
    in-flight for domain -> shared pending LookupResult
    miss                 -> classify -> resolve candidates -> probe capability
                            -> policy sort (+ TCP verification in parallel)
                            -> cache write when non-empty

Notes:
  - The verification race is started next to candidate resolution and only
    fills the verified_address slot. A lookup waits for it at most
    verification.grace_seconds after sorting; a later winner is written into
    the cached result in place.
  - No exception escapes a pipeline run. Unexpected errors are logged and
    turn into an empty LookupResult so coalesced waiters are released.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import threading
from typing import Optional, Set

from .cache import Clock, CoalescingCache
from .capability import CapabilityProber, confirm_global_ipv6
from .classifier import classify_hostname
from .config.config_schema import AddressSelectConfig
from .models import EMPTY_RESULT, LocalCapabilityState, LookupResult
from .policy import sort_addresses
from .reachability import Ipv6ReachabilityProbe
from .resolver import GetAddrInfo, resolve_candidates
from .verify import Connector, verify_tcp_connection

logger = logging.getLogger(__name__)


def normalize_domain(domain: str) -> str:
    """Brief: Cache key form of a domain: trimmed, lowercased, no trailing dot."""
    s = str(domain or "").strip().lower()
    if s.endswith(".") and not s.startswith("["):
        s = s.rstrip(".")
    return s


def _is_cacheable(result: LookupResult) -> bool:
    return isinstance(result, LookupResult) and not result.is_empty


class AddressEngine:
    """Brief: Resolve domains to ordered, optionally verified addresses.

    Inputs:
      - config: AddressSelectConfig (defaults when None).
      - getaddrinfo: Optional blocking getaddrinfo replacement.
      - connect: Optional coroutine function used for TCP verification.
      - capability_prober: Optional CapabilityProber.
      - reachability: Optional Ipv6ReachabilityProbe; created from config
        when capability.confirm_ipv6_reachability is enabled.
      - clock: Optional clock for the lookup cache.

    Outputs:
      - AddressEngine instance.

    Example:
      >>> import asyncio
      >>> engine = AddressEngine()
      >>> asyncio.run(engine.resolve("192.0.2.2", 443)).best_address
      '192.0.2.2'
    """

    def __init__(
        self,
        config: Optional[AddressSelectConfig] = None,
        *,
        getaddrinfo: Optional[GetAddrInfo] = None,
        connect: Optional[Connector] = None,
        capability_prober: Optional[CapabilityProber] = None,
        reachability: Optional[Ipv6ReachabilityProbe] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config or AddressSelectConfig()
        self.default_port = int(self.config.default_port)
        self._getaddrinfo = getaddrinfo
        self._connect = connect

        self.capability = capability_prober or CapabilityProber(
            memo_seconds=self.config.capability.memo_seconds
        )
        if reachability is None and self.config.capability.confirm_ipv6_reachability:
            rcfg = self.config.reachability
            reachability = Ipv6ReachabilityProbe(
                url=rcfg.url, ttl=rcfg.ttl_seconds, timeout=rcfg.timeout_seconds
            )
        self.reachability = reachability

        self.cache = CoalescingCache(
            self.config.cache.ttl_seconds,
            self.run_pipeline,
            should_cache=_is_cacheable,
            clock=clock,
            name="lookup",
        )
        # Verification races still running after their lookup returned.
        self._verifications: Set[asyncio.Task] = set()
        self._lock = threading.Lock()

    # ---------------- Lifecycle -----------------

    def start(self) -> None:
        """Start background cache sweeping when enabled in config."""
        if self.config.cache.sweep:
            self.cache.start_sweeper()
            if self.reachability is not None:
                self.reachability.cache.start_sweeper()

    def close(self) -> None:
        self.cache.stop_sweeper()
        if self.reachability is not None:
            self.reachability.cache.stop_sweeper()

    # ---------------- Public API -----------------

    async def resolve(self, domain: str, port: Optional[int] = None) -> LookupResult:
        """Brief: Cached, coalesced lookup of domain.

        Inputs:
          - domain: Hostname or IP literal.
          - port: TCP port used for verification (default: config.default_port).

        Outputs:
          - LookupResult; empty when no usable address could be determined.
        """

        key = normalize_domain(domain)
        if not key:
            return EMPTY_RESULT
        return await self.cache.get(key, self.default_port if port is None else port)

    async def resolve_address(
        self, domain: str, port: Optional[int] = None
    ) -> Optional[str]:
        """Brief: Narrowed view of resolve(): the single best address or None."""

        result = await self.resolve(domain, port)
        return result.best_address

    async def run_pipeline(self, domain: str, port: int) -> LookupResult:
        """Brief: One uncached pipeline run; never raises."""

        try:
            return await self._pipeline(domain, port)
        except Exception:
            logger.warning("Lookup pipeline failed for %s", domain, exc_info=True)
            return EMPTY_RESULT

    # ---------------- Internal helpers -----------------

    async def _probe_capability(self) -> LocalCapabilityState:
        state = self.capability.probe()
        if self.reachability is not None and state.has_global_ipv6:
            state = confirm_global_ipv6(state, await self.reachability.has_ipv6())
        return state

    async def _pipeline(self, domain: str, port: int) -> LookupResult:
        literal = classify_hostname(domain)
        if literal is not None:
            logger.debug("%s is an IP literal; skipping resolution", domain)
            return literal

        verify_task: Optional[asyncio.Task] = None
        if self.config.verification.enabled:
            verify_task = asyncio.ensure_future(
                verify_tcp_connection(
                    domain,
                    port,
                    timeout=self.config.verification.timeout_seconds,
                    connect=self._connect,
                )
            )

        handed_off = False
        try:
            candidates = await resolve_candidates(
                domain, port, getaddrinfo=self._getaddrinfo
            )
            if not candidates:
                return EMPTY_RESULT

            capability = await self._probe_capability()
            ordered = sort_addresses(candidates, capability)

            verified: Optional[str] = None
            if verify_task is not None:
                verified = await self._verified_within_grace(domain, verify_task)

            if verified and ordered[0].address != verified:
                logger.debug(
                    "Policy order for %s picked %s but the OS connected to %s",
                    domain,
                    ordered[0].address,
                    verified,
                )
            result = LookupResult(
                ordered_addresses=tuple(ordered), verified_address=verified
            )
            if verify_task is not None and not verify_task.done():
                self._fill_verified_later(domain, result, verify_task)
                handed_off = True
            return result
        finally:
            if verify_task is not None and not handed_off and not verify_task.done():
                verify_task.cancel()

    async def _verified_within_grace(
        self, domain: str, verify_task: asyncio.Task
    ) -> Optional[str]:
        grace = self.config.verification.grace_seconds
        if not verify_task.done() and grace > 0:
            await asyncio.wait({verify_task}, timeout=grace)
        if not verify_task.done():
            return None
        return _verification_outcome(domain, verify_task)

    def _fill_verified_later(
        self, domain: str, result: LookupResult, verify_task: asyncio.Task
    ) -> None:
        """Brief: Write a late verification winner into the cached result.

        Inputs:
          - domain: Cache key the result is stored under.
          - result: The LookupResult returned without a verified address.
          - verify_task: Still-running verification race.

        Notes:
          - The pipeline result is cached before the task can finish, so the
            done callback always sees it. Only that exact cached object is
            replaced and its expiry is kept.
        """
        with self._lock:
            self._verifications.add(verify_task)

        def _done(task: asyncio.Task) -> None:
            with self._lock:
                self._verifications.discard(task)
            verified = _verification_outcome(domain, task)
            if not verified:
                return
            updated = dataclasses.replace(result, verified_address=verified)
            if self.cache.replace(domain, result, updated):
                logger.debug("Late verification for %s: %s", domain, verified)

        verify_task.add_done_callback(_done)


def _verification_outcome(domain: str, task: asyncio.Task) -> Optional[str]:
    if task.cancelled():
        return None
    exc = task.exception()
    if exc is not None:
        logger.info(
            "TCP verification errored for %s",
            domain,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        return None
    return task.result()


_default_engine: Optional[AddressEngine] = None
_default_lock = threading.Lock()


def get_default_engine() -> AddressEngine:
    """Brief: Process-wide engine built from default config, created on first use."""

    global _default_engine
    with _default_lock:
        if _default_engine is None:
            _default_engine = AddressEngine()
            _default_engine.start()
        return _default_engine


def set_default_engine(engine: Optional[AddressEngine]) -> None:
    """Brief: Replace the process-wide engine (None resets it)."""

    global _default_engine
    with _default_lock:
        old = _default_engine
        _default_engine = engine
    if old is not None and old is not engine:
        old.close()


async def resolve(domain: str, port: Optional[int] = None) -> LookupResult:
    return await get_default_engine().resolve(domain, port)


async def resolve_address(domain: str, port: Optional[int] = None) -> Optional[str]:
    return await get_default_engine().resolve_address(domain, port)
