"""TTL cache plus in-flight request coalescing.

Brief:
  TTLCache is a thread-safe store where each entry expires after its own TTL.
  CoalescingCache layers an in-flight map on top so concurrent requests for
  the same key share a single loader run.

Notes:
  - Expired entries are removed on read, opportunistically on write, and by
    an optional background sweeper thread.
  - The backing dicts are never exposed; get/put/reserve_in_flight/
    release_in_flight are the only mutation points.
  - In-flight entries are concurrent.futures.Future objects, so callers on
    different threads and event loops can attach to the same run.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

_logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class PendingLoad(concurrent.futures.Future):
    """In-flight result shared by every caller of one load.

    loop is the event loop running the load, set by the owner.
    """

    def __init__(self) -> None:
        super().__init__()
        self.loop: Optional[asyncio.AbstractEventLoop] = None


class TTLCache:
    """Thread-safe in-memory cache with per-entry TTL.

    Brief:
        Values are stored as (expiry, value). An entry is fresh only while
        clock() < expiry; stale entries behave exactly like missing ones.

    Inputs:
        - clock: Optional callable returning seconds; defaults to
          time.monotonic. Tests inject a fake clock.

    Outputs:
        TTLCache instance

    Example use:
        >>> cache = TTLCache()
        >>> cache.set("example.com", 10, "192.0.2.1")
        >>> cache.get("example.com")
        '192.0.2.1'
    """

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock: Clock = clock or time.monotonic
        self._store: Dict[str, Tuple[float, Any]] = {}
        # Original TTLs, kept so get_with_meta() can report them.
        self._ttls: Dict[str, float] = {}
        self._lock = threading.RLock()

        # Best-effort counters for diagnostics; they do not affect semantics.
        self.calls_total: int = 0
        self.cache_hits: int = 0
        self.cache_misses: int = 0
        self.evictions_ttl: int = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def get(self, key: str) -> Any | None:
        """
        Retrieves an item from the cache.
        Returns the item if it exists and has not expired.

        Inputs:
            key: The key to retrieve.

        Outputs:
            The cached value, or None if the key is not found or has expired.
        """
        now = self._clock()
        with self._lock:
            self.calls_total += 1
            entry = self._store.get(key)
            if not entry:
                self.cache_misses += 1
                return None

            expiry, data = entry
            if now >= expiry:
                # Lazy eviction: a stale read is a miss whether or not the
                # sweeper has run yet.
                self._store.pop(key, None)
                self._ttls.pop(key, None)
                self.cache_misses += 1
                self.evictions_ttl += 1
                _logger.debug("TTL eviction (get): key=%r", key)
                return None

            self.cache_hits += 1
            return data

    def set(self, key: str, ttl: float, data: Any) -> None:
        """
        Adds an item to the cache with a specified TTL.

        Inputs:
            key: The key to store the value under.
            ttl: The Time-To-Live in seconds.
            data: The value to store.
        Outputs:
            None
        """
        ttl_f = max(0.0, float(ttl))
        now = self._clock()
        with self._lock:
            self._store[key] = (now + ttl_f, data)
            self._ttls[key] = ttl_f
            # Opportunistic cleanup
            self._purge_expired_locked(now=now)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._ttls.clear()

    def purge_expired(self) -> int:
        """Remove all expired entries.

        Inputs:
            None
        Outputs:
            Number of entries removed.
        """
        with self._lock:
            return self._purge_expired_locked(now=self._clock())

    def _purge_expired_locked(self, now: float) -> int:
        removed = 0
        # Iterate on a list of items to avoid runtime dict size change issues
        for k, (exp, _) in list(self._store.items()):
            if exp <= now:
                del self._store[k]
                self._ttls.pop(k, None)
                removed += 1
                self.evictions_ttl += 1
                _logger.debug("TTL eviction (purge): key=%r", k)
        return removed

    def get_with_meta(
        self, key: str
    ) -> Tuple[Any | None, Optional[float], Optional[float]]:
        """Brief: Return cached value plus seconds_remaining and original TTL.

        Inputs:
            key: Cache key.

        Outputs:
            Tuple of (value_or_None, seconds_remaining_or_None, ttl_or_None).

        Notes:
            - Unlike get(), this helper does not evict stale entries; a
              negative seconds_remaining tells the caller the entry is stale.
        """
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if not entry:
                return None, None, None
            expiry, data = entry
            return data, float(expiry - now), self._ttls.get(key)

    def replace(self, key: str, expected: Any, data: Any) -> bool:
        """Brief: Swap a fresh entry's value only while it is still expected.

        Inputs:
            key: Cache key.
            expected: Value that must currently be stored (identity check).
            data: Replacement value.

        Outputs:
            True when swapped. The entry keeps its original expiry.
        """
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if not entry:
                return False
            expiry, current = entry
            if current is not expected or now >= expiry:
                return False
            self._store[key] = (expiry, data)
            return True


class CoalescingCache:
    """TTL cache that collapses concurrent misses into one loader run.

    Brief:
        get(key) serves a fresh cached value, attaches to the pending run for
        key, or starts a new run. At most one run per key is in flight at any
        instant. The in-flight entry is released unconditionally when the run
        finishes; only values accepted by should_cache are stored.

    Inputs:
        - ttl: Seconds a stored value stays fresh; also the sweep interval.
        - loader: Coroutine function called as loader(key, *args).
        - should_cache: Optional predicate deciding which results are stored
          (default: truthy results).
        - clock: Optional clock passed to the backing TTLCache.
        - name: Label used in log lines and the sweeper thread name.

    Outputs:
        CoalescingCache instance

    Notes:
        Safe to share across threads that each run their own event loop. The
        run executes on the loop of the caller that started it; callers on
        other loops await the same concurrent.futures.Future through
        asyncio.wrap_future(). If that run is torn down with its loop, the
        waiters start a fresh run of their own.
    """

    def __init__(
        self,
        ttl: float,
        loader: Callable[..., Awaitable[Any]],
        *,
        should_cache: Optional[Callable[[Any], bool]] = None,
        clock: Optional[Clock] = None,
        name: str = "cache",
    ) -> None:
        self.ttl = max(0.0, float(ttl))
        self.name = name
        self._loader = loader
        self._should_cache = should_cache or bool
        self._cache = TTLCache(clock=clock)
        self._in_flight: Dict[str, PendingLoad] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._lock = threading.RLock()

        self.loads_total: int = 0
        self.coalesced_total: int = 0

        self._stop_event: threading.Event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ---------------- Mutation points -----------------

    def peek(self, key: str) -> Any | None:
        """Brief: Fresh cached value for key, or None (stale counts as absent)."""
        return self._cache.get(key)

    def put(self, key: str, value: Any) -> None:
        self._cache.set(key, self.ttl, value)

    def replace(self, key: str, expected: Any, value: Any) -> bool:
        """Brief: Update a cached value in place without extending its TTL."""
        return self._cache.replace(key, expected, value)

    def reserve_in_flight(self, key: str) -> Tuple[PendingLoad, bool]:
        """Brief: Get the pending future for key, creating it when absent.

        Outputs:
          - (future, is_owner): is_owner is True when this call created the
            entry and is therefore responsible for completing and releasing it.
        """
        with self._lock:
            fut = self._in_flight.get(key)
            if fut is not None:
                return fut, False
            fut = PendingLoad()
            self._in_flight[key] = fut
            return fut, True

    def release_in_flight(self, key: str, fut: PendingLoad) -> None:
        with self._lock:
            if self._in_flight.get(key) is fut:
                del self._in_flight[key]

    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)

    # ---------------- Read path -----------------

    async def get(self, key: str, *args: Any) -> Any:
        """Brief: Cached value, shared pending value, or a fresh load.

        Inputs:
          - key: Cache key (a domain for the lookup cache).
          - *args: Extra loader arguments; they do not take part in the key.

        Outputs:
          - Loader result. Loader exceptions propagate to every caller attached
            to the run. The run itself is a separate task, so it completes
            even when the caller that started it is cancelled.
        """
        while True:
            with self._lock:
                cached = self._cache.get(key)
                if cached is not None:
                    _logger.debug("%s hit for %s", self.name, key)
                    return cached
                fut, owner = self.reserve_in_flight(key)
                if owner:
                    self.loads_total += 1
                    fut.loop = asyncio.get_running_loop()
                else:
                    self.coalesced_total += 1

            if owner:
                task = asyncio.ensure_future(self._run_load(key, fut, args))
                with self._lock:
                    self._tasks.add(task)
                task.add_done_callback(self._forget_task)
            else:
                _logger.debug("%s attaching to in-flight load for %s", self.name, key)

            try:
                # shield(): a cancelled caller must not cancel the shared run.
                return await asyncio.shield(asyncio.wrap_future(fut))
            except asyncio.CancelledError:
                # Only a run torn down on another loop (e.g. that loop shut
                # down) is retried; its entry is already released.
                if not fut.cancelled() or fut.loop is asyncio.get_running_loop():
                    raise
            _logger.debug(
                "%s in-flight load for %s was cancelled; retrying", self.name, key
            )

    async def _run_load(self, key: str, fut: PendingLoad, args: Tuple) -> None:
        try:
            value = await self._loader(key, *args)
        except asyncio.CancelledError:
            self.release_in_flight(key, fut)
            fut.cancel()
            raise
        except Exception as exc:
            self.release_in_flight(key, fut)
            fut.set_exception(exc)
        else:
            if self._should_cache(value):
                self.put(key, value)
                _logger.debug("%s stored %s", self.name, key)
            self.release_in_flight(key, fut)
            fut.set_result(value)

    def _forget_task(self, task: asyncio.Task) -> None:
        with self._lock:
            self._tasks.discard(task)

    # ---------------- Eviction -----------------

    def purge_expired(self) -> int:
        return self._cache.purge_expired()

    def clear(self) -> None:
        self._cache.clear()

    def start_sweeper(self, interval: Optional[float] = None) -> None:
        """Brief: Start a daemon thread purging stale entries every interval.

        Inputs:
          - interval: Seconds between sweeps; defaults to the TTL.

        Outputs:
          - None; no-op when already running or the interval is not positive.
        """
        every = self.ttl if interval is None else float(interval)
        if every <= 0:
            return
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_sweeper,
            args=(every,),
            name=f"addrselect-{self.name}-sweeper",
            daemon=True,
        )
        self._thread.start()

    def stop_sweeper(self) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)
        self._thread = None

    def _run_sweeper(self, interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                removed = self.purge_expired()
            except Exception:
                _logger.info("%s sweep failed", self.name, exc_info=True)
                continue
            if removed:
                _logger.debug("%s sweep removed %d entries", self.name, removed)
