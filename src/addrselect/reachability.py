"""IPv6 Internet reachability check, cached for a few minutes.

Brief:
  Send a HEAD request to an IPv6-only endpoint. A 2xx answer within the
  timeout means the host has a working IPv6 path; anything else (timeout,
  HTTP error, no route) fails closed to "no IPv6". The answer, positive or
  negative, is cached and concurrent checks share one request.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import requests

from .cache import Clock, CoalescingCache

logger = logging.getLogger(__name__)

DEFAULT_IPV6_PROBE_URL = "https://ipv6.google.com/"
DEFAULT_REACHABILITY_TTL = 300.0
DEFAULT_REACHABILITY_TIMEOUT = 1.0

_KEY = "ipv6"


class Ipv6ReachabilityProbe:
    """Brief: Cached, coalesced IPv6 reachability probe.

    Inputs:
      - url: IPv6-only HTTP(S) endpoint to probe.
      - ttl: Seconds a probe result is reused.
      - timeout: Seconds before the probe gives up and reports False.
      - clock: Optional clock for the backing cache.

    Outputs:
      - Ipv6ReachabilityProbe instance; await has_ipv6().
    """

    def __init__(
        self,
        url: str = DEFAULT_IPV6_PROBE_URL,
        ttl: float = DEFAULT_REACHABILITY_TTL,
        timeout: float = DEFAULT_REACHABILITY_TIMEOUT,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self.url = url
        self.timeout = float(timeout)
        self._cache = CoalescingCache(
            ttl,
            self._load,
            should_cache=lambda _value: True,
            clock=clock,
            name="ipv6-reachability",
        )

    @property
    def cache(self) -> CoalescingCache:
        return self._cache

    async def has_ipv6(self) -> bool:
        return bool(await self._cache.get(_KEY))

    def _head(self) -> bool:
        resp = requests.head(self.url, timeout=self.timeout, allow_redirects=True)
        return bool(resp.ok)

    async def _load(self, _key: str) -> bool:
        loop = asyncio.get_running_loop()
        try:
            ok = await asyncio.wait_for(
                loop.run_in_executor(None, self._head), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.debug("IPv6 connectivity check timed out after %ss", self.timeout)
            ok = False
        except (requests.RequestException, OSError) as exc:
            logger.debug("IPv6 connectivity check failed: %s", exc)
            ok = False
        logger.debug("IPv6 connectivity check: %s", ok)
        return ok
