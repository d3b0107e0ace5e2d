"""Local network capability probing.

Brief:
  Classify whether this host can originate IPv4, global IPv6 and ULA IPv6
  traffic, based only on the addresses assigned to its interfaces. Nothing
  here touches the network.

Notes:
  - Link-local IPv6 (fe80::/10) and addresses carrying a nonzero zone/scope
    id are ignored; they never leave the local segment.
  - An enumeration failure is reported as "no capability", which keeps the
    policy engine from applying any penalty that requires a True flag.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import threading
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import psutil
from cachetools import TTLCache

from .models import LocalCapabilityState

logger = logging.getLogger(__name__)

InterfaceAddress = Tuple[int, str]

_LINK_LOCAL_V6 = ipaddress.IPv6Network("fe80::/10")


def _split_zone(address: str) -> Tuple[str, str]:
    if "%" in address:
        base, zone = address.split("%", 1)
        return base, zone
    return address, ""


def _is_scoped(zone: str) -> bool:
    return zone.strip() not in ("", "0")


def classify_interface_addresses(
    addresses: Iterable[InterfaceAddress],
) -> LocalCapabilityState:
    """Brief: Derive LocalCapabilityState from (family, address) pairs.

    Inputs:
      - addresses: Iterable of (socket.AF_INET | socket.AF_INET6, text) pairs.
        Other families (link layer, packet) are ignored.

    Outputs:
      - LocalCapabilityState with has_ipv4 / has_global_ipv6 / has_ula_ipv6.

    Example:
      >>> import socket
      >>> s = classify_interface_addresses([(socket.AF_INET6, "fd00::5")])
      >>> (s.has_ipv4, s.has_global_ipv6, s.has_ula_ipv6)
      (False, False, True)
    """

    has_v4 = False
    has_global = False
    has_ula = False

    for family, raw in addresses:
        if family == socket.AF_INET:
            # Any IPv4 address counts, loopback included.
            has_v4 = True
            continue
        if family != socket.AF_INET6:
            continue

        base, zone = _split_zone(str(raw or ""))
        if _is_scoped(zone):
            continue
        try:
            ip = ipaddress.IPv6Address(base)
        except ValueError:
            continue
        if ip in _LINK_LOCAL_V6:
            continue

        first = ip.packed[0]
        if (first & 0xE0) == 0x20:
            has_global = True
        elif (first & 0xFE) == 0xFC:
            has_ula = True

    return LocalCapabilityState(
        has_ipv4=has_v4, has_global_ipv6=has_global, has_ula_ipv6=has_ula
    )


def enumerate_interface_addresses() -> List[InterfaceAddress]:
    """Brief: List (family, address) for every local interface via psutil.

    Outputs:
      - list of (family, address) pairs; may be empty.
    """

    out: List[InterfaceAddress] = []
    if_addrs: Dict[str, list] = psutil.net_if_addrs()
    for _name, entries in if_addrs.items():
        for entry in entries:
            out.append((int(entry.family), str(entry.address)))
    return out


class CapabilityProber:
    """Brief: Probe local capability, optionally memoised for a short window.

    Inputs:
      - memo_seconds: How long a probe result is reused. 0 disables memoising
        so every lookup sees fresh interface state.
      - enumerate_addresses: Optional callable returning (family, address)
        pairs; defaults to psutil-backed enumeration.

    Outputs:
      - CapabilityProber instance; call probe() for a LocalCapabilityState.
    """

    def __init__(
        self,
        memo_seconds: float = 0.0,
        enumerate_addresses: Optional[Callable[[], Iterable[InterfaceAddress]]] = None,
    ) -> None:
        self.memo_seconds = max(0.0, float(memo_seconds or 0.0))
        self._enumerate = enumerate_addresses or enumerate_interface_addresses
        self._memo: Optional[TTLCache] = (
            TTLCache(maxsize=1, ttl=self.memo_seconds) if self.memo_seconds > 0 else None
        )
        self._lock = threading.Lock()

    def _probe_uncached(self) -> LocalCapabilityState:
        try:
            addresses = list(self._enumerate() or [])
        except (OSError, RuntimeError, AttributeError, psutil.Error) as exc:
            logger.info("Interface enumeration failed: %s", exc)
            return LocalCapabilityState()
        state = classify_interface_addresses(addresses)
        logger.debug(
            "Local capability: ipv4=%s global_ipv6=%s ula_ipv6=%s",
            state.has_ipv4,
            state.has_global_ipv6,
            state.has_ula_ipv6,
        )
        return state

    def probe(self) -> LocalCapabilityState:
        if self._memo is None:
            return self._probe_uncached()
        with self._lock:
            state = self._memo.get("state")
            if state is None:
                state = self._probe_uncached()
                self._memo["state"] = state
            return state

    def clear(self) -> None:
        if self._memo is not None:
            with self._lock:
                self._memo.clear()


def probe_local_capability() -> LocalCapabilityState:
    """Brief: One-shot, unmemoised capability probe of this host."""

    return CapabilityProber().probe()


def confirm_global_ipv6(
    state: LocalCapabilityState, ipv6_reachable: bool
) -> LocalCapabilityState:
    """Brief: Drop has_global_ipv6 when an IPv6 reachability check failed.

    Inputs:
      - state: Interface-derived capability.
      - ipv6_reachable: Result of the IPv6 reachability sub-cache.

    Outputs:
      - LocalCapabilityState, unchanged when reachable or already False.
    """

    if ipv6_reachable or not state.has_global_ipv6:
        return state
    return replace(state, has_global_ipv6=False)
