"""RFC 6724-derived destination address ordering.

Brief:
  Score every candidate against a fixed policy table, adjust the score for
  what this host can actually originate (LocalCapabilityState), and sort.

Notes:
  - IPv4 candidates are compared in their IPv4-mapped IPv6 form
    (::ffff:a.b.c.d); the candidate itself is returned untouched.
  - The IPv4-mapped row carries precedence 45 rather than RFC 6724's 35 and
    the ULA row is part of the table. Both are deliberate local choices.
  - Rows are evaluated in table order; the zero-length ::/0 row is the
    catch-all and only applies when no more specific row matched.
  - Ordering is deterministic: sorted() is stable and nothing here is random.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .models import AddressCandidate, LocalCapabilityState, ScoredAddress

logger = logging.getLogger(__name__)

IPAddressLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]


@dataclass(frozen=True)
class PolicyEntry:
    """One policy table row: prefix, precedence and label."""

    prefix: str
    precedence: int
    label: int


LOOPBACK = PolicyEntry("::1/128", 60, 0)
GLOBAL_IPV6 = PolicyEntry("::/0", 50, 1)
IPV4_MAPPED = PolicyEntry("::ffff:0:0/96", 45, 4)
ULA = PolicyEntry("fc00::/7", 40, 13)
TEREDO = PolicyEntry("2001::/32", 30, 5)
SIX_TO_FOUR = PolicyEntry("2002::/16", 25, 2)
IPV4_COMPATIBLE = PolicyEntry("::/96", 15, 3)
SITE_LOCAL = PolicyEntry("fec0::/10", 10, 11)
SIX_BONE = PolicyEntry("3ffe::/16", 1, 12)

POLICY_TABLE: Tuple[PolicyEntry, ...] = (
    LOOPBACK,
    GLOBAL_IPV6,
    IPV4_MAPPED,
    ULA,
    TEREDO,
    SIX_TO_FOUR,
    IPV4_COMPATIBLE,
    SITE_LOCAL,
    SIX_BONE,
)

# Parsed once at import. Prefixes passed to matches_prefix() that are not in
# the table are parsed per call and never stored.
_TABLE_NETWORKS: Tuple[Tuple[PolicyEntry, ipaddress.IPv6Network], ...] = tuple(
    (entry, ipaddress.IPv6Network(entry.prefix)) for entry in POLICY_TABLE
)
_TABLE_NETWORK_BY_PREFIX: Dict[str, ipaddress.IPv6Network] = {
    entry.prefix: net for entry, net in _TABLE_NETWORKS
}

# Used when an address cannot be parsed or no row matches.
DEFAULT_POLICY = PolicyEntry("", 40, 1)

GLOBAL_IPV6_PENALTY = 15
IPV4_OVER_ULA_BONUS = 5
ULA_BELOW_IPV4_PENALTY = 5


def map_ipv4_to_ipv6(address: str) -> Optional[str]:
    """Brief: Return the IPv4-mapped IPv6 presentation of an IPv4 address.

    Inputs:
      - address: Dotted-quad IPv4 text.

    Outputs:
      - "::ffff:a.b.c.d", or None when address is not IPv4.

    Example:
      >>> map_ipv4_to_ipv6("203.0.113.5")
      '::ffff:203.0.113.5'
    """

    try:
        v4 = ipaddress.IPv4Address(str(address).strip())
    except ValueError:
        return None
    return f"::ffff:{v4}"


def _as_policy_ipv6(
    address: IPAddressLike,
) -> Tuple[Optional[ipaddress.IPv6Address], bool]:
    """Brief: Parse address into the IPv6 form used for prefix matching.

    Outputs:
      - (IPv6Address or None, is_mapped)
    """

    if isinstance(address, ipaddress.IPv6Address):
        ip6 = address
    elif isinstance(address, ipaddress.IPv4Address):
        ip6 = ipaddress.IPv6Address(f"::ffff:{address}")
    else:
        text = str(address or "").strip()
        if text.startswith("[") and text.endswith("]"):
            text = text[1:-1]
        text = text.split("%", 1)[0]
        try:
            ip = ipaddress.ip_address(text)
        except ValueError:
            return None, False
        if isinstance(ip, ipaddress.IPv4Address):
            ip6 = ipaddress.IPv6Address(f"::ffff:{ip}")
        else:
            ip6 = ip
    return ip6, ip6.ipv4_mapped is not None


def matches_prefix(address: IPAddressLike, prefix: str) -> bool:
    """Brief: Test whether address falls inside an IPv6 CIDR prefix.

    Inputs:
      - address: IPv6Address/IPv4Address or text (IPv4 is compared mapped).
      - prefix: CIDR text such as "2001:db8::/32".

    Outputs:
      - bool; False for unparseable address or prefix.

    Example:
      >>> matches_prefix("2001:db8::1", "2001:db8::/32")
      True
      >>> matches_prefix("2001:db8::1", "2001:0db9::/32")
      False
    """

    ip6, _ = _as_policy_ipv6(address)
    if ip6 is None:
        return False
    net = _TABLE_NETWORK_BY_PREFIX.get(prefix)
    if net is None:
        try:
            net = ipaddress.IPv6Network(prefix, strict=False)
        except ValueError:
            return False
    return ip6 in net


def _lookup_entry(ip6: ipaddress.IPv6Address) -> PolicyEntry:
    catch_all: Optional[PolicyEntry] = None
    for entry, net in _TABLE_NETWORKS:
        if net.prefixlen == 0:
            if catch_all is None:
                catch_all = entry
            continue
        if ip6 in net:
            return entry
    return catch_all if catch_all is not None else DEFAULT_POLICY


def get_policy_entry(address: IPAddressLike) -> PolicyEntry:
    """Brief: Return the policy row that applies to address.

    Inputs:
      - address: Candidate address (text or ipaddress object).

    Outputs:
      - PolicyEntry; DEFAULT_POLICY (precedence 40, label 1) when the address
        cannot be parsed.
    """

    ip6, _ = _as_policy_ipv6(address)
    if ip6 is None:
        logger.debug("Unparseable address %r; using default policy", address)
        return DEFAULT_POLICY
    return _lookup_entry(ip6)


def score_address(
    candidate: AddressCandidate, capability: LocalCapabilityState
) -> ScoredAddress:
    """Brief: Score one candidate and apply the capability adjustments.

    Inputs:
      - candidate: Address to score.
      - capability: Host capability flags.

    Outputs:
      - ScoredAddress with precedence clamped to >= 0.

    Adjustments:
      - IPv4 (mapped row): precedence 0 without IPv4; +5 when the host only
        has ULA IPv6 (ULA cannot reach the public Internet).
      - Global IPv6 (catch-all row): -15 without a global IPv6 address.
      - ULA row: precedence 0 without a ULA address; -5 when IPv4 works and
        global IPv6 does not.
    """

    ip6, is_mapped = _as_policy_ipv6(candidate.address)
    entry = DEFAULT_POLICY if ip6 is None else _lookup_entry(ip6)
    precedence = entry.precedence

    if entry is IPV4_MAPPED:
        if not capability.has_ipv4:
            precedence = 0
        elif not capability.has_global_ipv6 and capability.has_ula_ipv6:
            precedence += IPV4_OVER_ULA_BONUS
    elif entry is GLOBAL_IPV6:
        if not capability.has_global_ipv6:
            precedence -= GLOBAL_IPV6_PENALTY
    elif entry is ULA:
        if not capability.has_ula_ipv6:
            precedence = 0
        elif capability.has_ipv4 and not capability.has_global_ipv6:
            precedence -= ULA_BELOW_IPV4_PENALTY

    return ScoredAddress(
        candidate=candidate,
        precedence=max(0, precedence),
        label=entry.label,
        is_mapped=is_mapped,
    )


def _sort_key(scored: ScoredAddress) -> Tuple[int, int, int]:
    return (-scored.precedence, scored.label, 1 if scored.is_mapped else 0)


def sort_addresses(
    candidates: Iterable[AddressCandidate], capability: LocalCapabilityState
) -> List[AddressCandidate]:
    """Brief: Order candidates most-preferred first.

    Inputs:
      - candidates: Unordered candidates from the resolver.
      - capability: Host capability flags.

    Outputs:
      - list[AddressCandidate] ordered by adjusted precedence (higher first),
        then label (lower first), then native IPv6 before IPv4-mapped; any
        remaining tie keeps the input order.
    """

    scored = [score_address(c, capability) for c in candidates]
    scored.sort(key=_sort_key)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Policy order: %s",
            ", ".join(
                f"{s.candidate.address}(p={s.precedence},l={s.label})" for s in scored
            ),
        )
    return [s.candidate for s in scored]
