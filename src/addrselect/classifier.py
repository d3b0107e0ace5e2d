from __future__ import annotations

import ipaddress
from typing import Optional

from .models import AddressCandidate, Family, LookupResult


def _strip_literal(text: str) -> str:
    s = str(text or "").strip()
    if s.startswith("[") and s.endswith("]"):
        s = s[1:-1].strip()
    return s


def parse_ip_literal(text: str) -> Optional[AddressCandidate]:
    """Brief: Parse text as an IPv4/IPv6 literal.

    Inputs:
      - text: Raw hostname or address, IPv6 optionally wrapped in brackets
        (e.g. "[::1]") and optionally carrying a zone suffix ("fe80::1%en0").

    Outputs:
      - AddressCandidate when the text is an IP literal, otherwise None.
        Failing to parse is how hostnames are recognized, not an error.

    Example:
      >>> parse_ip_literal("[2001:db8::2]").address
      '2001:db8::2'
      >>> parse_ip_literal("example.com") is None
      True
    """

    s = _strip_literal(text)
    if not s:
        return None
    try:
        ip = ipaddress.ip_address(s)
    except ValueError:
        return None

    if ip.version == 4:
        return AddressCandidate(str(ip), Family.V4)
    # Zone is validated above but not kept, matching resolver output.
    return AddressCandidate(str(ipaddress.IPv6Address(s.split("%", 1)[0])), Family.V6)


def classify_hostname(text: str) -> Optional[LookupResult]:
    """Brief: Short-circuit IP literal input.

    Inputs:
      - text: Domain or address supplied by the caller.

    Outputs:
      - Single-element LookupResult for literals (no verification, no
        network activity); None when text must go through resolution.
    """

    candidate = parse_ip_literal(text)
    if candidate is None:
        return None
    return LookupResult(ordered_addresses=(candidate,), verified_address=None)
