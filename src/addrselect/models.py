"""Value types shared across the address selection pipeline.

Brief:
  Immutable records produced and consumed by the classifier, resolver,
  capability prober, policy engine and cache layer.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


class Family(str, enum.Enum):
    """Address family of a candidate; the value is the wire "version" string."""

    V4 = "v4"
    V6 = "v6"


@dataclass(frozen=True)
class AddressCandidate:
    """Brief: One address returned for a hostname.

    Inputs:
      - address: Textual IP address (no brackets, no zone suffix).
      - family: Family.V4 or Family.V6.

    Outputs:
      - AddressCandidate instance.
    """

    address: str
    family: Family

    def to_message(self) -> Dict[str, str]:
        return {"address": self.address, "version": self.family.value}


@dataclass(frozen=True)
class LocalCapabilityState:
    """Outbound capability of this host as seen from its interface addresses."""

    has_ipv4: bool = False
    has_global_ipv6: bool = False
    has_ula_ipv6: bool = False


@dataclass(frozen=True)
class ScoredAddress:
    """Brief: Candidate plus the policy fields used only while sorting.

    Inputs:
      - candidate: The AddressCandidate being scored.
      - precedence: Adjusted precedence, never negative.
      - label: Policy label; lower labels sort first.
      - is_mapped: True when the candidate was compared as ::ffff:a.b.c.d.

    Outputs:
      - ScoredAddress instance.
    """

    candidate: AddressCandidate
    precedence: int
    label: int
    is_mapped: bool = False


@dataclass(frozen=True)
class LookupResult:
    """Brief: Outcome of one pipeline run.

    Inputs:
      - ordered_addresses: Candidates, most preferred first.
      - verified_address: Address the OS picked for a live TCP connection,
        or None when verification was skipped, failed or timed out.

    Outputs:
      - LookupResult instance.

    Example:
      >>> r = LookupResult((AddressCandidate("192.0.2.2", Family.V4),))
      >>> r.best_address
      '192.0.2.2'
    """

    ordered_addresses: Tuple[AddressCandidate, ...] = field(default_factory=tuple)
    verified_address: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.ordered_addresses

    @property
    def best_address(self) -> Optional[str]:
        """Verified address when known, else the top-ranked candidate."""
        if self.verified_address:
            return self.verified_address
        if self.ordered_addresses:
            return self.ordered_addresses[0].address
        return None

    def to_message(self) -> Dict[str, Any]:
        """Brief: Plain-data form handed to the transport/UI layer.

        Outputs:
          - dict: {"addresses": [{"address", "version"}], "verifiedAddress": str | None}
        """
        return {
            "addresses": [c.to_message() for c in self.ordered_addresses],
            "verifiedAddress": self.verified_address,
        }


EMPTY_RESULT = LookupResult()
