"""addrselect package"""

from .engine import AddressEngine, resolve, resolve_address
from .models import AddressCandidate, Family, LocalCapabilityState, LookupResult

__all__ = [
    "AddressCandidate",
    "AddressEngine",
    "Family",
    "LocalCapabilityState",
    "LookupResult",
    "resolve",
    "resolve_address",
]
