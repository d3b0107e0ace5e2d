"""Typed configuration models for addrselect.

Brief:
  Process-wide settings (TTLs, timeouts, probe endpoint). They are loaded
  once, at startup, and never passed per call.
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, Field

from ..reachability import (
    DEFAULT_IPV6_PROBE_URL,
    DEFAULT_REACHABILITY_TIMEOUT,
    DEFAULT_REACHABILITY_TTL,
)
from ..verify import DEFAULT_VERIFY_TIMEOUT

DEFAULT_CACHE_TTL = 10.0
DEFAULT_CAPABILITY_MEMO = 2.0
DEFAULT_PORT = 443
DEFAULT_VERIFY_GRACE = 0.25


class CacheSettings(BaseModel):
    """Brief: Lookup cache settings.

    Inputs:
      - ttl_seconds: Freshness window of a cached lookup; also the sweep interval.
      - sweep: Run the background sweeper thread.
    """

    ttl_seconds: float = Field(default=DEFAULT_CACHE_TTL, gt=0)
    sweep: bool = True

    class Config:
        extra = "forbid"


class VerificationSettings(BaseModel):
    """Brief: Live TCP verification settings.

    Inputs:
      - enabled: Set False where the process has no socket access.
      - timeout_seconds: Bound on one verification race.
      - grace_seconds: How long a lookup waits for the race after sorting;
        a later winner is written into the cached result.
    """

    enabled: bool = True
    timeout_seconds: float = Field(default=DEFAULT_VERIFY_TIMEOUT, gt=0)
    grace_seconds: float = Field(default=DEFAULT_VERIFY_GRACE, ge=0)

    class Config:
        extra = "forbid"


class CapabilitySettings(BaseModel):
    """Brief: Local capability probing settings.

    Inputs:
      - memo_seconds: Reuse an interface probe for this long (0 = every lookup).
      - confirm_ipv6_reachability: Also require the IPv6 reachability check
        to pass before treating the host as having global IPv6.
    """

    memo_seconds: float = Field(default=DEFAULT_CAPABILITY_MEMO, ge=0)
    confirm_ipv6_reachability: bool = False

    class Config:
        extra = "forbid"


class ReachabilitySettings(BaseModel):
    url: str = DEFAULT_IPV6_PROBE_URL
    ttl_seconds: float = Field(default=DEFAULT_REACHABILITY_TTL, gt=0)
    timeout_seconds: float = Field(default=DEFAULT_REACHABILITY_TIMEOUT, gt=0)

    class Config:
        extra = "forbid"


class AddressSelectConfig(BaseModel):
    """Brief: Root configuration model.

    Example YAML:

        default_port: 443
        cache:
          ttl_seconds: 10
        verification:
          enabled: true
          timeout_seconds: 3
        capability:
          memo_seconds: 2
          confirm_ipv6_reachability: false
        reachability:
          url: https://ipv6.google.com/
          ttl_seconds: 300
          timeout_seconds: 1
        logging:
          level: info
    """

    default_port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    verification: VerificationSettings = Field(default_factory=VerificationSettings)
    capability: CapabilitySettings = Field(default_factory=CapabilitySettings)
    reachability: ReachabilitySettings = Field(default_factory=ReachabilitySettings)
    logging: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "forbid"
