"""Candidate enumeration through the system resolver.

Brief:
  Wraps getaddrinfo() so it can be awaited from the event loop without
  blocking it. DNS wire handling stays in the platform resolver; this module
  only shapes its output into AddressCandidate records.
"""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .models import AddressCandidate, Family

logger = logging.getLogger(__name__)

# getaddrinfo-shaped callable: (host, port, family, type) -> list of 5-tuples.
GetAddrInfo = Callable[..., Sequence[Tuple[Any, ...]]]


def _strip_zone(address: str) -> str:
    return address.split("%", 1)[0]


def candidates_from_addrinfo(
    infos: Sequence[Tuple[Any, ...]],
) -> List[AddressCandidate]:
    """Brief: Convert getaddrinfo() tuples into unique AddressCandidates.

    Inputs:
      - infos: Sequence of (family, type, proto, canonname, sockaddr).

    Outputs:
      - list[AddressCandidate] in resolver order, duplicates removed.
    """

    out: List[AddressCandidate] = []
    seen = set()
    for info in infos:
        try:
            fam = info[0]
            addr = _strip_zone(str(info[4][0]))
        except (IndexError, TypeError):
            continue
        if fam == socket.AF_INET:
            family = Family.V4
        elif fam == socket.AF_INET6:
            family = Family.V6
        else:
            continue
        if addr in seen:
            continue
        seen.add(addr)
        out.append(AddressCandidate(addr, family))
    return out


async def resolve_candidates(
    hostname: str,
    port: Optional[int] = None,
    *,
    getaddrinfo: Optional[GetAddrInfo] = None,
) -> List[AddressCandidate]:
    """Brief: Ask the system resolver for every address of hostname.

    Inputs:
      - hostname: Name to resolve.
      - port: Optional service port passed through to getaddrinfo().
      - getaddrinfo: Optional blocking getaddrinfo-compatible callable; when
        given it is run in the default executor instead of the loop's own
        getaddrinfo.

    Outputs:
      - list[AddressCandidate]: Unordered, both families. Empty on error or
        when the name has no addresses; neither case raises.
    """

    loop = asyncio.get_running_loop()
    try:
        if getaddrinfo is None:
            infos = await loop.getaddrinfo(
                hostname, port, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM
            )
        else:
            infos = await loop.run_in_executor(
                None,
                getaddrinfo,
                hostname,
                port,
                socket.AF_UNSPEC,
                socket.SOCK_STREAM,
            )
    except (OSError, UnicodeError) as exc:
        # socket.gaierror is an OSError subclass (NXDOMAIN, EAI_AGAIN, ...).
        logger.info("Resolution failed for %s: %s", hostname, exc)
        return []

    candidates = candidates_from_addrinfo(infos or [])
    if not candidates:
        logger.info("No addresses resolved for %s", hostname)
    else:
        logger.debug(
            "Resolved %s -> %s", hostname, ", ".join(c.address for c in candidates)
        )
    return candidates
