"""Native-message request handling.

Brief:
  Map a message from the browser side, e.g. {"cmd": "lookup", "domain":
  "example.com"}, to the plain response dict sent back. Framing and the
  message channel itself belong to the host environment.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .engine import AddressEngine, get_default_engine

logger = logging.getLogger(__name__)

LOOKUP_FAILED = "DNS lookup failed"


async def handle_message(
    message: Any, engine: Optional[AddressEngine] = None
) -> Dict[str, Any]:
    """Brief: Dispatch one native message.

    Inputs:
      - message: Decoded message. Lookups look like
        {"cmd": "lookup", "domain": str, "port": int (optional)}.
      - engine: Optional AddressEngine; defaults to the process-wide one.

    Outputs:
      - {"addresses": [...], "verifiedAddress": str | None} for a lookup that
        produced at least one address.
      - {"error": "DNS lookup failed"} when no usable address was found or the
        lookup request is malformed.
      - {"echo": message} for anything that is not a lookup command.
    """

    if not isinstance(message, dict) or message.get("cmd") != "lookup":
        logger.debug("Echoing non-lookup message back to sender")
        return {"echo": message if message is not None else ""}

    domain = message.get("domain")
    if not isinstance(domain, str) or not domain.strip():
        logger.info("Lookup message without a domain: %r", message)
        return {"error": LOOKUP_FAILED}

    port = message.get("port")
    if port is not None:
        try:
            port = int(port)
        except (TypeError, ValueError):
            logger.info("Ignoring invalid port %r for %s", port, domain)
            port = None

    eng = engine or get_default_engine()
    logger.debug("Performing lookup for %s", domain)
    result = await eng.resolve(domain, port)
    if result.is_empty:
        logger.info("Lookup failed for %s", domain)
        return {"error": LOOKUP_FAILED}

    logger.debug("Lookup success: %s -> %s", domain, result.best_address)
    return result.to_message()
