from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import List

from .config import init_logging, parse_config_file
from .config.config_parser import build_config
from .engine import AddressEngine


def main(argv: List[str] | None = None) -> int:
    """
    Command line entry point: resolve one domain and print the chosen address.

    Args:
        argv: Command-line arguments.

    Returns:
        0 when an address was found, 1 when none could be determined, 2 on
        configuration errors.

    Example use:
        CLI:
            PYTHONPATH=src python -m addrselect.main example.com --port 443 --json
    """
    parser = argparse.ArgumentParser(
        description="Resolve a hostname to the address the network stack would use"
    )
    parser.add_argument("domain", help="Hostname or IP literal to resolve")
    parser.add_argument(
        "--port", type=int, default=None, help="TCP port used for verification"
    )
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the full lookup result as JSON instead of the best address",
    )
    parser.add_argument(
        "--no-verify",
        action="store_true",
        help="Skip the live TCP connection used to verify the chosen address",
    )
    args = parser.parse_args(argv)

    try:
        if args.config:
            cfg = parse_config_file(args.config)
        else:
            cfg = build_config(None)
    except (OSError, ValueError) as exc:
        print(str(exc))
        return 2

    if args.no_verify:
        cfg.verification.enabled = False

    # Initialize logging before any other operations
    init_logging(cfg.logging)
    logger = logging.getLogger("addrselect.main")
    if args.config:
        logger.debug("Loaded config from %s", args.config)

    engine = AddressEngine(cfg)
    try:
        result = asyncio.run(engine.resolve(args.domain, args.port))
    finally:
        engine.close()

    if args.json:
        print(json.dumps(result.to_message()))
    elif result.best_address:
        print(result.best_address)

    if result.is_empty:
        logger.info("No usable address could be determined for %s", args.domain)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
