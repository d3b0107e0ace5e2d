"""
Brief: Tests for addrselect.handler native-message dispatch.

Inputs:
  - None

Outputs:
  - None
"""

import asyncio

import pytest

from addrselect.handler import LOOKUP_FAILED, handle_message
from addrselect.models import AddressCandidate, Family, LookupResult


class _Engine:
    """Engine stand-in recording resolve() calls."""

    def __init__(self, result):
        self.result = result
        self.calls = []

    async def resolve(self, domain, port=None):
        self.calls.append((domain, port))
        return self.result


FOUND = LookupResult(
    ordered_addresses=(
        AddressCandidate("2001:db8::1", Family.V6),
        AddressCandidate("192.0.2.1", Family.V4),
    ),
    verified_address="2001:db8::1",
)


def test_lookup_success_returns_addresses_and_verified():
    """
    Brief: A lookup with results yields the plain address list.

    Inputs:
      - {"cmd": "lookup", "domain": "example.com"}

    Outputs:
      - None: Asserts response dict shape
    """
    eng = _Engine(FOUND)
    resp = asyncio.run(handle_message({"cmd": "lookup", "domain": "example.com"}, eng))
    assert resp == {
        "addresses": [
            {"address": "2001:db8::1", "version": "v6"},
            {"address": "192.0.2.1", "version": "v4"},
        ],
        "verifiedAddress": "2001:db8::1",
    }
    assert eng.calls == [("example.com", None)]


def test_lookup_passes_port():
    eng = _Engine(FOUND)
    asyncio.run(handle_message({"cmd": "lookup", "domain": "example.com", "port": "8443"}, eng))
    asyncio.run(handle_message({"cmd": "lookup", "domain": "example.com", "port": "https"}, eng))
    assert eng.calls == [("example.com", 8443), ("example.com", None)]


def test_empty_result_maps_to_error_marker():
    eng = _Engine(LookupResult())
    resp = asyncio.run(handle_message({"cmd": "lookup", "domain": "nx.invalid"}, eng))
    assert resp == {"error": LOOKUP_FAILED}


@pytest.mark.parametrize("domain", [None, "", "   ", 42])
def test_lookup_without_domain_is_an_error(domain):
    eng = _Engine(FOUND)
    resp = asyncio.run(handle_message({"cmd": "lookup", "domain": domain}, eng))
    assert resp == {"error": "DNS lookup failed"}
    assert eng.calls == []


@pytest.mark.parametrize(
    "message,echo",
    [
        ({"cmd": "ping"}, {"cmd": "ping"}),
        ("hello", "hello"),
        (None, ""),
    ],
)
def test_non_lookup_messages_are_echoed(message, echo):
    eng = _Engine(FOUND)
    assert asyncio.run(handle_message(message, eng)) == {"echo": echo}
    assert eng.calls == []
