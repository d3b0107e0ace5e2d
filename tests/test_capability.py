"""
Brief: Tests for addrselect.capability interface classification.

Inputs:
  - None

Outputs:
  - None
"""

import socket
from types import SimpleNamespace

import pytest

import addrselect.capability as capability_mod
from addrselect.capability import (
    CapabilityProber,
    classify_interface_addresses,
    confirm_global_ipv6,
    enumerate_interface_addresses,
)
from addrselect.models import LocalCapabilityState

V4 = socket.AF_INET
V6 = socket.AF_INET6


@pytest.mark.parametrize(
    "addresses,expected",
    [
        ([], LocalCapabilityState()),
        ([(V4, "127.0.0.1")], LocalCapabilityState(has_ipv4=True)),
        ([(V6, "2001:db8::1")], LocalCapabilityState(has_global_ipv6=True)),
        ([(V6, "3fff::1")], LocalCapabilityState(has_global_ipv6=True)),
        ([(V6, "fd12:3456::1")], LocalCapabilityState(has_ula_ipv6=True)),
        ([(V6, "fc00::1")], LocalCapabilityState(has_ula_ipv6=True)),
        # Link-local never counts.
        ([(V6, "fe80::1")], LocalCapabilityState()),
        # Nonzero scope id is excluded even for otherwise global-looking text.
        ([(V6, "2001:db8::1%eth0")], LocalCapabilityState()),
        ([(V6, "2001:db8::1%0")], LocalCapabilityState(has_global_ipv6=True)),
        # Loopback and other non-2000::/3 addresses are neither global nor ULA.
        ([(V6, "::1")], LocalCapabilityState()),
        ([(V6, "4000::1")], LocalCapabilityState()),
        # Link-layer entries and junk are ignored.
        ([(-1, "00:11:22:33:44:55"), (V6, "not-an-address")], LocalCapabilityState()),
    ],
)
def test_classify_interface_addresses(addresses, expected):
    """
    Brief: Each rule of the capability classification.

    Inputs:
      - addresses: (family, address) pairs

    Outputs:
      - None: Asserts derived flags
    """
    assert classify_interface_addresses(addresses) == expected


def test_classify_dual_stack_with_ula():
    state = classify_interface_addresses(
        [(V4, "192.0.2.10"), (V6, "fe80::2%en0"), (V6, "2001:db8::2"), (V6, "fd00::2")]
    )
    assert state == LocalCapabilityState(True, True, True)


def test_enumerate_interface_addresses_uses_psutil(monkeypatch):
    """
    Brief: psutil.net_if_addrs() output is flattened into (family, address) pairs.

    Inputs:
      - monkeypatch replacing psutil.net_if_addrs

    Outputs:
      - None: Asserts flattened list
    """
    fake = {
        "lo": [SimpleNamespace(family=V4, address="127.0.0.1")],
        "eth0": [
            SimpleNamespace(family=V6, address="2001:db8::5"),
            SimpleNamespace(family=-1, address="aa:bb:cc:dd:ee:ff"),
        ],
    }
    monkeypatch.setattr(capability_mod.psutil, "net_if_addrs", lambda: fake)
    assert enumerate_interface_addresses() == [
        (V4, "127.0.0.1"),
        (V6, "2001:db8::5"),
        (-1, "aa:bb:cc:dd:ee:ff"),
    ]


def test_prober_enumeration_failure_means_no_capability():
    def boom():
        raise OSError("no netlink")

    assert CapabilityProber(enumerate_addresses=boom).probe() == LocalCapabilityState()


def test_prober_without_memo_probes_every_time():
    calls = []

    def enum():
        calls.append(1)
        return [(V4, "192.0.2.1")]

    prober = CapabilityProber(memo_seconds=0, enumerate_addresses=enum)
    prober.probe()
    prober.probe()
    assert len(calls) == 2


def test_prober_memo_reuses_state():
    """
    Brief: With memo_seconds > 0 a second probe reuses the first result.

    Inputs:
      - enumerate callable counting calls

    Outputs:
      - None: Asserts single enumeration until clear()
    """
    calls = []

    def enum():
        calls.append(1)
        return [(V6, "2001:db8::1")]

    prober = CapabilityProber(memo_seconds=60, enumerate_addresses=enum)
    first = prober.probe()
    second = prober.probe()
    assert first == second == LocalCapabilityState(has_global_ipv6=True)
    assert len(calls) == 1
    prober.clear()
    prober.probe()
    assert len(calls) == 2


def test_confirm_global_ipv6():
    dual = LocalCapabilityState(True, True, False)
    assert confirm_global_ipv6(dual, True) is dual
    assert confirm_global_ipv6(dual, False) == LocalCapabilityState(True, False, False)
    v4_only = LocalCapabilityState(has_ipv4=True)
    assert confirm_global_ipv6(v4_only, False) is v4_only
