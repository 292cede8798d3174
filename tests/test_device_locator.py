from __future__ import annotations

import pytest

from ebt_fleet.device_locator import (
    TOKEN_IP,
    TOKEN_MAC,
    TOKEN_NAME,
    DeviceLocator,
    classify_token,
    search_directory,
)
from ebt_fleet.errors import AmbiguousInput, NoMatch
from ebt_fleet.mac_map import LEASES_COMMAND, STATIC_CONF_COMMAND, merge_directory
from ebt_fleet.models import Device

from conftest import FakeExecutor, FakeRouter

LEASES = (
    "1700000000 aa:bb:cc:01:02:03 10.0.0.5 MyPhone *\n"
    "1700000000 aa:bb:cc:01:02:04 10.0.0.6 * *\n"
)
STATIC = "dhcp-host=11:22:33:44:55:66,Printer,10.0.0.50\n"


def _executor(nodes):
    router = FakeRouter(files={LEASES_COMMAND: LEASES, STATIC_CONF_COMMAND: STATIC})
    return FakeExecutor({nodes[0].address: router})


def _no_directory():
    raise AssertionError("directory should not be needed")


def _no_chooser(candidates):
    raise AssertionError("chooser should not be called")


def _directory():
    return merge_directory(
        [],
        [],
        [
            ("aa:bb:cc:01:02:03", "Kids-iPhone"),
            ("aa:bb:cc:01:02:09", "Dad-iPhone"),
            ("aa:bb:cc:01:02:0a", "Roku-Living"),
            ("aa:bb:cc:01:02:0b", ""),
        ],
    )


def test_classify_token():
    assert classify_token("AA:BB:CC:DD:EE:FF") == TOKEN_MAC
    assert classify_token("10.0.0.5") == TOKEN_IP
    assert classify_token("iphone") == TOKEN_NAME
    # short groups are not accepted as operator input
    assert classify_token("a:b:c:d:e:f") == TOKEN_NAME


def test_ip_resolves_through_leases_without_directory(nodes, registry):
    locator = DeviceLocator(_executor(nodes), registry, _no_directory, _no_chooser)
    device = locator.locate("10.0.0.5")
    assert device == Device(mac="aa:bb:cc:01:02:03", ip="10.0.0.5", hostname="MyPhone")


def test_ip_falls_back_to_static_then_arp(nodes, registry):
    arp_calls = []

    def arp(ip):
        arp_calls.append(ip)
        return "0:1:2:3:4:5"

    locator = DeviceLocator(_executor(nodes), registry, _no_directory, _no_chooser, arp_lookup=arp)
    assert locator.locate("10.0.0.50") == Device(mac="11:22:33:44:55:66", ip="10.0.0.50", hostname="Printer")
    assert arp_calls == []
    assert locator.locate("10.0.0.99") == Device(mac="00:01:02:03:04:05", ip="10.0.0.99")
    assert arp_calls == ["10.0.0.99"]


def test_ip_not_found_anywhere(nodes, registry):
    locator = DeviceLocator(_executor(nodes), registry, _no_directory, _no_chooser, arp_lookup=lambda ip: None)
    with pytest.raises(NoMatch):
        locator.locate("10.0.0.99")


def test_mac_lookup_fills_ip_and_hostname(nodes, registry):
    locator = DeviceLocator(_executor(nodes), registry, _no_directory, _no_chooser)
    assert locator.locate("AA:BB:CC:01:02:03") == Device(mac="aa:bb:cc:01:02:03", ip="10.0.0.5", hostname="MyPhone")
    assert locator.locate("11:22:33:44:55:66").hostname == "Printer"
    unknown = locator.locate("00:00:00:00:00:01")
    assert unknown.ip is None and unknown.hostname is None


def test_dhcp_data_read_once(nodes, registry):
    executor = _executor(nodes)
    locator = DeviceLocator(executor, registry, _no_directory, _no_chooser)
    locator.locate("10.0.0.5")
    locator.locate("10.0.0.6")
    router = executor.routers[nodes[0].address]
    assert router.commands.count(LEASES_COMMAND) == 1


def test_search_directory_is_case_insensitive():
    matches = search_directory(_directory(), "IPHONE")
    assert sorted(d.hostname for d in matches) == ["Dad-iPhone", "Kids-iPhone"]


def test_single_name_match_is_auto_selected(nodes, registry):
    locator = DeviceLocator(_executor(nodes), registry, _directory, _no_chooser)
    device = locator.locate("roku")
    assert device.mac == "aa:bb:cc:01:02:0a"
    assert device.ip is None


def test_multiple_matches_use_chooser(nodes, registry):
    seen = []

    def choose(candidates):
        seen.extend(c.hostname for c in candidates)
        return candidates.index(next(c for c in candidates if c.hostname == "Kids-iPhone"))

    locator = DeviceLocator(_executor(nodes), registry, _directory, choose)
    device = locator.locate("iphone")
    assert sorted(seen) == ["Dad-iPhone", "Kids-iPhone"]
    assert device == Device(mac="aa:bb:cc:01:02:03", ip="10.0.0.5", hostname="Kids-iPhone")


def test_chooser_cancel_returns_none(nodes, registry):
    locator = DeviceLocator(_executor(nodes), registry, _directory, lambda c: None)
    assert locator.locate("iphone") is None


def test_chooser_out_of_range(nodes, registry):
    locator = DeviceLocator(_executor(nodes), registry, _directory, lambda c: 7)
    with pytest.raises(AmbiguousInput):
        locator.locate("iphone")


def test_no_name_match(nodes, registry):
    locator = DeviceLocator(_executor(nodes), registry, _directory, _no_chooser)
    with pytest.raises(NoMatch):
        locator.locate("toaster")
