"""Tests for discovery record parsing (igdnat/nat/locator.py).

Covers:
- Location field lookup (case, whitespace, missing field)
- URL parsing (port and path defaults, IPv6 literals, rejects)
- DeviceLocator swallowing malformed candidates
- Device identity ignoring last_seen and control path
"""

from __future__ import annotations

import ipaddress

import pytest

from igdnat.nat.device import DeviceReference, HostEndpoint
from igdnat.nat.exceptions import DiscoveryParseError, NATError
from igdnat.nat.locator import (
    DeviceLocator,
    find_location,
    parse_discovery_record,
    parse_location_url,
)

pytestmark = [pytest.mark.unit, pytest.mark.network]

SSDP_RESPONSE = (
    "HTTP/1.1 200 OK\r\n"
    "CACHE-CONTROL: max-age=120\r\n"
    "ST: urn:schemas-upnp-org:device:InternetGatewayDevice:1\r\n"
    "LOCATION: http://192.168.1.1:5000/rootDesc.xml\r\n"
    "SERVER: OpenWRT/OpenWrt UPnP/1.1 MiniUPnPd/2.0\r\n"
    "\r\n"
)


class TestFindLocation:
    """Tests for find_location."""

    def test_finds_uppercase_field(self):
        assert find_location(SSDP_RESPONSE) == "http://192.168.1.1:5000/rootDesc.xml"

    def test_field_name_is_case_insensitive(self):
        text = "location:   http://10.0.0.1/desc.xml  \n"
        assert find_location(text) == "http://10.0.0.1/desc.xml"

    def test_first_location_wins(self):
        text = "Location: http://10.0.0.1/a.xml\r\nLocation: http://10.0.0.2/b.xml\r\n"
        assert find_location(text) == "http://10.0.0.1/a.xml"

    def test_missing_field_raises(self):
        with pytest.raises(DiscoveryParseError, match="no Location"):
            find_location("HTTP/1.1 200 OK\r\nST: upnp:rootdevice\r\n")

    def test_similar_field_name_not_matched(self):
        with pytest.raises(DiscoveryParseError):
            find_location("X-Location: http://10.0.0.1/desc.xml\r\n")


class TestParseLocationURL:
    """Tests for parse_location_url."""

    def test_full_url(self):
        device = parse_location_url("http://192.168.1.1:5000/rootDesc.xml")

        assert device.host_endpoint == HostEndpoint(ipaddress.ip_address("192.168.1.1"), 5000)
        assert device.description_path == "/rootDesc.xml"
        assert device.description_url == "http://192.168.1.1:5000/rootDesc.xml"
        assert not device.is_resolved

    def test_port_defaults_to_80(self):
        device = parse_location_url("http://192.168.1.1/igd.xml")
        assert device.host_endpoint.port == 80

    def test_path_defaults_to_root(self):
        device = parse_location_url("http://192.168.1.1:8080")
        assert device.description_path == "/"
        assert device.host_endpoint.port == 8080

    def test_query_kept_in_path(self):
        device = parse_location_url("http://10.0.0.1:49152/desc.xml?id=1")
        assert device.description_path == "/desc.xml?id=1"

    def test_ipv6_literal(self):
        device = parse_location_url("http://[fe80::1]:1900/desc.xml")

        assert device.host_endpoint.address == ipaddress.ip_address("fe80::1")
        assert device.host_endpoint.port == 1900
        assert device.base_url == "http://[fe80::1]:1900"

    def test_ipv6_literal_without_port(self):
        device = parse_location_url("http://[::1]/desc.xml")
        assert device.host_endpoint.port == 80

    @pytest.mark.parametrize(
        "url",
        [
            "https://192.168.1.1/desc.xml",
            "ftp://192.168.1.1/desc.xml",
            "192.168.1.1:5000/desc.xml",
            "http://router.local:5000/desc.xml",
            "http://192.168.1.1:http/desc.xml",
            "http://192.168.1.1:70000/desc.xml",
            "http://[fe80::1:1900/desc.xml",
            "",
        ],
    )
    def test_rejects_unusable_locations(self, url):
        with pytest.raises(DiscoveryParseError):
            parse_location_url(url)


class TestParseDiscoveryRecord:
    """Tests for parse_discovery_record and DeviceLocator."""

    def test_mixed_case_location_with_port(self):
        device = parse_discovery_record(
            "HTTP/1.1 200 OK\r\nLocation: http://192.168.1.1:2869/desc.xml\r\nST: upnp:rootdevice\r\n"
        )

        assert str(device.host_endpoint) == "192.168.1.1:2869"
        assert device.description_path == "/desc.xml"

    def test_bytes_input(self):
        device = parse_discovery_record(SSDP_RESPONSE.encode())
        assert device.description_path == "/rootDesc.xml"

    def test_locator_returns_reference(self):
        device = DeviceLocator().locate(SSDP_RESPONSE)
        assert isinstance(device, DeviceReference)

    def test_locator_swallows_malformed(self, caplog):
        caplog.set_level("DEBUG", logger="igdnat.nat.locator")

        assert DeviceLocator().locate("HTTP/1.1 200 OK\r\n\r\n") is None
        assert DeviceLocator().locate("LOCATION: https://10.0.0.1/desc.xml") is None
        assert "Discarding discovery candidate" in caplog.text


class TestDeviceReference:
    """Tests for DeviceReference identity and control URL handling."""

    def test_identity_ignores_last_seen_and_control_path(self):
        a = parse_location_url("http://192.168.1.1:5000/rootDesc.xml")
        b = parse_location_url("http://192.168.1.1:5000/rootDesc.xml")
        b.touch()
        b.bind_control_path("/ctl/IPConn")

        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1

    def test_different_path_is_different_device(self):
        a = parse_location_url("http://192.168.1.1:5000/rootDesc.xml")
        b = parse_location_url("http://192.168.1.1:5000/other.xml")
        assert a != b

    def test_touch_advances_last_seen(self, device):
        before = device.last_seen
        device.touch()
        assert device.last_seen >= before

    def test_control_url_requires_resolution(self, device):
        with pytest.raises(NATError):
            _ = device.control_url

    @pytest.mark.parametrize(
        ("control_path", "expected"),
        [
            ("/ctl/IPConn", "http://192.168.1.1:5000/ctl/IPConn"),
            ("ctl/IPConn", "http://192.168.1.1:5000/ctl/IPConn"),
            ("http://192.168.1.1:6000/ctl", "http://192.168.1.1:6000/ctl"),
        ],
    )
    def test_control_url(self, device, control_path, expected):
        device.bind_control_path(control_path)
        assert device.control_url == expected

    def test_control_path_written_once(self, device):
        device.bind_control_path("/ctl/IPConn")
        device.bind_control_path("/ctl/IPConn")

        with pytest.raises(NATError, match="already resolved"):
            device.bind_control_path("/other")
        assert device.control_path == "/ctl/IPConn"
