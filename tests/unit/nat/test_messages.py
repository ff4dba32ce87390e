"""Tests for SOAP control messages (igdnat/nat/messages.py)."""

from __future__ import annotations

import ipaddress

import defusedxml.ElementTree as ET  # noqa: N817
import pytest

from igdnat.nat.exceptions import MessageDecodeError
from igdnat.nat.mapping import Mapping, Protocol
from igdnat.nat.messages import (
    ADD_PORT_MAPPING,
    DELETE_PORT_MAPPING,
    GET_EXTERNAL_IP,
    GET_GENERIC_ENTRY,
    GET_SPECIFIC_ENTRY,
    SOAP_ENVELOPE_NS,
    WAN_IP_CONNECTION_SERVICE,
    EmptyResponse,
    ExternalIPAddressResponse,
    FaultMessage,
    PortMappingEntryResponse,
    add_port_mapping_request,
    decode_response,
    encode_action,
    get_generic_entry_request,
)

pytestmark = [pytest.mark.unit, pytest.mark.network]


def envelope(inner: str) -> bytes:
    return (
        '<?xml version="1.0"?>'
        f'<s:Envelope xmlns:s="{SOAP_ENVELOPE_NS}" '
        's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
        f"<s:Body>{inner}</s:Body></s:Envelope>"
    ).encode()


def fault(code: str, description: str = "", namespaced: bool = True) -> bytes:
    xmlns = ' xmlns="urn:schemas-upnp-org:control-1-0"' if namespaced else ""
    return envelope(
        "<s:Fault><faultcode>s:Client</faultcode><faultstring>UPnPError</faultstring>"
        f"<detail><UPnPError{xmlns}><errorCode>{code}</errorCode>"
        f"<errorDescription>{description}</errorDescription></UPnPError></detail>"
        "</s:Fault>"
    )


def entry_response(action: str, **values: str) -> bytes:
    args = "".join(f"<{k}>{v}</{k}>" for k, v in values.items())
    return envelope(f'<u:{action}Response xmlns:u="{WAN_IP_CONNECTION_SERVICE}">{args}</u:{action}Response>')


class TestEncodeAction:
    """Tests for encode_action."""

    def test_headers(self):
        headers, _ = encode_action(get_generic_entry_request(3))

        assert headers["SOAPAction"] == f'"{WAN_IP_CONNECTION_SERVICE}#{GET_GENERIC_ENTRY}"'
        assert headers["Content-Type"].startswith("text/xml")

    def test_arguments_in_order_and_escaped(self):
        mapping = Mapping(6881, Protocol.UDP, internal_port=6882, lease=3600)
        request = add_port_mapping_request(mapping, "192.168.1.50", "a <b> & c")
        _, body = encode_action(request)

        root = ET.fromstring(body)
        action = root.find(f".//{{{WAN_IP_CONNECTION_SERVICE}}}{ADD_PORT_MAPPING}")
        assert action is not None
        values = [(child.tag, child.text or "") for child in action]
        assert values == [
            ("NewRemoteHost", ""),
            ("NewExternalPort", "6881"),
            ("NewProtocol", "UDP"),
            ("NewInternalPort", "6882"),
            ("NewInternalClient", "192.168.1.50"),
            ("NewEnabled", "1"),
            ("NewPortMappingDescription", "a <b> & c"),
            ("NewLeaseDuration", "3600"),
        ]

    def test_internal_port_defaults_to_external(self):
        request = add_port_mapping_request(Mapping(8080), "10.0.0.2", "web")
        assert request.arguments["NewInternalPort"] == "8080"


class TestDecodeResponse:
    """Tests for decode_response."""

    def test_external_ip(self):
        body = entry_response(GET_EXTERNAL_IP, NewExternalIPAddress="203.0.113.7")

        outcome = decode_response(GET_EXTERNAL_IP, body)

        assert outcome == ExternalIPAddressResponse(ipaddress.ip_address("203.0.113.7"))

    def test_invalid_external_ip(self):
        body = entry_response(GET_EXTERNAL_IP, NewExternalIPAddress="not-an-ip")
        with pytest.raises(MessageDecodeError, match="Invalid external IP"):
            decode_response(GET_EXTERNAL_IP, body)

    def test_generic_entry(self):
        body = entry_response(
            GET_GENERIC_ENTRY,
            NewRemoteHost="",
            NewExternalPort="6881",
            NewProtocol="udp",
            NewInternalPort="6882",
            NewInternalClient="192.168.1.50",
            NewEnabled="1",
            NewPortMappingDescription="torrent",
            NewLeaseDuration="0",
        )

        outcome = decode_response(GET_GENERIC_ENTRY, body)

        assert outcome == PortMappingEntryResponse(
            Mapping(6881, Protocol.UDP, 6882, "192.168.1.50", "torrent", 0)
        )

    def test_specific_entry_without_key_fields(self):
        body = entry_response(
            GET_SPECIFIC_ENTRY,
            NewInternalPort="80",
            NewInternalClient="192.168.1.10",
            NewEnabled="1",
            NewPortMappingDescription="web",
            NewLeaseDuration="600",
        )

        outcome = decode_response(GET_SPECIFIC_ENTRY, body)

        assert isinstance(outcome, PortMappingEntryResponse)
        assert outcome.mapping.external_port == -1
        assert outcome.mapping.internal_port == 80
        assert outcome.mapping.lease == 600

    def test_entry_with_bad_integer(self):
        body = entry_response(GET_GENERIC_ENTRY, NewExternalPort="eighty")
        with pytest.raises(MessageDecodeError, match="NewExternalPort"):
            decode_response(GET_GENERIC_ENTRY, body)

    @pytest.mark.parametrize("action", [ADD_PORT_MAPPING, DELETE_PORT_MAPPING])
    def test_empty_response(self, action):
        assert decode_response(action, entry_response(action)) == EmptyResponse(action)

    @pytest.mark.parametrize("namespaced", [True, False])
    def test_fault(self, namespaced):
        body = fault("713", "SpecifiedArrayIndexInvalid", namespaced=namespaced)

        outcome = decode_response(GET_GENERIC_ENTRY, body)

        assert outcome == FaultMessage(713, "SpecifiedArrayIndexInvalid")

    def test_fault_without_description(self):
        assert decode_response(ADD_PORT_MAPPING, fault("718")) == FaultMessage(718, "")

    def test_fault_without_error_code(self):
        body = envelope(
            "<s:Fault><faultcode>s:Server</faultcode>"
            "<faultstring>Internal Error</faultstring></s:Fault>"
        )
        with pytest.raises(MessageDecodeError, match="Internal Error"):
            decode_response(ADD_PORT_MAPPING, body)

    def test_fault_with_non_numeric_code(self):
        with pytest.raises(MessageDecodeError, match="Non-numeric"):
            decode_response(ADD_PORT_MAPPING, fault("abc"))

    @pytest.mark.parametrize(
        "body",
        [
            b"",
            b"<html><body>500 Internal Server Error</body></html>",
            b"<s:Envelope",
        ],
    )
    def test_undecodable_bodies(self, body):
        with pytest.raises(MessageDecodeError):
            decode_response(GET_EXTERNAL_IP, body)

    def test_response_for_other_action(self):
        body = entry_response(DELETE_PORT_MAPPING)
        with pytest.raises(MessageDecodeError, match="no AddPortMappingResponse"):
            decode_response(ADD_PORT_MAPPING, body)
