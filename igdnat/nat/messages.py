"""SOAP control messages for the WANIPConnection service."""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from xml.sax.saxutils import escape

import defusedxml.ElementTree as ET  # noqa: N817
from defusedxml import DefusedXmlException

from igdnat.nat.device import IPAddress
from igdnat.nat.exceptions import MessageDecodeError
from igdnat.nat.mapping import Mapping, Protocol

logger = logging.getLogger(__name__)

SOAP_ENVELOPE_NS = "http://schemas.xmlsoap.org/soap/envelope/"
UPNP_CONTROL_NS = "urn:schemas-upnp-org:control-1-0"
WAN_IP_CONNECTION_SERVICE = "urn:schemas-upnp-org:service:WANIPConnection:1"

GET_EXTERNAL_IP = "GetExternalIPAddress"
ADD_PORT_MAPPING = "AddPortMapping"
DELETE_PORT_MAPPING = "DeletePortMapping"
GET_GENERIC_ENTRY = "GetGenericPortMappingEntry"
GET_SPECIFIC_ENTRY = "GetSpecificPortMappingEntry"


@dataclass(frozen=True)
class ActionRequest:
    """A control action and its arguments, in wire order."""

    name: str
    arguments: dict[str, str] = field(default_factory=dict)


# Outcomes


@dataclass(frozen=True)
class ExternalIPAddressResponse:
    address: IPAddress


@dataclass(frozen=True)
class PortMappingEntryResponse:
    mapping: Mapping


@dataclass(frozen=True)
class EmptyResponse:
    """Success of an action that returns no values."""

    action: str


@dataclass(frozen=True)
class FaultMessage:
    """UPnP error decoded from a SOAP fault."""

    code: int
    description: str


@dataclass(frozen=True)
class TransportFailure:
    """Exchange failed without a decodable fault.

    ``status`` is the HTTP status if a response arrived, otherwise 0.
    """

    status: int
    message: str


SuccessMessage = ExternalIPAddressResponse | PortMappingEntryResponse | EmptyResponse
Outcome = SuccessMessage | FaultMessage | TransportFailure


# Request builders


def get_external_ip_request() -> ActionRequest:
    return ActionRequest(GET_EXTERNAL_IP)


def add_port_mapping_request(
    mapping: Mapping, internal_host: str, description: str
) -> ActionRequest:
    return ActionRequest(
        ADD_PORT_MAPPING,
        {
            "NewRemoteHost": "",
            "NewExternalPort": str(mapping.external_port),
            "NewProtocol": mapping.protocol.value,
            "NewInternalPort": str(mapping.local_port),
            "NewInternalClient": internal_host,
            "NewEnabled": "1",
            "NewPortMappingDescription": description,
            "NewLeaseDuration": str(mapping.lease),
        },
    )


def delete_port_mapping_request(mapping: Mapping) -> ActionRequest:
    return ActionRequest(
        DELETE_PORT_MAPPING,
        {
            "NewRemoteHost": "",
            "NewExternalPort": str(mapping.external_port),
            "NewProtocol": mapping.protocol.value,
        },
    )


def get_generic_entry_request(index: int) -> ActionRequest:
    return ActionRequest(GET_GENERIC_ENTRY, {"NewPortMappingIndex": str(index)})


def get_specific_entry_request(port: int, protocol: Protocol) -> ActionRequest:
    return ActionRequest(
        GET_SPECIFIC_ENTRY,
        {
            "NewRemoteHost": "",
            "NewExternalPort": str(port),
            "NewProtocol": protocol.value,
        },
    )


def encode_action(
    request: ActionRequest, service_type: str = WAN_IP_CONNECTION_SERVICE
) -> tuple[dict[str, str], bytes]:
    """Build the HTTP headers and SOAP envelope for a control action.

    Args:
        request: Action to encode
        service_type: UPnP service type the action belongs to

    Returns:
        (headers, body) tuple

    """
    param_xml = "\n".join(
        f"      <{key}>{escape(value)}</{key}>"
        for key, value in request.arguments.items()
    )
    body = f"""<?xml version="1.0"?>
<s:Envelope xmlns:s="{SOAP_ENVELOPE_NS}"
            s:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">
  <s:Body>
    <u:{request.name} xmlns:u="{service_type}">
{param_xml}
    </u:{request.name}>
  </s:Body>
</s:Envelope>"""
    headers = {
        "Content-Type": 'text/xml; charset="utf-8"',
        "SOAPAction": f'"{service_type}#{request.name}"',
    }
    return headers, body.encode("utf-8")


# Response decoding


def _local_name(tag: str) -> str:
    return tag.split("}")[-1] if "}" in tag else tag


def _find_text(parent, name: str) -> str | None:
    """Find a descendant by local name, with or without the UPnP namespace."""
    elem = parent.find(f".//{name}")
    if elem is None:
        elem = parent.find(f".//{{{UPNP_CONTROL_NS}}}{name}")
    if elem is None:
        return None
    return (elem.text or "").strip()


def _decode_fault(fault) -> FaultMessage:
    code_text = _find_text(fault, "errorCode")
    if code_text is None:
        fault_string = _find_text(fault, "faultstring") or "Unknown error"
        msg = f"SOAP fault without UPnP error code: {fault_string}"
        raise MessageDecodeError(msg)
    try:
        code = int(code_text)
    except ValueError as e:
        msg = f"Non-numeric UPnP error code: {code_text!r}"
        raise MessageDecodeError(msg) from e
    description = _find_text(fault, "errorDescription") or ""
    return FaultMessage(code, description)


def _int_arg(values: dict[str, str], name: str, default: int) -> int:
    raw = values.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        msg = f"{name} is not an integer: {raw!r}"
        raise MessageDecodeError(msg) from e


def _decode_external_ip(values: dict[str, str]) -> SuccessMessage:
    raw = values.get("NewExternalIPAddress", "").strip()
    try:
        return ExternalIPAddressResponse(ipaddress.ip_address(raw))
    except ValueError as e:
        msg = f"Invalid external IP address: {raw!r}"
        raise MessageDecodeError(msg) from e


def _decode_entry(values: dict[str, str]) -> SuccessMessage:
    # GetSpecificPortMappingEntry does not echo port and protocol
    protocol_text = values.get("NewProtocol", "").strip()
    try:
        protocol = Protocol.parse(protocol_text) if protocol_text else Protocol.TCP
    except ValueError as e:
        raise MessageDecodeError(str(e)) from e
    internal_port = _int_arg(values, "NewInternalPort", -1)
    mapping = Mapping(
        external_port=_int_arg(values, "NewExternalPort", -1),
        protocol=protocol,
        internal_port=internal_port if internal_port >= 0 else None,
        internal_host=values.get("NewInternalClient", "").strip(),
        description=values.get("NewPortMappingDescription", ""),
        lease=_int_arg(values, "NewLeaseDuration", 0),
    )
    return PortMappingEntryResponse(mapping)


_DECODERS: dict[str, Callable[[dict[str, str]], SuccessMessage]] = {
    GET_EXTERNAL_IP: _decode_external_ip,
    GET_GENERIC_ENTRY: _decode_entry,
    GET_SPECIFIC_ENTRY: _decode_entry,
}


def decode_response(action: str, body: bytes | str) -> SuccessMessage | FaultMessage:
    """Decode a control response for ``action``.

    Args:
        action: Name of the action the response answers
        body: Raw response body

    Returns:
        Typed success message or the decoded fault

    Raises:
        MessageDecodeError: If the body is neither

    """
    try:
        root = ET.fromstring(body)  # noqa: S314
    except (ET.ParseError, DefusedXmlException) as e:
        msg = f"Failed to parse SOAP response: {e}"
        raise MessageDecodeError(msg) from e

    soap_body = root.find(f".//{{{SOAP_ENVELOPE_NS}}}Body")
    if soap_body is None:
        msg = "SOAP response has no Body"
        raise MessageDecodeError(msg)

    fault = soap_body.find(f".//{{{SOAP_ENVELOPE_NS}}}Fault")
    if fault is not None:
        return _decode_fault(fault)

    for elem in soap_body:
        if _local_name(elem.tag) == f"{action}Response":
            values = {_local_name(child.tag): child.text or "" for child in elem}
            decoder = _DECODERS.get(action)
            if decoder is None:
                return EmptyResponse(action)
            return decoder(values)

    msg = f"SOAP response has no {action}Response element"
    raise MessageDecodeError(msg)
