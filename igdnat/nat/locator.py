"""Turns raw discovery responses into device references."""

from __future__ import annotations

import ipaddress
import logging

from igdnat.nat.device import DeviceReference, HostEndpoint
from igdnat.nat.exceptions import DiscoveryParseError

logger = logging.getLogger(__name__)

HTTP_SCHEME = "http://"
DEFAULT_HTTP_PORT = 80


def find_location(text: str) -> str:
    """Return the value of the first ``Location`` field in discovery text.

    Raises:
        DiscoveryParseError: If no such field exists

    """
    for line in text.splitlines():
        name, sep, value = line.partition(":")
        if sep and name.strip().lower() == "location":
            return value.strip()
    msg = "Discovery response has no Location field"
    raise DiscoveryParseError(msg)


def parse_location_url(location: str) -> DeviceReference:
    """Parse an absolute ``http://host:port/path`` description URL.

    Args:
        location: Description document URL

    Returns:
        Unresolved device reference

    Raises:
        DiscoveryParseError: If the URL is not a usable HTTP location

    """
    location = location.strip()
    if not location.lower().startswith(HTTP_SCHEME):
        msg = f"Location is not an http:// URL: {location!r}"
        raise DiscoveryParseError(msg)

    remainder = location[len(HTTP_SCHEME) :]
    host_port, slash, path = remainder.partition("/")
    description_path = slash + path if slash else "/"

    host_endpoint = _parse_host_port(host_port)
    return DeviceReference(host_endpoint, description_path)


def _parse_host_port(host_port: str) -> HostEndpoint:
    if host_port.startswith("["):
        # [v6addr]:port
        host, bracket, rest = host_port[1:].partition("]")
        if not bracket:
            msg = f"Unterminated IPv6 literal in {host_port!r}"
            raise DiscoveryParseError(msg)
        port_text = rest[1:] if rest.startswith(":") else rest
    else:
        host, _, port_text = host_port.partition(":")

    try:
        address = ipaddress.ip_address(host)
    except ValueError as e:
        msg = f"Location host is not an IP address: {host!r}"
        raise DiscoveryParseError(msg) from e

    if not port_text:
        return HostEndpoint(address, DEFAULT_HTTP_PORT)
    if not (port_text.isascii() and port_text.isdigit()) or int(port_text) > 65535:
        msg = f"Invalid port in location: {port_text!r}"
        raise DiscoveryParseError(msg)
    return HostEndpoint(address, int(port_text))


def parse_discovery_record(text: str | bytes) -> DeviceReference:
    """Parse a discovery response into a device reference.

    Args:
        text: Raw header-like discovery text, lines separated by CR/LF

    Raises:
        DiscoveryParseError: If the text has no usable HTTP location

    """
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="ignore")
    return parse_location_url(find_location(text))


class DeviceLocator:
    """Parses discovery candidates, dropping the malformed ones."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)

    def locate(self, text: str | bytes) -> DeviceReference | None:
        """Return a device reference, or None if the candidate is unusable."""
        try:
            return parse_discovery_record(text)
        except DiscoveryParseError as e:
            self.logger.debug("Discarding discovery candidate: %s", e)
            return None
