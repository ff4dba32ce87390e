"""UPnP IGD port mapping.

Locates gateways from discovery responses, resolves their WANIPConnection
control endpoint and drives port-mapping actions against it.
"""

from igdnat.nat.device import DeviceReference, HostEndpoint
from igdnat.nat.exceptions import MappingError, NATError, UPnPError
from igdnat.nat.future import OperationFuture, OperationState
from igdnat.nat.locator import DeviceLocator, parse_discovery_record
from igdnat.nat.manager import DeviceManager
from igdnat.nat.mapping import NOT_FOUND, Mapping, Protocol
from igdnat.nat.resolver import ServiceResolver
from igdnat.nat.session import MappingSession
from igdnat.nat.transport import HTTPTransport

__all__ = [
    "NOT_FOUND",
    "DeviceLocator",
    "DeviceManager",
    "DeviceReference",
    "HTTPTransport",
    "HostEndpoint",
    "Mapping",
    "MappingError",
    "MappingSession",
    "NATError",
    "OperationFuture",
    "OperationState",
    "Protocol",
    "ServiceResolver",
    "UPnPError",
    "parse_discovery_record",
]
