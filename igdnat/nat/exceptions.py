"""NAT traversal exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from igdnat.exceptions import IGDNatError

if TYPE_CHECKING:  # pragma: no cover
    from igdnat.nat.mapping import Mapping


class NATError(IGDNatError):
    """Base exception for NAT traversal errors."""


class UPnPError(NATError):
    """UPnP specific error."""


class MappingError(UPnPError):
    """A port-mapping operation failed.

    This is the only error type surfaced to callers of a mapping session.
    ``code`` is the UPnP error code for protocol faults, or the HTTP status
    (``0`` when no response arrived) for transport failures.
    """

    def __init__(
        self,
        code: int,
        description: str,
        partial_mappings: list[Mapping] | None = None,
    ):
        super().__init__(f"UPnP error {code}: {description}")
        self.code = code
        self.description = description
        self.partial_mappings: list[Mapping] = partial_mappings or []


class DiscoveryParseError(UPnPError):
    """Discovery text did not contain a usable HTTP location."""


class ResolutionError(UPnPError):
    """Device description could not be turned into a control endpoint."""


class ResolutionTimeout(ResolutionError):
    """Device description never parsed within the retry budget."""


class ResolutionMismatch(ResolutionError):
    """Device description has no WANIPConnection service."""


class TransportError(UPnPError):
    """Network failure without a decodable response body."""

    def __init__(self, status: int, message: str):
        super().__init__(message, {"status": status} if status else None)
        self.status = status


class MessageDecodeError(UPnPError):
    """Response body is not a recognisable SOAP message."""
