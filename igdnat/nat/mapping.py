"""Port mapping value types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Protocol(str, Enum):
    """Transport protocol of a port mapping."""

    TCP = "TCP"
    UDP = "UDP"

    @classmethod
    def parse(cls, value: str | Protocol) -> Protocol:
        """Parse a protocol name case-insensitively."""
        if isinstance(value, Protocol):
            return value
        try:
            return cls(value.strip().upper())
        except ValueError:
            msg = f"Unknown protocol: {value!r}"
            raise ValueError(msg) from None


@dataclass(frozen=True)
class Mapping:
    """A port mapping entry on the gateway."""

    external_port: int
    protocol: Protocol = Protocol.TCP
    internal_port: int | None = None  # None: same as external_port
    internal_host: str = ""
    description: str = ""
    lease: int = 0  # seconds, 0 for permanent

    @property
    def local_port(self) -> int:
        """Internal port, falling back to the external port."""
        if self.internal_port is None:
            return self.external_port
        return self.internal_port

    @property
    def found(self) -> bool:
        """False only for the NOT_FOUND sentinel."""
        return self.external_port != -1

    def __str__(self) -> str:
        return f"{self.protocol.value}:{self.external_port}"


# Returned by lookups that found no entry
NOT_FOUND = Mapping(external_port=-1, protocol=Protocol.TCP)
