"""Gateway device references."""

from __future__ import annotations

import ipaddress
import time
from dataclasses import dataclass, field

from igdnat.nat.exceptions import NATError

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


@dataclass(frozen=True)
class HostEndpoint:
    """IP address and port of a device's HTTP server."""

    address: IPAddress
    port: int

    def __str__(self) -> str:
        if self.address.version == 6:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"


@dataclass(unsafe_hash=True)
class DeviceReference:
    """A discovered gateway, identified by where its description lives.

    Only ``host_endpoint`` and ``description_path`` take part in equality and
    hashing. The control path is resolved after the reference exists, and
    ``last_seen`` belongs to discovery.
    """

    host_endpoint: HostEndpoint
    description_path: str
    last_seen: float = field(default_factory=time.monotonic, compare=False)
    _control_path: str | None = field(
        default=None, init=False, repr=False, compare=False
    )

    @property
    def control_path(self) -> str | None:
        """Control URL of the WANIPConnection service, once resolved."""
        return self._control_path

    @property
    def is_resolved(self) -> bool:
        return self._control_path is not None

    def bind_control_path(self, control_path: str) -> None:
        """Record the resolved control path. Written once."""
        if self._control_path is not None and self._control_path != control_path:
            msg = (
                f"Control path of {self.base_url} already resolved to "
                f"{self._control_path!r}"
            )
            raise NATError(msg)
        self._control_path = control_path

    def touch(self) -> None:
        """Mark the device as observed now."""
        self.last_seen = time.monotonic()

    @property
    def base_url(self) -> str:
        return f"http://{self.host_endpoint}"

    @property
    def description_url(self) -> str:
        return f"{self.base_url}{self.description_path}"

    @property
    def control_url(self) -> str:
        """Absolute control URL.

        Raises:
            NATError: If the device has not been resolved yet

        """
        if self._control_path is None:
            msg = f"Device {self.description_url} has no control path yet"
            raise NATError(msg)
        if self._control_path.lower().startswith(("http://", "https://")):
            return self._control_path
        if not self._control_path.startswith("/"):
            return f"{self.base_url}/{self._control_path}"
        return f"{self.base_url}{self._control_path}"
