"""Registry of discovered gateways."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from igdnat.nat.device import DeviceReference
from igdnat.nat.locator import DeviceLocator
from igdnat.nat.resolver import ServiceResolver
from igdnat.nat.session import MappingSession
from igdnat.nat.transport import HTTPTransport

logger = logging.getLogger(__name__)

DeviceFoundCallback = Callable[[DeviceReference], None]


class DeviceManager:
    """Feeds discovery responses through location and resolution.

    Each distinct device is resolved at most once at a time; repeat
    observations only refresh ``last_seen``. Resolved devices are announced
    through ``on_device_found``, exactly once per device.
    """

    def __init__(
        self,
        transport: HTTPTransport | None = None,
        resolver: ServiceResolver | None = None,
        on_device_found: DeviceFoundCallback | None = None,
        *,
        internal_host: str | None = None,
        max_mapping_entries: int | None = None,
    ) -> None:
        self.transport = transport or HTTPTransport()
        self.resolver = resolver or ServiceResolver(self.transport)
        self.locator = DeviceLocator()
        self.on_device_found = on_device_found
        self.internal_host = internal_host
        self.max_mapping_entries = max_mapping_entries
        self.logger = logging.getLogger(__name__)

        self._devices: dict[DeviceReference, DeviceReference] = {}
        self._pending: dict[DeviceReference, asyncio.Task] = {}

    @classmethod
    def from_config(
        cls, config, on_device_found: DeviceFoundCallback | None = None
    ) -> DeviceManager:
        """Build a manager from the ``upnp`` section of a :class:`Config`."""
        upnp = config.upnp
        transport = HTTPTransport(timeout=upnp.http_timeout)
        resolver = ServiceResolver(
            transport,
            max_attempts=upnp.resolve_max_attempts,
            retry_delay=upnp.resolve_retry_delay,
        )
        return cls(
            transport,
            resolver,
            on_device_found,
            internal_host=upnp.internal_host,
            max_mapping_entries=upnp.max_mapping_entries,
        )

    @property
    def devices(self) -> list[DeviceReference]:
        """Resolved devices, in resolution order."""
        return list(self._devices.values())

    def get_device(self, candidate: DeviceReference) -> DeviceReference | None:
        """Return the known device equal to ``candidate``, if resolved."""
        return self._devices.get(candidate)

    def handle_discovery_record(self, text: str | bytes) -> DeviceReference | None:
        """Process one discovery response.

        Must be called from the event loop the manager runs on.

        Returns:
            The tracked reference for the device, or None if the record was
            unusable

        """
        candidate = self.locator.locate(text)
        if candidate is None:
            return None

        known = self._devices.get(candidate)
        if known is not None:
            known.touch()
            return known

        if candidate in self._pending:
            self.logger.debug("Resolution of %s already in progress", candidate.description_url)
            return None

        task = self.resolver.begin_resolve(candidate, self._on_resolved)
        self._pending[candidate] = task
        task.add_done_callback(lambda _: self._pending.pop(candidate, None))
        return candidate

    def _on_resolved(self, device: DeviceReference) -> None:
        if device in self._devices:
            self._devices[device].touch()
            return
        self._devices[device] = device
        self.logger.info("Found UPnP gateway: %s", device.description_url)
        if self.on_device_found is not None:
            self.on_device_found(device)

    async def wait_pending(self) -> None:
        """Wait until every in-flight resolution has finished."""
        if self._pending:
            await asyncio.gather(*self._pending.values(), return_exceptions=True)

    def session_for(self, device: DeviceReference, **kwargs) -> MappingSession:
        """Create a mapping session for a resolved device."""
        kwargs.setdefault("internal_host", self.internal_host)
        if self.max_mapping_entries is not None:
            kwargs.setdefault("max_mapping_entries", self.max_mapping_entries)
        return MappingSession(device, self.transport, **kwargs)

    async def close(self) -> None:
        for task in list(self._pending.values()):
            task.cancel()
        await self.wait_pending()
        await self.transport.close()
