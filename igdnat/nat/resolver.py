"""Resolution of a device description into a control endpoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import defusedxml.ElementTree as ET  # noqa: N817
from defusedxml import DefusedXmlException

from igdnat.nat.device import DeviceReference
from igdnat.nat.exceptions import (
    NATError,
    ResolutionError,
    ResolutionMismatch,
    ResolutionTimeout,
    TransportError,
)
from igdnat.nat.messages import WAN_IP_CONNECTION_SERVICE

logger = logging.getLogger(__name__)

DEVICE_NS = "urn:schemas-upnp-org:device-1-0"

# Not every router sends a usable Content-Length, so the body is re-parsed
# after each read until it forms a complete document.
RESOLVE_MAX_ATTEMPTS = 50
RESOLVE_RETRY_DELAY = 0.01

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[object]]
ResolvedCallback = Callable[[DeviceReference], None]


async def accumulate_until_parsed(
    read_chunk: Callable[[], Awaitable[bytes]],
    parse: Callable[[bytes], T],
    *,
    max_attempts: int = RESOLVE_MAX_ATTEMPTS,
    delay: float = RESOLVE_RETRY_DELAY,
    sleep: Sleep = asyncio.sleep,
    read_timeout: float | None = None,
) -> T:
    """Read chunks until the accumulated buffer parses.

    Args:
        read_chunk: Returns the next chunk, ``b""`` when nothing is available
        parse: Parser raising ``ParseError`` on incomplete input
        max_attempts: Failed parses tolerated before giving up
        delay: Pause after each failed parse
        sleep: Delay source
        read_timeout: Longest wait for one read; a read that takes longer
            counts as an empty chunk

    Returns:
        Result of ``parse``

    Raises:
        ResolutionTimeout: If the buffer never parses within the budget

    """
    buffer = bytearray()
    failures = 0
    while True:
        buffer += await _read_within(read_chunk, read_timeout)
        try:
            return parse(bytes(buffer))
        except ET.ParseError as e:
            failures += 1
            if failures >= max_attempts:
                msg = (
                    f"Document incomplete after {failures} attempts "
                    f"({len(buffer)} bytes): {e}"
                )
                raise ResolutionTimeout(msg) from e
            await sleep(delay)


async def _read_within(
    read_chunk: Callable[[], Awaitable[bytes]], timeout: float | None
) -> bytes:
    if timeout is None:
        return await read_chunk()
    try:
        return await asyncio.wait_for(read_chunk(), timeout)
    except asyncio.TimeoutError:
        return b""


def find_control_path(root) -> str:
    """Return the WANIPConnection:1 control URL of a description document.

    Raises:
        ResolutionMismatch: If the document has no such service

    """
    for service_list in root.iter(f"{{{DEVICE_NS}}}serviceList"):
        for service in service_list:
            service_type = service.findtext(f"{{{DEVICE_NS}}}serviceType", "")
            if service_type.strip() != WAN_IP_CONNECTION_SERVICE:
                continue
            control_url = service.findtext(f"{{{DEVICE_NS}}}controlURL", "").strip()
            if control_url:
                return control_url
    msg = "No WANIPConnection service found in device description"
    raise ResolutionMismatch(msg)


class ServiceResolver:
    """Fetches a device description and binds its control path.

    Failures are expected for most candidates and are logged, never raised:
    the on-resolved callback only ever sees router-capable devices.
    """

    def __init__(
        self,
        transport,
        *,
        max_attempts: int = RESOLVE_MAX_ATTEMPTS,
        retry_delay: float = RESOLVE_RETRY_DELAY,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.transport = transport
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()
        self.logger = logging.getLogger(__name__)

    async def resolve(
        self, device: DeviceReference, on_resolved: ResolvedCallback
    ) -> bool:
        """Resolve ``device`` and notify ``on_resolved`` once on success.

        Returns:
            True if the device exposes a WANIPConnection service

        """
        url = device.description_url
        try:
            async with self.transport.open_description(url) as read_chunk:
                root = await accumulate_until_parsed(
                    read_chunk,
                    ET.fromstring,
                    max_attempts=self.max_attempts,
                    delay=self.retry_delay,
                    sleep=self._sleep,
                    read_timeout=self.retry_delay,
                )
            control_path = find_control_path(root)
        except TransportError as e:
            self.logger.debug("Could not fetch description %s: %s", url, e)
            return False
        except (ResolutionError, DefusedXmlException) as e:
            self.logger.debug("Not resolving %s: %s", url, e)
            return False

        try:
            device.bind_control_path(control_path)
        except NATError as e:
            self.logger.debug("Not resolving %s: %s", url, e)
            return False

        self.logger.info(
            "Resolved UPnP gateway %s (control path: %s)", device.host_endpoint, control_path
        )
        try:
            on_resolved(device)
        except Exception:
            self.logger.debug("Resolved-device callback failed for %s", url, exc_info=True)
        return True

    def begin_resolve(
        self, device: DeviceReference, on_resolved: ResolvedCallback
    ) -> asyncio.Task:
        """Schedule :meth:`resolve` on the running loop."""
        task = asyncio.get_running_loop().create_task(self.resolve(device, on_resolved))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_pending(self) -> None:
        """Wait for every scheduled resolution to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
