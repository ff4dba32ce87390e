"""Port-mapping operations against one resolved gateway."""

from __future__ import annotations

import asyncio
import dataclasses
import ipaddress
import logging
import socket
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from igdnat.nat.device import DeviceReference, IPAddress
from igdnat.nat.errors import (
    ARRAY_INDEX_INVALID,
    NO_SUCH_ENTRY_IN_ARRAY,
    ErrorTranslator,
    translator,
)
from igdnat.nat.exceptions import (
    MappingError,
    MessageDecodeError,
    NATError,
    TransportError,
)
from igdnat.nat.future import CompletionCallback, EnumerationFuture, OperationFuture
from igdnat.nat.mapping import NOT_FOUND, Mapping, Protocol
from igdnat.nat.messages import (
    WAN_IP_CONNECTION_SERVICE,
    ActionRequest,
    EmptyResponse,
    ExternalIPAddressResponse,
    Outcome,
    PortMappingEntryResponse,
    TransportFailure,
    add_port_mapping_request,
    decode_response,
    delete_port_mapping_request,
    encode_action,
    get_external_ip_request,
    get_generic_entry_request,
    get_specific_entry_request,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_MAPPING_ENTRIES = 1024


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class MappingSession:
    """Issues WANIPConnection control actions for one device.

    Every operation comes as ``begin_x`` (returns an :class:`OperationFuture`,
    optionally calling ``callback`` on completion), ``end_x`` (turns the
    completed future into a value or a :class:`MappingError`, blocking if it
    is still pending) and the coroutine ``x`` combining both.

    ``begin_x`` may be called from the session's event loop or from any other
    thread; in the latter case ``end_x`` is the blocking convenience layer.
    """

    def __init__(
        self,
        device: DeviceReference,
        transport,
        *,
        internal_host: str | None = None,
        max_mapping_entries: int = DEFAULT_MAX_MAPPING_ENTRIES,
        service_type: str = WAN_IP_CONNECTION_SERVICE,
        loop: asyncio.AbstractEventLoop | None = None,
        errors: ErrorTranslator = translator,
    ) -> None:
        if not device.is_resolved:
            msg = f"Device {device.description_url} has not been resolved"
            raise NATError(msg)
        self.device = device
        self.transport = transport
        self.internal_host = internal_host
        self.max_mapping_entries = max_mapping_entries
        self.service_type = service_type
        self.errors = errors
        # A session created inside a coroutine belongs to that loop
        self._loop = loop or _running_loop()
        self._tasks: set[asyncio.Task] = set()
        self.logger = logging.getLogger(__name__)

    # Dispatch

    def _dispatch(self, coro: Coroutine[Any, Any, None]) -> None:
        running = _running_loop()
        if running is not None and (self._loop is None or running is self._loop):
            self._loop = running
            task = running.create_task(coro)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif self._loop is not None and not self._loop.is_closed():
            asyncio.run_coroutine_threadsafe(coro, self._loop)
        else:
            coro.close()
            msg = "No event loop available to run UPnP operations"
            raise NATError(msg)

    def _begin(
        self,
        future: OperationFuture[Any],
        drive: Callable[[OperationFuture[Any]], Awaitable[None]],
    ) -> OperationFuture[Any]:
        self._dispatch(self._run(future, drive))
        return future

    async def _run(
        self,
        future: OperationFuture[Any],
        drive: Callable[[OperationFuture[Any]], Awaitable[None]],
    ) -> None:
        try:
            await drive(future)
        except Exception as e:
            # Never leave a caller blocked on a future that cannot complete
            self.logger.exception("Unexpected error during %s", future.action)
            future.complete(TransportFailure(0, f"{type(e).__name__}: {e}"))

    async def _exchange(self, request: ActionRequest) -> Outcome:
        """Send one control request and decode its outcome."""
        headers, body = encode_action(request, self.service_type)
        try:
            response = await self.transport.post_action(
                self.device.control_url, headers, body
            )
        except TransportError as e:
            return TransportFailure(e.status, e.message)

        try:
            return decode_response(request.name, response.body)
        except MessageDecodeError as e:
            self.logger.debug(
                "%s returned HTTP %d with undecodable body: %s",
                request.name,
                response.status,
                e,
            )
            if response.status != 200:
                return TransportFailure(
                    response.status,
                    f"{request.name} failed: HTTP {response.status}",
                )
            return TransportFailure(response.status, e.message)

    def _single(self, request: ActionRequest) -> Callable[[OperationFuture[Any]], Awaitable[None]]:
        async def drive(future: OperationFuture[Any]) -> None:
            future.complete(await self._exchange(request))

        return drive

    def _wait(self, future: OperationFuture[Any]) -> Outcome:
        if not future.is_completed:
            running = _running_loop()
            if running is not None and running is self._loop:
                msg = (
                    f"Cannot block on {future.action} from the event loop thread; "
                    "await the operation instead"
                )
                raise NATError(msg)
            future.wait()
        return future.outcome

    # External IP

    def begin_get_external_ip(
        self, callback: CompletionCallback | None = None
    ) -> OperationFuture[IPAddress]:
        request = get_external_ip_request()
        return self._begin(OperationFuture(request.name, callback), self._single(request))

    def end_get_external_ip(self, future: OperationFuture[IPAddress]) -> IPAddress:
        outcome = self._wait(future)
        self.errors.raise_for_outcome(outcome)
        if not isinstance(outcome, ExternalIPAddressResponse):
            raise MappingError(0, f"Unexpected response to {future.action}")
        return outcome.address

    async def get_external_ip(self) -> IPAddress:
        """Return the gateway's external IP address."""
        future = self.begin_get_external_ip()
        await future
        return self.end_get_external_ip(future)

    # Create / delete

    def _resolve_internal_host(self, mapping: Mapping) -> str:
        if mapping.internal_host:
            return mapping.internal_host
        if self.internal_host:
            return self.internal_host
        return local_address_for(self.device)

    def begin_create_mapping(
        self,
        mapping: Mapping,
        description: str | None = None,
        callback: CompletionCallback | None = None,
    ) -> OperationFuture[None]:
        if description is None:
            description = mapping.description
        request = add_port_mapping_request(
            mapping, self._resolve_internal_host(mapping), description
        )
        future: OperationFuture[None] = OperationFuture(request.name, callback, mapping)
        return self._begin(future, self._single(request))

    def end_create_mapping(self, future: OperationFuture[None]) -> None:
        self.errors.raise_for_outcome(self._wait(future))
        mapping = future.context
        self.logger.info(
            "Mapped %s port %s -> %s on %s",
            mapping.protocol.value,
            mapping.external_port,
            mapping.local_port,
            self.device.host_endpoint,
        )

    async def create_mapping(
        self, mapping: Mapping, description: str | None = None
    ) -> None:
        """Create a port mapping. ``description`` overrides the mapping's own."""
        future = self.begin_create_mapping(mapping, description)
        await future
        self.end_create_mapping(future)

    def begin_delete_mapping(
        self, mapping: Mapping, callback: CompletionCallback | None = None
    ) -> OperationFuture[None]:
        request = delete_port_mapping_request(mapping)
        future: OperationFuture[None] = OperationFuture(request.name, callback, mapping)
        return self._begin(future, self._single(request))

    def end_delete_mapping(self, future: OperationFuture[None]) -> None:
        self.errors.raise_for_outcome(self._wait(future))
        self.logger.info("Deleted port mapping %s on %s", future.context, self.device.host_endpoint)

    async def delete_mapping(self, mapping: Mapping) -> None:
        """Delete the mapping for ``mapping``'s external port and protocol."""
        future = self.begin_delete_mapping(mapping)
        await future
        self.end_delete_mapping(future)

    # Specific lookup

    def begin_get_specific_mapping(
        self,
        port: int,
        protocol: Protocol | str,
        callback: CompletionCallback | None = None,
    ) -> OperationFuture[Mapping]:
        protocol = Protocol.parse(protocol)
        request = get_specific_entry_request(port, protocol)
        future: OperationFuture[Mapping] = OperationFuture(
            request.name, callback, (port, protocol)
        )
        return self._begin(future, self._single(request))

    def end_get_specific_mapping(self, future: OperationFuture[Mapping]) -> Mapping:
        outcome = self._wait(future)
        if self.errors.raise_for_outcome(outcome, sentinel=NO_SUCH_ENTRY_IN_ARRAY):
            return NOT_FOUND
        if not isinstance(outcome, PortMappingEntryResponse):
            raise MappingError(0, f"Unexpected response to {future.action}")
        # The router does not reliably echo the lookup key; trust the request
        port, protocol = future.context
        return dataclasses.replace(outcome.mapping, external_port=port, protocol=protocol)

    async def get_specific_mapping(
        self, port: int, protocol: Protocol | str
    ) -> Mapping:
        """Look up one mapping. Returns ``NOT_FOUND`` if there is none."""
        future = self.begin_get_specific_mapping(port, protocol)
        await future
        return self.end_get_specific_mapping(future)

    # Enumeration

    async def _enumerate(self, future: EnumerationFuture) -> None:
        index = 0
        while True:
            if index >= self.max_mapping_entries:
                self.logger.warning(
                    "Stopping enumeration of %s after %d entries",
                    self.device.host_endpoint,
                    index,
                )
                future.complete(EmptyResponse(future.action))
                return
            outcome = await self._exchange(get_generic_entry_request(index))
            if not isinstance(outcome, PortMappingEntryResponse):
                future.complete(outcome)
                return
            future.mappings.append(outcome.mapping)
            index += 1

    def begin_get_all_mappings(
        self, callback: CompletionCallback | None = None
    ) -> EnumerationFuture:
        future = EnumerationFuture(get_generic_entry_request(0).name, callback)
        self._begin(future, self._enumerate)
        return future

    def end_get_all_mappings(self, future: EnumerationFuture) -> list[Mapping]:
        outcome = self._wait(future)
        try:
            self.errors.raise_for_outcome(outcome, sentinel=ARRAY_INDEX_INVALID)
        except MappingError as e:
            e.partial_mappings = list(future.mappings)
            raise
        return list(future.mappings)

    async def get_all_mappings(self) -> list[Mapping]:
        """Enumerate every mapping, in the router's index order."""
        future = self.begin_get_all_mappings()
        await future
        return self.end_get_all_mappings(future)

    async def wait_pending(self) -> None:
        """Wait for operations dispatched on this session's loop."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def local_address_for(device: DeviceReference) -> str:
    """Return the local interface address that routes to ``device``.

    Falls back to an empty string, which some routers accept.
    """
    address = device.host_endpoint.address
    family = socket.AF_INET6 if isinstance(address, ipaddress.IPv6Address) else socket.AF_INET
    try:
        with socket.socket(family, socket.SOCK_DGRAM) as s:
            s.connect((str(address), device.host_endpoint.port or 1900))
            return s.getsockname()[0]
    except OSError as e:
        logger.warning(
            "Could not determine local IP for UPnP mapping (error: %s), using empty string. "
            "This may cause the router to reject the mapping request.",
            e,
        )
        return ""
