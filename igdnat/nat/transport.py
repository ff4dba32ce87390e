"""HTTP transport for description fetches and control requests."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass

import aiohttp

from igdnat.nat.exceptions import TransportError

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT = 10.0

ChunkReader = Callable[[], Awaitable[bytes]]


@dataclass(frozen=True)
class RawResponse:
    """Undecoded HTTP response to a control request."""

    status: int
    body: bytes
    content_length: int | None


class HTTPTransport:
    """aiohttp-backed transport shared by the resolver and sessions.

    HTTP error statuses are returned, not raised: routers report UPnP
    faults in the body of a 500 response.
    """

    def __init__(self, timeout: float = DEFAULT_HTTP_TIMEOUT) -> None:
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None
        self.logger = logging.getLogger(__name__)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    @asynccontextmanager
    async def open_description(self, url: str) -> AsyncIterator[ChunkReader]:
        """GET a description document and yield a chunk reader.

        The reader returns ``b""`` once the body is exhausted.

        Raises:
            TransportError: If the request fails or the status is not 200

        """
        session = await self._get_session()
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    msg = f"Failed to fetch device description: HTTP {response.status}"
                    raise TransportError(response.status, msg)
                yield response.content.readany
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            msg = f"Network error fetching {url}: {str(e) or type(e).__name__}"
            raise TransportError(0, msg) from e

    async def post_action(
        self, url: str, headers: dict[str, str], body: bytes
    ) -> RawResponse:
        """POST a control request and return the raw response.

        Raises:
            TransportError: If no response could be obtained

        """
        session = await self._get_session()
        try:
            async with session.post(url, data=body, headers=headers) as response:
                data = await response.read()
                self.logger.debug(
                    "POST %s -> HTTP %d (%d bytes)", url, response.status, len(data)
                )
                return RawResponse(response.status, data, response.content_length)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            msg = f"Network error sending control request to {url}: {str(e) or type(e).__name__}"
            raise TransportError(0, msg) from e

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> HTTPTransport:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
