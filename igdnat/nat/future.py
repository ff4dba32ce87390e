"""Completion envelope for one outstanding control request."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Generator
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:  # pragma: no cover
    from igdnat.nat.mapping import Mapping
    from igdnat.nat.messages import Outcome

logger = logging.getLogger(__name__)

T = TypeVar("T")

CompletionCallback = Callable[["OperationFuture[Any]"], None]


class OperationState(str, Enum):
    """Lifecycle of an operation."""

    PENDING = "pending"
    COMPLETED = "completed"


class OperationFuture(Generic[T]):
    """One asynchronous control exchange.

    ``T`` is the success value the matching ``end_*`` call produces. The
    future itself stores the raw outcome: a success message, a
    ``FaultMessage`` or a ``TransportFailure``.

    Completion may come from any thread. Only the first ``complete`` call
    counts; the completion callback runs exactly once and the wait handle is
    a non-consuming event, so any number of observers can wait on it.

    ``context`` is opaque data carried for the ``end_*`` call, such as the
    key a lookup was issued for.
    """

    def __init__(
        self,
        action: str,
        callback: CompletionCallback | None = None,
        context: Any = None,
    ) -> None:
        self.action = action
        self.context = context
        self._callback = callback
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._observers: list[Callable[[OperationFuture[T]], None]] = []
        self._state = OperationState.PENDING
        self._outcome: Outcome | None = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.action} {self._state.value}>"

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def is_completed(self) -> bool:
        return self._state is OperationState.COMPLETED

    @property
    def wait_handle(self) -> threading.Event:
        """Event set once the operation has completed."""
        return self._event

    @property
    def outcome(self) -> Outcome:
        """Raw outcome of the exchange.

        Raises:
            RuntimeError: If the operation is still pending

        """
        if self._state is not OperationState.COMPLETED:
            msg = f"{self.action} has not completed yet"
            raise RuntimeError(msg)
        return self._outcome  # type: ignore[return-value]

    def complete(self, outcome: Outcome) -> bool:
        """Record the outcome and notify waiters.

        Returns:
            True if this call completed the future, False if it already was

        """
        with self._lock:
            if self._state is OperationState.COMPLETED:
                logger.debug("Ignoring duplicate completion of %s", self.action)
                return False
            self._outcome = outcome
            self._state = OperationState.COMPLETED
            observers, self._observers = self._observers, []
            callback, self._callback = self._callback, None
            self._event.set()

        for observer in observers:
            try:
                observer(self)
            except Exception:
                logger.exception("Observer of %s failed", self.action)
        if callback is not None:
            try:
                callback(self)
            except Exception:
                logger.exception("Completion callback for %s failed", self.action)
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Block until completed. Returns False on timeout."""
        return self._event.wait(timeout)

    def add_observer(self, observer: Callable[[OperationFuture[T]], None]) -> None:
        """Call ``observer(self)`` on completion, or now if already completed."""
        with self._lock:
            if self._state is not OperationState.COMPLETED:
                self._observers.append(observer)
                return
        observer(self)

    async def wait_async(self) -> Outcome:
        """Wait for completion without blocking the running event loop."""
        if self.is_completed:
            return self.outcome

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()

        def _wake(_: OperationFuture[T]) -> None:
            loop.call_soon_threadsafe(_resolve, waiter)

        self.add_observer(_wake)
        await waiter
        return self.outcome

    def __await__(self) -> Generator[Any, None, Outcome]:
        return self.wait_async().__await__()


def _resolve(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


class EnumerationFuture(OperationFuture["list[Mapping]"]):
    """Future for a paginated enumeration.

    ``mappings`` grows as entries decode. If the enumeration fails it holds
    whatever was gathered before the failure.
    """

    def __init__(
        self,
        action: str,
        callback: CompletionCallback | None = None,
        context: Any = None,
    ) -> None:
        super().__init__(action, callback, context)
        self.mappings: list[Mapping] = []
