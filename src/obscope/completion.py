"""Completion handlers: single-fire forwarding of a nested block's outcome."""

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    """Lifecycle of a nested block invocation."""

    pending = "pending"
    completed = "completed"
    failed = "failed"


@dataclass(frozen=True)
class InvocationOutcome:
    """Terminal (or pending) state of one nested block invocation."""

    status: OutcomeStatus = OutcomeStatus.pending
    value: Any | None = None
    error: BaseException | None = None


class CompletionHandler(Protocol):
    """Receives the terminal outcome of a unit of work."""

    def on_success(self, result: Any) -> None: ...

    def on_failure(self, error: BaseException) -> None: ...


class ForwardingCallback:
    """Forwards the first terminal event to downstream, exactly once.

    The guard does not trust the scheduler: a second on_success/on_failure,
    or any event after disarm(), is dropped and logged. An optional listener
    observes the outcome before downstream receives it.
    """

    def __init__(
        self,
        downstream: CompletionHandler,
        listener: Callable[[InvocationOutcome], None] | None = None,
    ) -> None:
        self._downstream = downstream
        self._listener = listener
        self._lock = threading.Lock()
        self._delivered = False
        self._disarmed = False

    @property
    def delivered(self) -> bool:
        return self._delivered

    def disarm(self) -> None:
        """Drop every event from now on."""
        with self._lock:
            self._disarmed = True

    def _claim(self, kind: str) -> bool:
        with self._lock:
            if self._disarmed:
                logger.warning("Dropping %s event on a disarmed callback", kind)
                return False
            if self._delivered:
                logger.warning("Dropping duplicate %s event; outcome already delivered", kind)
                return False
            self._delivered = True
            return True

    def on_success(self, result: Any) -> None:
        if not self._claim("success"):
            return
        try:
            if self._listener is not None:
                self._listener(InvocationOutcome(OutcomeStatus.completed, value=result))
        finally:
            self._downstream.on_success(result)

    def on_failure(self, error: BaseException) -> None:
        if not self._claim("failure"):
            return
        try:
            if self._listener is not None:
                self._listener(InvocationOutcome(OutcomeStatus.failed, error=error))
        finally:
            self._downstream.on_failure(error)


class Outcome:
    """Completion handler that can be awaited.

    Must be created inside a running event loop. Events may arrive from any
    thread; they are settled on the owning loop.
    """

    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._future: asyncio.Future[Any] = self._loop.create_future()
        self.outcome = InvocationOutcome()

    @property
    def done(self) -> bool:
        return self.outcome.status is not OutcomeStatus.pending

    def on_success(self, result: Any) -> None:
        self._settle(InvocationOutcome(OutcomeStatus.completed, value=result))

    def on_failure(self, error: BaseException) -> None:
        self._settle(InvocationOutcome(OutcomeStatus.failed, error=error))

    async def result(self) -> Any:
        """Wait for the outcome; return the value or re-raise the error."""
        return await self._future

    def _settle(self, outcome: InvocationOutcome) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._apply(outcome)
        else:
            self._loop.call_soon_threadsafe(self._apply, outcome)

    def _apply(self, outcome: InvocationOutcome) -> None:
        if self._future.done():
            logger.warning("Outcome already settled; ignoring %s", outcome.status.value)
            return
        self.outcome = outcome
        if outcome.status is OutcomeStatus.failed:
            self._future.set_exception(outcome.error)
        else:
            self._future.set_result(outcome.value)
