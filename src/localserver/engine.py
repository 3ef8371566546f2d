"""
LocalServer Interception Engine

Drives one intercepted request through the two-phase response protocol:

    IDLE -> HEADER_PENDING -> HEADER_DELIVERED -> BODY_PENDING -> COMPLETED

FAILED is reachable from both pending states, CANCELLED from every
non-terminal state. Each phase optionally sleeps for the provider's delay
before calling its producer. Events reach the consumer in strict order
(header, body, completion) and nothing is delivered once the request is
cancelled or has failed.

Example:
    engine = InterceptionEngine.for_request(request, client, registry)
    if engine is not None:
        task = engine.start_loading()
        ...
        engine.stop_loading()  # consumer lost interest
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from .errors import BodyPhaseFailure, HeaderPhaseFailure, LocalServerError, NoProviderMatched, ResponseEnvelopeError
from .providers.base import ResponseHead, ResponseProvider, Timing, request_url
from .registry import ProviderRegistry

logger = logging.getLogger("localserver.engine")


class EngineState(Enum):
    """Lifecycle of a single intercepted request."""

    IDLE = "idle"
    HEADER_PENDING = "header_pending"
    HEADER_DELIVERED = "header_delivered"
    BODY_PENDING = "body_pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (EngineState.COMPLETED, EngineState.FAILED, EngineState.CANCELLED)


_TRANSITIONS = {
    EngineState.IDLE: {EngineState.HEADER_PENDING, EngineState.CANCELLED},
    EngineState.HEADER_PENDING: {EngineState.HEADER_DELIVERED, EngineState.FAILED, EngineState.CANCELLED},
    EngineState.HEADER_DELIVERED: {EngineState.BODY_PENDING, EngineState.CANCELLED},
    EngineState.BODY_PENDING: {EngineState.COMPLETED, EngineState.FAILED, EngineState.CANCELLED},
}

# Returned by a phase that must not continue (failed or cancelled)
_STOPPED = object()


class LoadingClient(Protocol):
    """Consumer of the events produced for one request."""

    def on_header_received(self, head: ResponseHead) -> None: ...

    def on_body_chunk_received(self, data: bytes) -> None: ...

    def on_completed(self) -> None: ...

    def on_failed(self, error: BaseException) -> None: ...


class CancellationToken:
    """Thread-safe, one-way cancellation flag."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class InterceptionEngine:
    """
    Per-request execution unit answering a request from a provider.

    Args:
        request: The intercepted request (anything with a ``url``)
        client: Receiver of header/body/completion/failure events
        provider: Provider resolved for the request
        observer: Optional callback receiving the terminal state once
    """

    def __init__(
        self,
        request: Any,
        client: LoadingClient,
        provider: ResponseProvider,
        observer: Optional[Callable[[EngineState], None]] = None
    ):
        self.request = request
        self.client = client
        self.provider = provider
        self._observer = observer

        self._state = EngineState.IDLE
        self._error: Optional[BaseException] = None
        self._token = CancellationToken()
        self._stop_requested = False
        self._task: Optional[asyncio.Task] = None
        # Re-entrant: a client callback may call stop_loading()
        self._lock = threading.RLock()

    @classmethod
    def for_request(
        cls,
        request: Any,
        client: LoadingClient,
        registry: ProviderRegistry,
        observer: Optional[Callable[[EngineState], None]] = None,
        strict: bool = False
    ) -> Optional['InterceptionEngine']:
        """
        Create an engine for ``request`` if a registered provider handles it.

        Returns None when nothing matches; with ``strict`` a miss raises
        NoProviderMatched instead.
        """
        provider = registry.resolve(request)
        if provider is None:
            if strict:
                raise NoProviderMatched(request_url(request))
            return None
        return cls(request, client, provider, observer=observer)

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def error(self) -> Optional[BaseException]:
        """Error delivered with ``on_failed``, if any."""
        return self._error

    @property
    def cancelled(self) -> bool:
        return self._state is EngineState.CANCELLED

    def start_loading(self) -> asyncio.Task:
        """Schedule the request on the running event loop."""
        if self._task is not None:
            raise LocalServerError("Loading already started for this request")
        self._task = asyncio.get_running_loop().create_task(self._load())
        return self._task

    async def run(self) -> EngineState:
        """
        Drive the request to a terminal state and return it.

        Cancellation requested through ``stop_loading`` ends the run quietly
        with CANCELLED. Cancelling the task awaiting ``run`` stops the engine
        and propagates the cancellation, even if ``stop_loading`` was called
        as well.
        """
        task = self._task or self.start_loading()
        try:
            await task
        except asyncio.CancelledError:
            if not self._stop_requested or asyncio.current_task().cancelling():
                self.stop_loading()
                raise
        return self._state

    def stop_loading(self) -> None:
        """Withdraw interest in the response. Safe from any thread, idempotent."""
        self._stop_requested = True
        if not self._cancel():
            return
        task = self._task
        if task is not None and not task.done():
            loop = task.get_loop()
            if not loop.is_closed():
                loop.call_soon_threadsafe(task.cancel)

    async def _load(self) -> EngineState:
        try:
            await self._respond()
        except asyncio.CancelledError:
            self._cancel()
            raise
        return self._state

    async def _respond(self) -> None:
        timing = getattr(self.provider, 'timing', None) or Timing()
        url = request_url(self.request)

        head = await self._produce(EngineState.HEADER_PENDING, timing.header_delay, self.provider.header)
        if head is _STOPPED:
            return
        if head is None:
            self._fail(ResponseEnvelopeError(f"Provider {self.provider.id} returned no header for {url}"))
            return
        if not self._deliver_header(head):
            return

        body = await self._produce(EngineState.BODY_PENDING, timing.body_delay, self.provider.body)
        if body is _STOPPED:
            return
        if body is None:
            body = b''
        elif isinstance(body, (bytearray, memoryview)):
            body = bytes(body)
        elif not isinstance(body, bytes):
            self._fail(TypeError(f"Provider {self.provider.id} returned {type(body).__name__} body, expected bytes"))
            return
        self._deliver_body(body)

    async def _produce(self, pending: EngineState, delay: Optional[float], producer):
        """Enter ``pending``, wait ``delay`` and call ``producer``; _STOPPED on failure or cancellation."""
        if not self._advance(pending):
            return _STOPPED
        if delay:
            await asyncio.sleep(delay)
        if self._token.cancelled:
            return _STOPPED
        try:
            result = await producer(self.request)
        except asyncio.CancelledError as e:
            if self._token.cancelled or asyncio.current_task().cancelling():
                raise
            # Raised by the provider itself, not a withdrawal by the consumer
            failure = HeaderPhaseFailure if pending is EngineState.HEADER_PENDING else BodyPhaseFailure
            error = failure(f"Provider {self.provider.id} was interrupted by a cancelled operation")
            error.__cause__ = e
            self._fail(error)
            return _STOPPED
        except Exception as e:
            self._fail(e)
            return _STOPPED
        if self._token.cancelled:
            return _STOPPED
        return result

    def _transition(self, new: EngineState) -> None:
        if new not in _TRANSITIONS.get(self._state, ()):
            raise LocalServerError(f"Illegal engine transition {self._state.value} -> {new.value}")
        logger.debug(f"{request_url(self.request)}: {self._state.value} -> {new.value}")
        self._state = new

    def _advance(self, new: EngineState) -> bool:
        with self._lock:
            if self._token.cancelled:
                return False
            self._transition(new)
            return True

    def _deliver_header(self, head: ResponseHead) -> bool:
        with self._lock:
            if self._token.cancelled:
                return False
            self._transition(EngineState.HEADER_DELIVERED)
            self.client.on_header_received(head)
            return not self._token.cancelled

    def _deliver_body(self, body: bytes) -> None:
        with self._lock:
            if self._token.cancelled:
                return
            self.client.on_body_chunk_received(body)
            if self._token.cancelled:
                return
            self._transition(EngineState.COMPLETED)
            self.client.on_completed()
        self._finish(EngineState.COMPLETED)

    def _fail(self, error: BaseException) -> None:
        with self._lock:
            if self._token.cancelled:
                return
            self._transition(EngineState.FAILED)
            self._error = error
            logger.debug(f"{request_url(self.request)}: failed with {error!r}")
            self.client.on_failed(error)
        self._finish(EngineState.FAILED)

    def _cancel(self) -> bool:
        """Set the token and enter CANCELLED; False if already cancelled or finished."""
        with self._lock:
            if self._token.cancelled:
                return False
            self._token.cancel()
            if self._state.is_terminal:
                return False
            self._transition(EngineState.CANCELLED)
        self._finish(EngineState.CANCELLED)
        return True

    def _finish(self, state: EngineState) -> None:
        if self._observer is not None:
            self._observer(state)
