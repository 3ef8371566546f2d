"""
LocalServer httpx Transports

Bridges httpx's transport API to the interception engine.

The async path returns the ``httpx.Response`` as soon as the header phase
completed; its stream waits for the body phase, so a body failure surfaces
when the body is read and the already delivered status is kept. The sync
path runs the engine to completion on a private event loop before returning.
"""

import asyncio
import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from .engine import InterceptionEngine
from .errors import LocalServerError, NetworkAccessBlocked
from .providers.base import ResponseHead

logger = logging.getLogger("localserver.transport")

# True while an unmatched request is being sent for real, so that a hooked
# transport underneath a mounted one does not resolve it a second time
_passing_through = contextvars.ContextVar("localserver_passing_through", default=False)


@contextmanager
def passing_through():
    """Mark requests sent inside the block as already declined by a local server."""
    token = _passing_through.set(True)
    try:
        yield
    finally:
        _passing_through.reset(token)


def is_passing_through() -> bool:
    return _passing_through.get()


def run_coroutine_sync(factory: Callable[[], Awaitable[Any]]) -> Any:
    """
    Run the coroutine built by ``factory`` to completion from sync code.

    Uses a worker thread when the calling thread already runs an event loop
    (a sync client used inside async code).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(factory())
    with ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(lambda: asyncio.run(factory())).result()


class AsyncResponseCollector:
    """LoadingClient exposing the engine's events as awaitables."""

    def __init__(self):
        loop = asyncio.get_running_loop()
        self._header = loop.create_future()
        self._body = loop.create_future()
        self._chunks: List[bytes] = []

    def on_header_received(self, head: ResponseHead) -> None:
        self._header.set_result(head)

    def on_body_chunk_received(self, data: bytes) -> None:
        self._chunks.append(data)

    def on_completed(self) -> None:
        self._body.set_result(b''.join(self._chunks))

    def on_failed(self, error: BaseException) -> None:
        target = self._body if self._header.done() else self._header
        target.set_exception(error)

    async def header(self) -> ResponseHead:
        return await self._header

    async def body(self) -> bytes:
        return await self._body

    def engine_finished(self, task: asyncio.Task) -> None:
        """Done callback of the engine task: release anyone still waiting."""
        if not self._header.done():
            self._header.set_exception(LocalServerError("Request ended without a response header"))
            self._body.cancel()
        elif not self._body.done():
            self._body.set_exception(LocalServerError("Request ended without a response body"))

    def discard(self) -> None:
        """Drop pending results nobody is going to await."""
        for future in (self._header, self._body):
            if not future.done():
                future.cancel()
            elif not future.cancelled():
                future.exception()


class EngineByteStream(httpx.AsyncByteStream):
    """Response stream yielding the body once the engine delivers it."""

    def __init__(self, engine: InterceptionEngine, collector: AsyncResponseCollector):
        self._engine = engine
        self._collector = collector

    async def __aiter__(self):
        data = await self._collector.body()
        if data:
            yield data

    async def aclose(self) -> None:
        self._engine.stop_loading()
        self._collector.discard()


class SyncResponseCollector:
    """LoadingClient recording events of an engine run to completion."""

    def __init__(self):
        self.head: Optional[ResponseHead] = None
        self.chunks: List[bytes] = []
        self.error: Optional[BaseException] = None
        self.completed = False

    def on_header_received(self, head: ResponseHead) -> None:
        self.head = head

    def on_body_chunk_received(self, data: bytes) -> None:
        self.chunks.append(data)

    def on_completed(self) -> None:
        self.completed = True

    def on_failed(self, error: BaseException) -> None:
        self.error = error

    @property
    def body(self) -> bytes:
        if self.error is not None:
            raise self.error
        return b''.join(self.chunks)


class CollectedByteStream(httpx.SyncByteStream):
    """Sync stream replaying a collected body, or raising the body failure."""

    def __init__(self, collector: SyncResponseCollector):
        self._collector = collector

    def __iter__(self):
        data = self._collector.body
        if data:
            yield data


def run_engine_sync(server, request: Any) -> Optional[SyncResponseCollector]:
    """
    Answer ``request`` synchronously.

    Returns:
        The collector of a finished engine, or None if no provider matches

    Raises:
        The header phase failure, if the provider failed before any header
    """
    collector = SyncResponseCollector()
    engine = server.engine_for(request, collector)
    if engine is None:
        return None
    run_coroutine_sync(engine.run)
    if collector.head is None:
        if collector.error is not None:
            raise collector.error
        raise LocalServerError(f"Request to {request.url} was cancelled")
    return collector


def _fall_through(server, request: Any) -> None:
    if server.config.block_unmatched:
        raise NetworkAccessBlocked(str(request.url))
    logger.debug(f"Passing {request.method} {request.url} to the network")


async def handle_async_request(
    server,
    request: httpx.Request,
    fallback: Callable[[httpx.Request], Awaitable[httpx.Response]]
) -> httpx.Response:
    """
    Serve ``request`` from ``server`` or hand it to ``fallback``.

    Args:
        server: LocalServer to resolve providers from
        request: Outgoing httpx request
        fallback: Coroutine function sending the request for real

    Returns:
        Response whose status/headers come from the header phase and whose
        stream delivers the body phase
    """
    if is_passing_through():
        return await fallback(request)

    collector = AsyncResponseCollector()
    engine = server.engine_for(request, collector)
    if engine is None:
        _fall_through(server, request)
        with passing_through():
            return await fallback(request)

    engine.start_loading().add_done_callback(collector.engine_finished)
    try:
        head = await collector.header()
    except asyncio.CancelledError:
        engine.stop_loading()
        collector.discard()
        raise

    return httpx.Response(
        status_code=head.status_code,
        headers=dict(head.headers),
        stream=EngineByteStream(engine, collector),
        request=request
    )


def handle_request(
    server,
    request: httpx.Request,
    fallback: Callable[[httpx.Request], httpx.Response]
) -> httpx.Response:
    """Sync counterpart of ``handle_async_request``."""
    if is_passing_through():
        return fallback(request)

    collector = run_engine_sync(server, request)
    if collector is None:
        _fall_through(server, request)
        with passing_through():
            return fallback(request)

    return httpx.Response(
        status_code=collector.head.status_code,
        headers=dict(collector.head.headers),
        stream=CollectedByteStream(collector),
        request=request
    )


class AsyncLocalServerTransport(httpx.AsyncBaseTransport):
    """
    Mountable async transport answering from a LocalServer.

    Works without starting the server: matched requests are always answered
    locally, everything else goes to ``transport``.

    Example:
        client = httpx.AsyncClient(transport=AsyncLocalServerTransport())
    """

    def __init__(self, server=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        from .server import get_local_server

        self.server = server or get_local_server()
        self.transport = transport or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await handle_async_request(self.server, request, self.transport.handle_async_request)

    async def aclose(self) -> None:
        await self.transport.aclose()


class LocalServerTransport(httpx.BaseTransport):
    """Mountable sync transport answering from a LocalServer."""

    def __init__(self, server=None, transport: Optional[httpx.BaseTransport] = None):
        from .server import get_local_server

        self.server = server or get_local_server()
        self.transport = transport or httpx.HTTPTransport()

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        return handle_request(self.server, request, self.transport.handle_request)

    def close(self) -> None:
        self.transport.close()
