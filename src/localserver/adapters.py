"""
LocalServer requests Adapter

Answers ``requests`` traffic from the local server. The engine runs to
completion before ``send`` returns; a header phase failure is raised from
``send``, a body phase failure when the content is read.
"""

import io
import logging
from http import HTTPStatus
from typing import Any, Callable

import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from requests.utils import get_encoding_from_headers

from .errors import NetworkAccessBlocked
from .transport import SyncResponseCollector, is_passing_through, passing_through, run_engine_sync

logger = logging.getLogger("localserver.adapters")


class CollectedBody(io.RawIOBase):
    """Raw body for ``requests.Response`` backed by a collector."""

    def __init__(self, collector: SyncResponseCollector):
        super().__init__()
        self._collector = collector
        self._buffer = None

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self._buffer is None:
            self._buffer = io.BytesIO(self._collector.body)
        return self._buffer.readinto(b)


def build_response(request: requests.PreparedRequest, collector: SyncResponseCollector, adapter) -> requests.Response:
    """Turn collected engine events into a ``requests.Response``."""
    head = collector.head
    response = requests.Response()
    response.status_code = head.status_code
    response.headers = CaseInsensitiveDict(head.headers)
    response.encoding = get_encoding_from_headers(response.headers)
    try:
        response.reason = HTTPStatus(head.status_code).phrase
    except ValueError:
        response.reason = ''
    response.raw = CollectedBody(collector)
    response.url = request.url
    response.request = request
    response.connection = adapter
    return response


def send_request(server, adapter, request: requests.PreparedRequest, fallback: Callable[..., requests.Response], **kwargs: Any) -> requests.Response:
    """
    Serve ``request`` from ``server`` or hand it to ``fallback``.

    Args:
        server: LocalServer to resolve providers from
        adapter: Adapter the response is attributed to
        request: Prepared request being sent
        fallback: Callable sending the request for real, called with ``request`` and ``kwargs``
        **kwargs: ``send`` keyword arguments (stream, timeout, verify, ...)
    """
    if is_passing_through():
        return fallback(request, **kwargs)

    collector = run_engine_sync(server, request)
    if collector is None:
        if server.config.block_unmatched:
            raise NetworkAccessBlocked(request.url)
        logger.debug(f"Passing {request.method} {request.url} to the network")
        with passing_through():
            return fallback(request, **kwargs)

    response = build_response(request, collector, adapter)
    if not kwargs.get('stream'):
        # Mirror requests: read the body eagerly unless streaming
        response.content
    return response


class LocalServerAdapter(HTTPAdapter):
    """
    Mountable adapter answering from a LocalServer.

    Example:
        session = requests.Session()
        session.mount('https://', LocalServerAdapter())
    """

    def __init__(self, server=None, **kwargs):
        from .server import get_local_server

        super().__init__(**kwargs)
        self.server = server or get_local_server()

    def send(self, request, **kwargs):
        return send_request(self.server, self, request, super().send, **kwargs)
