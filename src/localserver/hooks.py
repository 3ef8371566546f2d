"""
LocalServer Activation Hook

Routes the default transports of httpx and requests through a LocalServer by
replacing their send methods on the class. Requests no provider matches are
passed to the saved original methods.
"""

import logging
import threading
from typing import Any, Callable, List, Optional, Tuple

import httpx
import requests.adapters

from .adapters import send_request
from .errors import LocalServerError
from .transport import handle_async_request, handle_request

logger = logging.getLogger("localserver.hooks")

_install_lock = threading.Lock()
_installed: Optional['InterceptionHook'] = None


class InterceptionHook:
    """Installs and removes the patched send methods for one server."""

    def __init__(self, server):
        self.server = server
        self._patched: List[Tuple[type, str, Callable]] = []

    def install(self) -> None:
        """
        Patch the enabled client stacks.

        Raises:
            LocalServerError: Another server is already intercepting
        """
        global _installed
        with _install_lock:
            if _installed is not None:
                raise LocalServerError("Another local server is already intercepting requests")

            config = self.server.config
            if config.intercept_httpx:
                self._patch(httpx.AsyncHTTPTransport, 'handle_async_request', self._async_httpx_send)
                self._patch(httpx.HTTPTransport, 'handle_request', self._httpx_send)
            if config.intercept_requests:
                self._patch(requests.adapters.HTTPAdapter, 'send', self._requests_send)
            _installed = self

        logger.debug(f"Installed hooks: {', '.join(f'{cls.__name__}.{name}' for cls, name, _ in self._patched)}")

    def uninstall(self) -> None:
        """Restore the original methods."""
        global _installed
        with _install_lock:
            while self._patched:
                cls, name, original = self._patched.pop()
                setattr(cls, name, original)
            if _installed is self:
                _installed = None
        logger.debug("Removed hooks")

    def _patch(self, cls: type, name: str, factory: Callable[[Callable], Callable]) -> None:
        original = getattr(cls, name)
        setattr(cls, name, factory(original))
        self._patched.append((cls, name, original))

    def _async_httpx_send(self, original):
        server = self.server

        async def patched(transport, request: httpx.Request) -> httpx.Response:
            return await handle_async_request(server, request, lambda r: original(transport, r))

        return patched

    def _httpx_send(self, original):
        server = self.server

        def patched(transport, request: httpx.Request) -> httpx.Response:
            return handle_request(server, request, lambda r: original(transport, r))

        return patched

    def _requests_send(self, original):
        server = self.server

        def patched(adapter, request, **kwargs: Any):
            return send_request(server, adapter, request, lambda r, **kw: original(adapter, r, **kw), **kwargs)

        return patched
