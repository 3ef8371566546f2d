"""
LocalServer Response Provider Contract

A response provider answers intercepted requests in two phases: it first
produces the response head (status code + header fields), then the body.
Both phases are coroutines so providers can wait, read files or fail.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from ..rules import Rule, as_rule

logger = logging.getLogger("localserver.providers")


@dataclass(frozen=True)
class ResponseHead:
    """Response metadata delivered before the body."""

    url: str
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Timing:
    """
    Timing profile of a provider.

    Delays are in seconds. ``None`` means the phase is produced immediately.
    The body delay starts after the header was delivered, so both delays add
    up.
    """

    header_delay: Optional[float] = None
    body_delay: Optional[float] = None

    def __post_init__(self):
        for name in ('header_delay', 'body_delay'):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")


@runtime_checkable
class HeaderSource(Protocol):
    """Produces the response head for a request."""

    async def header(self, request: Any) -> ResponseHead: ...


@runtime_checkable
class BodySource(Protocol):
    """Produces the response payload for a request."""

    async def body(self, request: Any) -> bytes: ...


def request_url(request: Any) -> Optional[str]:
    """Return the request URL as a string, or None if the request has none."""
    url = getattr(request, 'url', None)
    if url is None:
        return None
    url = str(url)
    return url or None


class ResponseProvider:
    """
    Base class of everything that can be registered on a LocalServer.

    Subclasses implement ``can_handle``, ``header`` and ``body``. ``id`` is
    generated per instance so two providers with identical configuration
    can still be removed independently.
    """

    timing: Timing = Timing()

    def __init__(self):
        self._id = uuid.uuid4()

    @property
    def id(self) -> uuid.UUID:
        return self._id

    def can_handle(self, request: Any) -> bool:
        raise NotImplementedError

    async def header(self, request: Any) -> ResponseHead:
        raise NotImplementedError

    async def body(self, request: Any) -> bytes:
        raise NotImplementedError

    def add_to_local_server(self, server=None) -> 'ResponseProvider':
        """Register on ``server`` (the default local server if omitted)."""
        from ..server import get_local_server

        (server or get_local_server()).add(self)
        return self

    def remove_from_local_server(self, server=None) -> None:
        """Stop this provider from receiving requests."""
        from ..server import get_local_server

        (server or get_local_server()).remove(self)


class RuleResponseProvider(ResponseProvider):
    """Provider handling every request whose URL satisfies a rule."""

    def __init__(self, rule):
        super().__init__()
        self._rule = as_rule(rule)

    @property
    def rule(self) -> Rule:
        return self._rule

    def can_handle(self, request: Any) -> bool:
        url = request_url(request)
        if url is None:
            return False
        try:
            return bool(self._rule.is_satisfied(url))
        except Exception as e:
            logger.debug(f"Rule {self._rule!r} failed for {url}, treating as no match: {e}")
            return False
