"""
LocalServer Basic Response Provider

Ready-made provider composed from a rule, a header capability, an optional
body capability and a timing profile.

Example:
    # 200 with a JSON body for every person lookup
    BasicResponseProvider.json(r'https://.*/persons/.*', {'name': 'Jhon', 'age': 31}).add_to_local_server()

    # 404 with an empty body after three seconds
    BasicResponseProvider(r'https://.*/baseball', header=404, timing=Timing(header_delay=3)).add_to_local_server()

    # Connection failure before any header arrives
    BasicResponseProvider(r'https://.*/horse', header=httpx.ConnectError('offline')).add_to_local_server()
"""

import asyncio
import dataclasses
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Type, Union
from urllib.parse import urlparse

from ..errors import BodyPhaseFailure, InvalidRequestURL, ResponseEnvelopeError
from .base import BodySource, HeaderSource, ResponseHead, RuleResponseProvider, Timing, request_url


@dataclass(frozen=True)
class Header:
    """Status code and header fields of a canned response."""

    status_code: int = 200
    header_fields: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def success(cls) -> 'Header':
        return cls(200)

    def with_fields(self, **fields: str) -> 'Header':
        """Copy of this header with ``fields`` added (underscores become dashes)."""
        merged = dict(self.header_fields)
        merged.update({name.replace('_', '-'): value for name, value in fields.items()})
        return dataclasses.replace(self, header_fields=merged)

    async def header(self, request: Any) -> ResponseHead:
        """
        Build the response head for ``request``.

        Raises:
            InvalidRequestURL: The request has no absolute URL
            ResponseEnvelopeError: Status or header fields are malformed
        """
        url = request_url(request)
        if url is None:
            raise InvalidRequestURL("Request has no URL")
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            raise InvalidRequestURL(f"Request URL is not absolute: {url}")

        if isinstance(self.status_code, bool) or not isinstance(self.status_code, int) \
                or not 100 <= self.status_code <= 599:
            raise ResponseEnvelopeError(f"Invalid status code: {self.status_code!r}")
        for name, value in self.header_fields.items():
            if not isinstance(name, str) or not isinstance(value, str):
                raise ResponseEnvelopeError(f"Header fields must be strings: {name!r}: {value!r}")

        return ResponseHead(url=url, status_code=self.status_code, headers=dict(self.header_fields))


@dataclass(frozen=True)
class ErrorSource:
    """Fails whichever phase it is plugged into with the configured error."""

    error: Exception

    async def header(self, request: Any) -> ResponseHead:
        raise self.error

    async def body(self, request: Any) -> bytes:
        raise self.error


@dataclass(frozen=True)
class BytesBody:
    """Constant payload."""

    data: bytes

    async def body(self, request: Any) -> bytes:
        return self.data


@dataclass(frozen=True)
class FileBody:
    """Payload read from disk each time it is requested."""

    path: Path

    async def body(self, request: Any) -> bytes:
        try:
            return await asyncio.to_thread(self.path.read_bytes)
        except OSError as e:
            raise BodyPhaseFailure(f"Cannot read body file {self.path}: {e}") from e


def header_source(value: Any) -> HeaderSource:
    """
    Turn the accepted header spellings into a header capability.

    ``None`` is a plain 200, an int is a status code, an exception fails the
    header phase, anything with a ``header`` coroutine is used as is.
    """
    if value is None:
        return Header.success()
    if isinstance(value, Exception):
        return ErrorSource(value)
    if isinstance(value, int) and not isinstance(value, bool):
        return Header(value)
    if isinstance(value, HeaderSource):
        return value
    raise TypeError(f"Unsupported header value: {value!r}")


def body_source(value: Any) -> Optional[BodySource]:
    """
    Turn the accepted body spellings into a body capability.

    bytes are sent as is, str is UTF-8 encoded, paths are read from disk,
    an exception fails the body phase, ``None`` means an empty body.
    """
    if value is None:
        return None
    if isinstance(value, Exception):
        return ErrorSource(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return BytesBody(bytes(value))
    if isinstance(value, str):
        return BytesBody(value.encode('utf-8'))
    if isinstance(value, os.PathLike):
        return FileBody(Path(value))
    if isinstance(value, BodySource):
        return value
    raise TypeError(f"Unsupported body value: {value!r}")


class BasicResponseProvider(RuleResponseProvider):
    """
    Rule-driven provider built from independent header and body capabilities.

    Args:
        rule: Pattern (whole URL match), compiled regex, Rule or callable
        body: bytes, str, path, exception, BodySource or None for empty
        header: status code, Header, exception, HeaderSource or None for 200
        timing: Delays applied before each phase
    """

    def __init__(
        self,
        rule,
        body: Any = None,
        header: Any = None,
        timing: Optional[Timing] = None
    ):
        super().__init__(rule)
        self._header_source = header_source(header)
        self._body_source = body_source(body)
        self._timing = timing or Timing()

    @property
    def header_source(self) -> HeaderSource:
        return self._header_source

    @property
    def body_source(self) -> Optional[BodySource]:
        return self._body_source

    @property
    def timing(self) -> Timing:
        return self._timing

    @classmethod
    def json(
        cls,
        rule,
        payload: Any,
        header: Optional[Header] = None,
        encoder: Optional[Type[json.JSONEncoder]] = None,
        timing: Optional[Timing] = None
    ) -> 'BasicResponseProvider':
        """
        Provider answering with ``payload`` encoded as JSON.

        Dataclass instances are converted with ``dataclasses.asdict``.
        ``Content-Type`` and ``Content-Length`` are added to the header.
        """
        if dataclasses.is_dataclass(payload) and not isinstance(payload, type):
            payload = dataclasses.asdict(payload)
        data = json.dumps(payload, cls=encoder).encode('utf-8')

        base = header or Header.success()
        fields: Dict[str, str] = dict(base.header_fields)
        fields['Content-Type'] = 'application/json'
        fields['Content-Length'] = str(len(data))
        return cls(rule, body=data, header=dataclasses.replace(base, header_fields=fields), timing=timing)

    @classmethod
    def failing(
        cls,
        rule,
        header_error: Optional[Exception] = None,
        body_error: Optional[Exception] = None,
        header: Union[int, Header, None] = None,
        timing: Optional[Timing] = None
    ) -> 'BasicResponseProvider':
        """Provider failing the header phase, or the body phase after a successful header."""
        if header_error is None and body_error is None:
            raise ValueError("failing() needs header_error or body_error")
        if header_error is not None:
            return cls(rule, header=header_error, timing=timing)
        return cls(rule, body=body_error, header=header, timing=timing)

    async def header(self, request: Any) -> ResponseHead:
        return await self._header_source.header(request)

    async def body(self, request: Any) -> bytes:
        if self._body_source is None:
            return b''
        return await self._body_source.body(request)

    def __repr__(self) -> str:
        return f"BasicResponseProvider(rule={self.rule!r}, id={self.id})"
