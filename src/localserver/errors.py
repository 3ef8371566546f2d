"""
LocalServer Errors

Exception hierarchy shared by the registry, the interception engine and the
built-in providers.

Errors raised by a provider's own header/body producers are delivered to the
consumer unchanged; the classes below cover failures produced by localserver
itself.
"""

from typing import Optional


class LocalServerError(Exception):
    """Base class for all localserver errors."""


class ConfigError(LocalServerError):
    """Invalid server configuration or provider definition."""


class InvalidRuleError(LocalServerError):
    """A rule pattern could not be compiled."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid rule pattern {pattern!r}: {reason}")


class MatchEvaluationError(LocalServerError):
    """A rule failed while evaluating a candidate. Treated as no match."""


class NoProviderMatched(LocalServerError):
    """No registered provider can handle the request."""

    def __init__(self, url: Optional[str]):
        self.url = url
        super().__init__(f"No response provider matches {url}")


class NetworkAccessBlocked(LocalServerError):
    """Raised for unmatched requests when the server blocks real networking."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(
            f"Network access blocked: {url}. "
            "No response provider matches and block_unmatched is enabled."
        )


class HeaderPhaseFailure(LocalServerError):
    """The response header could not be produced."""


class InvalidRequestURL(HeaderPhaseFailure):
    """The request carries no usable URL."""


class ResponseEnvelopeError(HeaderPhaseFailure):
    """Status code or header fields do not form a valid response."""


class BodyPhaseFailure(LocalServerError):
    """The response body could not be produced."""


class SimulatedNetworkError(LocalServerError):
    """Generic configured failure used by YAML provider definitions."""
