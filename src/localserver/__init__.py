"""
LocalServer

Intercepts outgoing HTTP requests of the current process and answers them
from registered mock response providers.

This package provides:
- Provider registry with most-recently-added-first resolution
- Two-phase (header, then body) response engine with delays and cancellation
- Built-in provider for bytes, text, JSON, file and error responses
- httpx and requests interception
- YAML provider definitions
"""

from .engine import CancellationToken, EngineState, InterceptionEngine, LoadingClient
from .errors import (
    BodyPhaseFailure,
    ConfigError,
    HeaderPhaseFailure,
    InvalidRequestURL,
    InvalidRuleError,
    LocalServerError,
    MatchEvaluationError,
    NetworkAccessBlocked,
    NoProviderMatched,
    ResponseEnvelopeError,
    SimulatedNetworkError,
)
from .providers import (
    BasicResponseProvider,
    Header,
    ResponseHead,
    ResponseProvider,
    RuleResponseProvider,
    Timing,
)
from .registry import ProviderRegistry
from .rules import PredicateRule, RegexRule, Rule, as_rule
from .server import InterceptionMetrics, LocalServer, LocalServerConfig, get_local_server

__all__ = [
    # Server
    'LocalServer',
    'LocalServerConfig',
    'InterceptionMetrics',
    'get_local_server',
    'ProviderRegistry',

    # Engine
    'InterceptionEngine',
    'EngineState',
    'LoadingClient',
    'CancellationToken',

    # Providers
    'ResponseProvider',
    'RuleResponseProvider',
    'BasicResponseProvider',
    'Header',
    'ResponseHead',
    'Timing',

    # Rules
    'Rule',
    'RegexRule',
    'PredicateRule',
    'as_rule',

    # Errors
    'LocalServerError',
    'ConfigError',
    'InvalidRuleError',
    'MatchEvaluationError',
    'NoProviderMatched',
    'NetworkAccessBlocked',
    'HeaderPhaseFailure',
    'InvalidRequestURL',
    'ResponseEnvelopeError',
    'BodyPhaseFailure',
    'SimulatedNetworkError',
]

__version__ = '1.0.0'
