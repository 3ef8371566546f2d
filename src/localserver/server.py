"""
LocalServer

Process-wide owner of the provider registry and the switch that makes HTTP
clients talk to it instead of the network.

Features:
- Provider registry (add, remove, remove_all, resolve)
- Start/stop interception of httpx and requests traffic
- Optional blocking of requests no provider matches
- Interception metrics
"""

from __future__ import annotations  # Enable forward references for type hints

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

from .engine import EngineState, InterceptionEngine, LoadingClient
from .errors import ConfigError
from .providers.base import ResponseProvider
from .registry import ProviderRegistry

_LOG_LEVELS = ('debug', 'info', 'warning', 'error', 'critical')


@dataclass
class LocalServerConfig:
    """Configuration for local server behavior."""

    # Which client stacks the activation hook patches
    intercept_httpx: bool = True
    intercept_requests: bool = True

    # Fail unmatched requests instead of letting them reach the network
    block_unmatched: bool = False

    log_level: str = "warning"

    def __post_init__(self):
        if self.log_level.lower() not in _LOG_LEVELS:
            raise ConfigError(f"Invalid log_level {self.log_level!r}, expected one of {', '.join(_LOG_LEVELS)}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LocalServerConfig':
        """Create config from dictionary, rejecting unknown keys."""
        known = {'intercept_httpx', 'intercept_requests', 'block_unmatched', 'log_level'}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown server settings: {', '.join(sorted(unknown))}")
        return cls(
            intercept_httpx=bool(data.get('intercept_httpx', True)),
            intercept_requests=bool(data.get('intercept_requests', True)),
            block_unmatched=bool(data.get('block_unmatched', False)),
            log_level=str(data.get('log_level', 'warning'))
        )


@dataclass
class InterceptionMetrics:
    """Track interception outcomes."""

    total_requests: int = 0
    matched_requests: int = 0
    unmatched_requests: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    start_time: str = field(default_factory=lambda: datetime.now().isoformat())
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_match(self, matched: bool) -> None:
        with self._lock:
            self.total_requests += 1
            if matched:
                self.matched_requests += 1
            else:
                self.unmatched_requests += 1

    def record_outcome(self, state: EngineState) -> None:
        with self._lock:
            if state is EngineState.COMPLETED:
                self.completed += 1
            elif state is EngineState.FAILED:
                self.failed += 1
            elif state is EngineState.CANCELLED:
                self.cancelled += 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        with self._lock:
            return {
                'total_requests': self.total_requests,
                'matched_requests': self.matched_requests,
                'unmatched_requests': self.unmatched_requests,
                'completed': self.completed,
                'failed': self.failed,
                'cancelled': self.cancelled,
                'match_rate': round((self.matched_requests / self.total_requests * 100) if self.total_requests > 0 else 0, 2),
                'start_time': self.start_time
            }


class LocalServer:
    """
    Local server answering intercepted requests from registered providers.

    Example:
        server = get_local_server()
        server.start()
        BasicResponseProvider(r'https://.*/persons/.*', body='{"name": "Jhon"}').add_to_local_server()

        httpx.get('https://api.example.com/persons/1').json()  # {'name': 'Jhon'}

        server.remove_all()
        server.stop()
    """

    def __init__(
        self,
        config: Optional[LocalServerConfig] = None,
        registry: Optional[ProviderRegistry] = None
    ):
        """
        Initialize local server.

        Args:
            config: Optional LocalServerConfig
            registry: Optional ProviderRegistry (a new empty one if None)
        """
        self.config = config or LocalServerConfig()
        self.registry = registry if registry is not None else ProviderRegistry()
        self.metrics = InterceptionMetrics()

        self.logger = logging.getLogger("localserver")
        self.logger.setLevel(getattr(logging, self.config.log_level.upper()))

        self._hook = None
        self._switch_lock = threading.Lock()

    # Activation

    @property
    def is_active(self) -> bool:
        return self._hook is not None

    def start(self) -> None:
        """Start intercepting requests. No-op if already started."""
        from .hooks import InterceptionHook

        with self._switch_lock:
            if self._hook is not None:
                return
            hook = InterceptionHook(self)
            hook.install()
            self._hook = hook
        self.logger.info(f"Local server started with {len(self.registry)} providers")

    def stop(self) -> None:
        """Stop intercepting requests. Registered providers are kept."""
        with self._switch_lock:
            if self._hook is None:
                return
            self._hook.uninstall()
            self._hook = None
        self.logger.info("Local server stopped")

    def __enter__(self) -> 'LocalServer':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # Registry

    def add(self, provider: ResponseProvider) -> None:
        self.registry.add(provider)

    def remove(self, provider: Union[ResponseProvider, uuid.UUID]) -> None:
        self.registry.remove(provider)

    def remove_all(self) -> None:
        self.registry.remove_all()

    @property
    def providers(self) -> Tuple[ResponseProvider, ...]:
        return self.registry.providers

    def resolve(self, request: Any) -> Optional[ResponseProvider]:
        return self.registry.resolve(request)

    def reset(self) -> None:
        """Remove every provider and zero the metrics."""
        self.registry.remove_all()
        self.metrics = InterceptionMetrics()

    # Interception

    def engine_for(self, request: Any, client: LoadingClient) -> Optional[InterceptionEngine]:
        """
        Claim ``request`` if a provider handles it.

        Returns:
            An engine bound to the resolved provider, or None when the request
            must go to the network
        """
        engine = InterceptionEngine.for_request(
            request,
            client,
            self.registry,
            observer=self._record_outcome
        )
        self.metrics.record_match(engine is not None)
        if engine is None:
            self.logger.debug(f"No provider for {request.url}")
        else:
            self.logger.debug(f"Provider {engine.provider.id} answers {request.url}")
        return engine

    def _record_outcome(self, state: EngineState) -> None:
        self.metrics.record_outcome(state)


_default_server: Optional[LocalServer] = None
_default_lock = threading.Lock()


def get_local_server() -> LocalServer:
    """Return the process-wide default LocalServer."""
    global _default_server
    with _default_lock:
        if _default_server is None:
            _default_server = LocalServer()
        return _default_server
