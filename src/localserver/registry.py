"""
LocalServer Provider Registry

Ordered, thread-safe collection of active response providers.

Resolution walks the providers from the most recently added to the oldest
and stops at the first one that can handle the request. Later registrations
therefore override earlier ones: register a general mock first and layer a
narrower one on top without removing the general one. Providers after the
first match are never consulted.
"""

import logging
import threading
import uuid
from typing import Any, List, Optional, Tuple, Union

from .providers.base import ResponseProvider, request_url

logger = logging.getLogger("localserver.registry")


class ProviderRegistry:
    """
    Registry of response providers.

    The lock only protects list manipulation. ``resolve`` copies the list
    under the lock and evaluates ``can_handle`` on that snapshot, so a
    concurrent add/remove is either fully visible or not visible at all.

    Example:
        registry = ProviderRegistry()
        registry.add(general)
        registry.add(specific)
        registry.resolve(request)  # specific, if it matches
    """

    def __init__(self):
        self._providers: List[ResponseProvider] = []
        self._lock = threading.Lock()

    def add(self, provider: ResponseProvider) -> None:
        """Append ``provider``; it takes precedence over everything added before."""
        with self._lock:
            self._providers.append(provider)
        logger.debug(f"Added provider {provider.id}")

    def remove(self, provider: Union[ResponseProvider, uuid.UUID]) -> None:
        """Remove every entry sharing the id of ``provider`` (or the given id)."""
        provider_id = provider if isinstance(provider, uuid.UUID) else provider.id
        with self._lock:
            before = len(self._providers)
            self._providers = [p for p in self._providers if p.id != provider_id]
            removed = before - len(self._providers)
        logger.debug(f"Removed {removed} entries for provider {provider_id}")

    def remove_all(self) -> None:
        with self._lock:
            self._providers = []
        logger.debug("Removed all providers")

    @property
    def providers(self) -> Tuple[ResponseProvider, ...]:
        """Snapshot of registered providers in insertion order."""
        with self._lock:
            return tuple(self._providers)

    def resolve(self, request: Any) -> Optional[ResponseProvider]:
        """
        Find the provider answering ``request``.

        Args:
            request: Object exposing the target ``url``

        Returns:
            The most recently added provider whose ``can_handle`` is true,
            or None
        """
        for provider in reversed(self.providers):
            try:
                handles = provider.can_handle(request)
            except Exception as e:
                logger.debug(f"Provider {provider.id} failed to evaluate {request_url(request)}: {e}")
                continue
            if handles:
                return provider
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._providers)

    def __contains__(self, provider: Union[ResponseProvider, uuid.UUID]) -> bool:
        provider_id = provider if isinstance(provider, uuid.UUID) else provider.id
        return any(p.id == provider_id for p in self.providers)
