"""
Registry mapping provider types to adapters.

Provider types are resolved once, when a run starts; an unknown type is a
configuration error rather than a failed source.
"""

from typing import Optional

import httpx

from .base import SourceAdapter
from .delicious import DeliciousAdapter
from .rss import RSSAdapter
from .tumblr import TumblrAdapter
from .twitter import TwitterAdapter
from ..config import Settings
from ..errors import ConfigurationError
from ..logging_conf import get_logger

logger = get_logger(__name__)

DEFAULT_ADAPTERS: tuple[type[SourceAdapter], ...] = (
    TwitterAdapter,
    DeliciousAdapter,
    TumblrAdapter,
    RSSAdapter,
)


class AdapterRegistry:
    """Provider type -> adapter instance."""

    def __init__(self):
        self._adapters: dict[str, SourceAdapter] = {}

    def register(self, adapter: SourceAdapter, replace: bool = False) -> None:
        """
        Register an adapter under its ``provider_type``.

        Raises:
            ConfigurationError: if the type is empty or already taken
        """
        provider_type = adapter.provider_type
        if not provider_type:
            raise ConfigurationError(f"{adapter!r} has no provider_type")
        if provider_type in self._adapters and not replace:
            raise ConfigurationError(f"Provider {provider_type!r} is already registered")

        self._adapters[provider_type] = adapter
        logger.debug("adapter_registered", provider=provider_type)

    def resolve(self, provider_type: str) -> SourceAdapter:
        """
        Get the adapter for ``provider_type``.

        Raises:
            ConfigurationError: if no adapter is registered for it
        """
        try:
            return self._adapters[provider_type]
        except KeyError:
            known = ", ".join(self.provider_types()) or "none"
            raise ConfigurationError(
                f"Unknown provider {provider_type!r} (registered: {known})"
            ) from None

    def provider_types(self) -> list[str]:
        return sorted(self._adapters)

    def __contains__(self, provider_type: str) -> bool:
        return provider_type in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)


def build_default_registry(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AdapterRegistry:
    """Registry with every built-in adapter."""
    registry = AdapterRegistry()
    for adapter_cls in DEFAULT_ADAPTERS:
        registry.register(adapter_cls(settings=settings, transport=transport))
    return registry


# Singleton instance
_registry_instance: Optional[AdapterRegistry] = None


def get_adapter_registry() -> AdapterRegistry:
    """Get or create the default adapter registry."""
    global _registry_instance
    if _registry_instance is None:
        _registry_instance = build_default_registry()
    return _registry_instance
