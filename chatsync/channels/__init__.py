"""Channel adapter registry."""

from __future__ import annotations

from .base import ChannelPort
from .evolution import EvolutionChannel
from .memory import InMemoryChannel

_REGISTRY: dict[str, type[ChannelPort]] = {}


def register_adapter(adapter: type[ChannelPort]) -> None:
    """Register a channel adapter class in the global registry."""
    _REGISTRY[adapter.channel_name] = adapter


def get_adapter(name: str) -> type[ChannelPort]:
    """Retrieve an adapter class for ``name`` or raise ``KeyError``."""
    normalized = name.lower()
    if normalized not in _REGISTRY:
        raise KeyError(f"Channel '{name}' is not configured")
    return _REGISTRY[normalized]


def build_channel(settings) -> ChannelPort:
    """Evolution when its URL and instance are configured, else the sandbox."""

    if settings.evolution_configured:
        adapter = get_adapter(EvolutionChannel.channel_name)
        return adapter(
            base_url=settings.evolution_api_url,
            instance=settings.evolution_instance,
            api_key=settings.evolution_api_key,
            webhook_secret=settings.evolution_webhook_secret,
            timeout=settings.channel_timeout_seconds,
        )
    return get_adapter(InMemoryChannel.channel_name)()


# Pre-register built-in adapters
register_adapter(EvolutionChannel)
register_adapter(InMemoryChannel)

__all__ = [
    "ChannelPort",
    "EvolutionChannel",
    "InMemoryChannel",
    "build_channel",
    "get_adapter",
    "register_adapter",
]
