"""Completion parameter defaults."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CompletionOptions:
    temperature: float = 0.7
    max_tokens: int = 1024
    timeout: float = 30.0


class ResponseParameterStore:
    """Maintain provider specific completion defaults."""

    _DEFAULTS: Mapping[str, dict[str, Any]] = {
        "openai": {"temperature": 0.7, "max_tokens": 1000},
        "azure": {"temperature": 0.65, "max_tokens": 1000},
        "echo": {"temperature": 0.0, "max_tokens": 256},
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, Any]] | None = None):
        self._defaults: dict[str, dict[str, Any]] = {
            provider: dict(params) for provider, params in self._DEFAULTS.items()
        }
        if overrides:
            for provider, params in overrides.items():
                merged = self._defaults.setdefault(provider.lower(), {})
                merged.update(params)

    def defaults_for_provider(self, provider: str) -> dict[str, Any]:
        return dict(self._defaults.get(provider.lower(), {"temperature": 0.5}))

    def options_for(
        self, provider: str, *, timeout: float, **overrides: Any
    ) -> CompletionOptions:
        """Build :class:`CompletionOptions` from defaults plus non-empty overrides."""

        params = self.defaults_for_provider(provider)
        params.update({k: v for k, v in overrides.items() if v is not None})
        return CompletionOptions(
            temperature=float(params.get("temperature", 0.5)),
            max_tokens=int(params.get("max_tokens", 1024)),
            timeout=float(timeout),
        )
