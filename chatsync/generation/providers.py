"""Credential lookup for the language-model providers a completer can use."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ProviderCredentials:
    """Credentials and endpoint resolved for a provider."""

    provider: str
    api_key: str | None
    base_url: str | None = None
    extras: dict[str, str] = field(default_factory=dict)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


class ProviderRegistry:
    """Resolve provider credentials from explicit overrides or the environment."""

    _DEFAULT_ENV_MAP: Mapping[str, tuple[str, str | None]] = {
        "openai": ("OPENAI_API_KEY", "OPENAI_BASE_URL"),
        "azure": ("AZURE_OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT"),
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, str]] | None = None):
        self._overrides = {k.lower(): dict(v) for k, v in (overrides or {}).items()}

    def get_credentials(self, provider: str) -> ProviderCredentials:
        """Return credentials for ``provider``; overrides win over env vars."""

        key = provider.lower()
        if key in self._overrides:
            override = self._overrides[key]
            return ProviderCredentials(
                provider=key,
                api_key=override.get("api_key"),
                base_url=override.get("base_url"),
                extras={k: v for k, v in override.items() if k not in {"api_key", "base_url"}},
            )
        key_var, url_var = self._DEFAULT_ENV_MAP.get(key, (None, None))
        extras: dict[str, str] = {}
        if key == "azure" and os.getenv("AZURE_OPENAI_API_VERSION"):
            extras["api_version"] = os.environ["AZURE_OPENAI_API_VERSION"]
        return ProviderCredentials(
            provider=key,
            api_key=os.getenv(key_var) if key_var else None,
            base_url=(os.getenv(url_var) or None) if url_var else None,
            extras=extras,
        )

    def list_supported_providers(self) -> dict[str, bool]:
        """Map each known provider to whether it has an API key."""

        providers = set(self._DEFAULT_ENV_MAP) | set(self._overrides)
        return {name: self.get_credentials(name).configured for name in sorted(providers)}
