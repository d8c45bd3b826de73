"""Text-generation backends."""

from __future__ import annotations

import logging
from typing import Protocol

from openai import AzureOpenAI, OpenAI

from .providers import ProviderCredentials
from .responses import CompletionOptions

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_REPLY = (
    "Obrigado pela sua mensagem! Um de nossos atendentes vai responder em breve."
)


class Completer(Protocol):
    def complete(self, prompt: str, options: CompletionOptions) -> str: ...


class OpenAICompleter:
    """Chat completion through the OpenAI (or Azure OpenAI) SDK."""

    provider = "openai"

    def __init__(
        self,
        *,
        model: str,
        credentials: ProviderCredentials | None = None,
        client: OpenAI | None = None,
        system_prompt: str | None = None,
        max_retries: int = 0,
    ) -> None:
        if client is None:
            if credentials is None:
                raise ValueError("credentials or client required")
            if credentials.provider == "azure":
                client = AzureOpenAI(
                    api_key=credentials.api_key,
                    azure_endpoint=credentials.base_url,
                    api_version=credentials.extras.get("api_version", "2024-06-01"),
                    max_retries=max_retries,
                )
            else:
                client = OpenAI(
                    api_key=credentials.api_key,
                    base_url=credentials.base_url,
                    max_retries=max_retries,
                )
            self.provider = credentials.provider
        self._client = client
        self._model = model
        self._system_prompt = system_prompt

    def complete(self, prompt: str, options: CompletionOptions) -> str:
        messages = []
        if self._system_prompt:
            messages.append({"role": "system", "content": self._system_prompt})
        messages.append({"role": "user", "content": prompt})
        completion = self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            timeout=options.timeout,
        )
        return (completion.choices[0].message.content or "").strip()


class EchoCompleter:
    """Offline completer returning a fixed reply.

    Used when no provider key is configured so the automation loop still runs.
    """

    provider = "echo"

    def __init__(self, reply: str = DEFAULT_FALLBACK_REPLY) -> None:
        self.reply = reply

    def complete(self, prompt: str, options: CompletionOptions) -> str:
        return self.reply


def build_completer(settings, registry) -> Completer:
    """OpenAI (or Azure) when a key is configured, else :class:`EchoCompleter`."""

    for provider in ("openai", "azure"):
        credentials = registry.get_credentials(provider)
        if credentials.configured:
            logger.info("Using %s completions with model %s", provider, settings.openai_model)
            return OpenAICompleter(
                model=settings.openai_model,
                credentials=credentials,
                system_prompt=settings.system_prompt,
            )
    logger.warning("No completion provider configured; automated replies use a fixed text")
    return EchoCompleter()
