"""Prompt composition for knowledge-grounded replies."""

from __future__ import annotations

import os
from collections.abc import Sequence

from langdetect import LangDetectException, detect

from ..knowledge.schemas import ScoredEntry

DEFAULT_ROLE_INSTRUCTION = (
    "You are a customer support assistant answering WhatsApp messages on behalf "
    "of the company. Be cordial, concise and practical. Use only the facts in the "
    "knowledge base below when it is provided."
)

FALLBACK_INSTRUCTION = (
    "No knowledge base entry matched this message. Answer helpfully and honestly; "
    "if you do not know the answer, say so and offer to connect the customer with "
    "a human agent. Do not invent prices, policies or deadlines."
)


def reply_language_instruction(message: str) -> str:
    lang = os.getenv("OPENAI_LANG")
    if not lang:
        try:
            lang = detect(message) if message.strip() else None
        except LangDetectException:
            lang = None
    return f"Reply in {lang}." if lang else "Reply in the same language as the customer."


class PromptBuilder:
    """Render the role instruction, retrieved entries and customer message."""

    def __init__(
        self,
        role_instruction: str | None = None,
        fallback_instruction: str = FALLBACK_INSTRUCTION,
    ) -> None:
        self.role_instruction = role_instruction or DEFAULT_ROLE_INSTRUCTION
        self.fallback_instruction = fallback_instruction

    def build(self, user_message: str, sources: Sequence[ScoredEntry]) -> str:
        parts = [self.role_instruction, ""]
        if sources:
            parts.append("Knowledge base:")
            for position, scored in enumerate(sources, start=1):
                entry = scored.entry
                parts.append(
                    f"[{position}] {entry.title} (similarity {scored.similarity:.2f})\n{entry.content}"
                )
        else:
            parts.append(self.fallback_instruction)
        parts.extend(["", "Customer message:", user_message, "", reply_language_instruction(user_message)])
        return "\n".join(parts)
