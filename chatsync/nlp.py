"""Lightweight NLP utilities for sentiment and language detection."""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Dict, Optional

from langdetect import DetectorFactory, LangDetectException, detect

from .conversations.schemas import Sentiment

# langdetect is randomised unless seeded.
DetectorFactory.seed = 0

_POSITIVE = {
    # en
    "great", "good", "awesome", "love", "thanks", "thank", "helpful", "perfect", "excellent",
    # pt
    "obrigado", "obrigada", "otimo", "otima", "excelente", "perfeito", "adorei",
    "maravilhoso", "parabens", "legal", "show", "valeu",
}
_NEGATIVE = {
    # en
    "bad", "terrible", "angry", "hate", "upset", "cancel", "complain", "awful", "broken",
    # pt
    "ruim", "pessimo", "pessima", "horrivel", "problema", "reclamacao", "cancelar",
    "absurdo", "raiva", "demora", "atraso", "insatisfeito", "insatisfeita", "defeito",
}

_WORD = re.compile(r"\w+", re.UNICODE)


def _fold(text: str) -> str:
    """Lowercase and strip accents so "péssimo" matches "pessimo"."""

    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


@dataclass
class NlpPipeline:
    """Deterministic NLP pipeline used to keep conversation sentiment current."""

    def analyse(self, text: str) -> Dict[str, Any]:
        text = text or ""
        return {
            "sentiment": self._sentiment(text),
            "language": self._language(text),
        }

    def sentiment_label(self, text: str) -> Sentiment:
        return Sentiment(self._sentiment(text or "")["label"])

    def _sentiment(self, text: str) -> Dict[str, Any]:
        tokens = _WORD.findall(_fold(text))
        positives = sum(1 for token in tokens if token in _POSITIVE)
        negatives = sum(1 for token in tokens if token in _NEGATIVE)
        score = 0.0
        label = "neutral"
        if positives or negatives:
            score = (positives - negatives) / max(positives + negatives, 1)
            if score > 0:
                label = "positive"
            elif score < 0:
                label = "negative"
        return {"label": label, "score": min(abs(score), 1.0)}

    def _language(self, text: str) -> Optional[str]:
        try:
            return detect(text) if text.strip() else None
        except LangDetectException:
            return None
