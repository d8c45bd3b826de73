import pytest

from chatsync.conversations.schemas import Sentiment
from chatsync.nlp import NlpPipeline


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Obrigado, o atendimento foi ótimo!", Sentiment.POSITIVE),
        ("Thanks, that was really helpful", Sentiment.POSITIVE),
        ("Que péssimo, quero cancelar", Sentiment.NEGATIVE),
        ("This is terrible and broken", Sentiment.NEGATIVE),
        ("Qual o horário de funcionamento?", Sentiment.NEUTRAL),
        ("", Sentiment.NEUTRAL),
    ],
)
def test_sentiment_label(text, expected):
    assert NlpPipeline().sentiment_label(text) == expected


def test_analyse_reports_score_and_language():
    result = NlpPipeline().analyse("Bom dia, gostaria de saber o prazo de entrega do meu pedido")
    assert result["sentiment"]["label"] == "neutral"
    assert result["sentiment"]["score"] == 0.0
    assert result["language"] == "pt"


def test_mixed_sentiment_scores_balance():
    result = NlpPipeline().analyse("ótimo produto mas a entrega foi péssima")
    assert result["sentiment"]["label"] == "neutral"


def test_language_of_blank_text_is_none():
    assert NlpPipeline().analyse("   ")["language"] is None
