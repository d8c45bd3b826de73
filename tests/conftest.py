import pathlib
import sys
import unicodedata
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from chatsync.app_logging import init_logging
from chatsync.automation.schemas import AutomationRuleCreate, RuleAction, RuleTrigger
from chatsync.channels.memory import InMemoryChannel
from chatsync.config import EngineSettings
from chatsync.container import build_engine
from chatsync.conversations.models import ProviderMessage
from chatsync.conversations.schemas import MessageDirection
from chatsync.storage.memory import InMemoryConversationStore

PHONE = "+5511999999999"
T0 = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock shared by the sandbox channel and the tests."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class KeywordEmbedder:
    """Bag-of-words embedder over a tiny support vocabulary."""

    VOCABULARY = (
        "horario",
        "funcionamento",
        "entrega",
        "prazo",
        "pagamento",
        "pix",
        "cartao",
        "troca",
        "devolucao",
        "senha",
    )

    def __init__(self):
        self.calls = 0

    @staticmethod
    def _words(text: str) -> set[str]:
        folded = unicodedata.normalize("NFKD", text.lower())
        plain = "".join(ch for ch in folded if not unicodedata.combining(ch))
        return {word.strip(".,!?:;") for word in plain.split()}

    def embed(self, texts):
        self.calls += 1
        vectors = []
        for text in texts:
            words = self._words(text)
            vectors.append([1.0 if term in words else 0.0 for term in self.VOCABULARY])
        return vectors


class RecordingCompleter:
    provider = "echo"

    def __init__(self, reply: str = "Atendemos de segunda a sexta."):
        self.reply = reply
        self.prompts: list[str] = []
        self.error: Exception | None = None

    def complete(self, prompt, options):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def channel(clock):
    return InMemoryChannel(clock=clock)


@pytest.fixture
def completer():
    return RecordingCompleter()


@pytest.fixture
def embedder():
    return KeywordEmbedder()


@pytest.fixture
def tickets():
    return []


@pytest.fixture
def settings():
    return EngineSettings(worker_pool_size=4)


@pytest.fixture
def engine(settings, store, channel, completer, embedder, tickets):
    built = build_engine(
        settings,
        store=store,
        channel=channel,
        completer=completer,
        embedder=embedder,
        ticket_sink=tickets.append,
    )
    yield built
    built.close()


@pytest.fixture
def make_message():
    """Build provider messages relative to ``T0``."""

    def _make(
        body: str,
        *,
        minutes: float = 0,
        seconds: float = 0,
        provider_id: str | None = None,
        direction: MessageDirection = MessageDirection.INBOUND,
        **kwargs,
    ) -> ProviderMessage:
        return ProviderMessage(
            direction=direction,
            body=body,
            timestamp=T0 + timedelta(minutes=minutes, seconds=seconds),
            provider_message_id=provider_id,
            **kwargs,
        )

    return _make


@pytest.fixture
def add_rule(engine):
    def _add(name, trigger_type, trigger_value, action_type, action_value="", **kwargs):
        return engine.automation.upsert_rule(
            AutomationRuleCreate(
                name=name,
                trigger=RuleTrigger(type=trigger_type, value=trigger_value),
                action=RuleAction(type=action_type, value=action_value),
                **kwargs,
            )
        )

    return _add


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app
