"""
Pytest configuration and shared fixtures.

Nothing here touches the network: backends are scripted fakes, embeddings are
deterministic bag-of-words vectors, and the vector index lives in a dict.
"""

import hashlib
import itertools
import math
from collections.abc import Callable
from typing import Any

import pytest

from clawcore.core.config import ClawConfig
from clawcore.core.persistence import Database
from clawcore.exceptions import ProviderError
from clawcore.llm.adapters import BackendAdapter
from clawcore.llm.router import ProviderRouter
from clawcore.memory.embeddings import cosine_similarity
from clawcore.memory.store import MemoryStore
from clawcore.models.contracts import ChatMessage, LLMResponse, TokenUsage, ToolCall, ToolSpec, VectorMatch
from clawcore.utils.background import BackgroundTasks

_call_ids = itertools.count(1)


# ============================================================================
# Response helpers
# ============================================================================


def text_response(text: str, provider_id: str = "fake", usage: bool = False) -> LLMResponse:
    return LLMResponse(
        text=text,
        provider_id=provider_id,
        model=f"{provider_id}-model",
        usage=TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15) if usage else None,
    )


def tool_call(name: str, arguments: str = "{}", call_id: str | None = None) -> ToolCall:
    return ToolCall(id=call_id or f"call_{next(_call_ids)}", name=name, arguments=arguments)


def tool_response(*calls: ToolCall, provider_id: str = "fake") -> LLMResponse:
    return LLMResponse(text="", tool_calls=list(calls), provider_id=provider_id, model=f"{provider_id}-model")


def last_user_text(messages: list[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.role.value == "user" and isinstance(message.content, str):
            return message.content
    return ""


# ============================================================================
# Fakes
# ============================================================================


Responder = Callable[[list[ChatMessage], list[ToolSpec] | None], LLMResponse]


class FakeAdapter(BackendAdapter):
    """
    Scripted backend.

    ``script`` items are returned (or raised) in order; ``responder`` is
    consulted once the script runs out. Every call is recorded.
    """

    def __init__(
        self,
        provider_id: str = "fake",
        script: list[LLMResponse | Exception] | None = None,
        responder: Responder | None = None,
    ):
        super().__init__(provider_id, model=f"{provider_id}-model")
        self.script = list(script or [])
        self.responder = responder
        self.calls: list[tuple[list[ChatMessage], list[ToolSpec] | None]] = []

    def translate_messages(self, messages: list[ChatMessage]) -> list[Any]:
        return list(messages)

    def translate_tools(self, tools: list[ToolSpec]) -> list[Any] | None:
        return list(tools) or None

    def parse_response(self, raw: Any) -> LLMResponse:
        if not isinstance(raw, LLMResponse):
            raise ProviderError("Malformed fake response", provider_id=self.provider_id)
        return raw

    async def _call(self, messages: list[Any], tools: list[Any] | None) -> Any:
        self.calls.append((messages, tools))
        if self.script:
            item = self.script.pop(0)
        elif self.responder is not None:
            item = self.responder(messages, tools)
        else:
            raise RuntimeError(f"{self.provider_id}: script exhausted")
        if isinstance(item, Exception):
            raise item
        return item.model_copy(update={"provider_id": self.provider_id})


class FakeEmbedder:
    """Hashed bag-of-words embedding: identical texts score 1.0, disjoint ones 0.0."""

    def __init__(self, dimensions: int = 64):
        self.dimensions = dimensions
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        vector = [0.0] * self.dimensions
        for word in text.lower().split():
            word = word.strip(".,!?:;\"'")
            if not word:
                continue
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dimensions
            vector[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return [v / norm for v in vector]


class InMemoryVectorIndex:
    def __init__(self) -> None:
        self.items: dict[str, tuple[list[float], dict[str, Any]]] = {}

    def upsert(self, id: str, embedding: list[float], metadata: dict[str, Any]) -> None:
        self.items[id] = (list(embedding), dict(metadata))

    def query(self, embedding: list[float], top_k: int) -> list[VectorMatch]:
        scored = [
            VectorMatch(id=item_id, score=cosine_similarity(embedding, vector), metadata=meta)
            for item_id, (vector, meta) in self.items.items()
        ]
        scored.sort(key=lambda m: m.score, reverse=True)
        return scored[:top_k]


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def config(tmp_path):
    """Config isolated from the environment, storing under tmp_path."""
    return ClawConfig(
        _env_file=None,
        db_path=tmp_path / "memory.db",
        enable_vector_index=False,
        enable_rich_console=False,
        vector_index_path=tmp_path / "vectors",
    )


@pytest.fixture
def db(config):
    database = Database(config.db_path)
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def background():
    return BackgroundTasks()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def vector_index():
    return InMemoryVectorIndex()


@pytest.fixture
def fake_adapter():
    return FakeAdapter()


@pytest.fixture
def router(fake_adapter):
    return ProviderRouter([fake_adapter])


@pytest.fixture
def memory(db, embedder, config, router, vector_index, background):
    """MemoryStore whose LLM calls go to ``fake_adapter``."""
    return MemoryStore(
        db,
        embedder,
        config,
        llm=router,
        vector_index=vector_index,
        background=background,
    )
