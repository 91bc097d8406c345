from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import pytest

from rec_agent.agent.intent import IntentClassifier, KeywordIntentClassifier
from rec_agent.agent.llm import TextGenerator
from rec_agent.agent.orchestrator import Orchestrator
from rec_agent.agent.refiner import RuleBasedQueryRefiner
from rec_agent.agent.registry import build_default_registry
from rec_agent.config import AgentConfig
from rec_agent.errors import ClassificationError, ProviderError
from rec_agent.obs.tracing import TraceStore
from rec_agent.protocol import HistoryRecord, ItemKind, Product
from rec_agent.providers.catalog import ItemProvider, SampleCatalog
from rec_agent.storage.history import HistoryStore, InMemoryHistoryStore
from rec_agent.types import FetchResult, IntentAnalysis


class ScriptedGenerator(TextGenerator):
    """Replays canned completions; an ``Exception`` entry is raised in place."""

    def __init__(
        self,
        *,
        replies: list[str | Exception] | None = None,
        streams: list[list[str | Exception]] | None = None,
    ) -> None:
        self.replies = list(replies or [])
        self.streams = list(streams or [])
        self.stream_calls: list[dict[str, Any]] = []

    async def complete(self, system: str, prompt: str, *, json_mode: bool = False) -> str:
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream(
        self,
        system: str,
        prompt: str,
        *,
        history: list[tuple[str, str]] | None = None,
    ) -> AsyncIterator[str]:
        self.stream_calls.append({"system": system, "prompt": prompt, "history": history or []})
        script = self.streams.pop(0) if self.streams else []
        for fragment in script:
            if isinstance(fragment, Exception):
                raise fragment
            yield fragment


class StaticProvider(ItemProvider):
    def __init__(self, items: list[Any] | None = None, *, exact: bool = True, error: Exception | None = None) -> None:
        self.items = list(items or [])
        self.exact = exact
        self.error = error
        self.calls: list[tuple[ItemKind, dict[str, Any]]] = []

    async def fetch(self, kind: ItemKind, params: dict[str, Any]) -> FetchResult:
        self.calls.append((kind, params))
        if self.error is not None:
            raise self.error
        return FetchResult(items=tuple(self.items), is_exact_match=self.exact)


class FailingClassifier(IntentClassifier):
    async def classify(self, text: str) -> IntentAnalysis:
        raise ClassificationError("Intent service is temporarily unavailable.")


class BrokenHistoryStore(HistoryStore):
    async def append(self, record: HistoryRecord) -> None:
        raise OSError("disk full")

    async def recent(self, token: str, limit: int) -> list[HistoryRecord]:
        raise OSError("disk full")


def make_products(count: int) -> list[Product]:
    return [
        Product(id=index, name=f"Phone {index}", price=500 + index, sales=10 * index)
        for index in range(1, count + 1)
    ]


def make_orchestrator(
    *,
    provider: ItemProvider | None = None,
    generator: TextGenerator | None = None,
    classifier: IntentClassifier | None = None,
    history: HistoryStore | None = None,
    trace_store: TraceStore | None = None,
) -> Orchestrator:
    config = AgentConfig()
    return Orchestrator(
        classifier=classifier or KeywordIntentClassifier(),
        refiner=RuleBasedQueryRefiner(),
        registry=build_default_registry(
            provider or SampleCatalog(), samples=SampleCatalog(), generator=generator, config=config
        ),
        history=history,
        trace_store=trace_store,
        config=config,
    )


@pytest.fixture
def history_store() -> InMemoryHistoryStore:
    return InMemoryHistoryStore()


@pytest.fixture
def trace_store() -> TraceStore:
    return TraceStore()


@pytest.fixture
def provider_error() -> ProviderError:
    return ProviderError("products API request failed: connection refused")


@pytest.fixture
def generator_cls() -> type[ScriptedGenerator]:
    return ScriptedGenerator


@pytest.fixture
def provider_cls() -> type[StaticProvider]:
    return StaticProvider


@pytest.fixture
def products():
    return make_products


@pytest.fixture
def orchestrator_factory():
    return make_orchestrator


@pytest.fixture
def failing_classifier() -> FailingClassifier:
    return FailingClassifier()


@pytest.fixture
def broken_history() -> BrokenHistoryStore:
    return BrokenHistoryStore()
