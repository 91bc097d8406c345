"""Stage registry: maps intents onto stage functions."""

from __future__ import annotations

from collections.abc import Callable
from time import perf_counter

from rec_agent.agent.emitter import ChunkEmitter
from rec_agent.agent.llm import TextGenerator
from rec_agent.agent.rationale import RationaleWriter
from rec_agent.agent.stages import GeneralAnswerStage, ItemStage, Stage
from rec_agent.config import AgentConfig
from rec_agent.providers.catalog import ItemProvider, SampleCatalog
from rec_agent.types import IntentType, RefinedQuery, StageTrace, TurnContext


class StageRegistry:
    """Stores one stage per intent; unknown intents resolve to GENERAL."""

    def __init__(self) -> None:
        self._stages: dict[IntentType, Stage] = {}
        self._observer: Callable[[StageTrace], None] | None = None

    def register(self, intent: IntentType, stage: Stage) -> None:
        if intent in self._stages:
            raise ValueError(f"Stage already registered for intent: {intent.value}")
        self._stages[intent] = stage

    def set_observer(self, observer: Callable[[StageTrace], None] | None) -> None:
        """Set an optional callback invoked after each stage run."""
        self._observer = observer

    def resolve(self, intent: IntentType) -> Stage:
        stage = self._stages.get(intent) or self._stages.get(IntentType.GENERAL)
        if stage is None:
            raise KeyError(f"No stage for intent {intent.value} and no GENERAL stage")
        return stage

    def intents(self) -> list[IntentType]:
        return list(self._stages)

    async def dispatch(
        self,
        intent: IntentType,
        query: RefinedQuery,
        emit: ChunkEmitter,
        *,
        turn: TurnContext | None = None,
    ) -> StageTrace:
        stage = self.resolve(intent)
        start = perf_counter()
        await stage.run(query, emit, turn=turn)
        latency_ms = (perf_counter() - start) * 1000.0

        trace = StageTrace(name=stage.name, intent=intent, latency_ms=latency_ms)
        if self._observer is not None:
            self._observer(trace)
        return trace


def build_default_registry(
    provider: ItemProvider,
    *,
    samples: SampleCatalog | None = None,
    generator: TextGenerator | None = None,
    config: AgentConfig | None = None,
) -> StageRegistry:
    """Register the general stage plus one item stage per item-bearing intent."""

    samples = samples or SampleCatalog()
    rationale = RationaleWriter(generator)
    registry = StageRegistry()
    registry.register(IntentType.GENERAL, GeneralAnswerStage(generator))
    for intent in IntentType:
        kind = intent.item_kind
        if kind is None:
            continue
        registry.register(
            intent,
            ItemStage(kind, provider, samples=samples, rationale=rationale, config=config),
        )
    return registry
