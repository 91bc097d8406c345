"""Stage functions: one per intent, each ending with exactly one terminal emit."""

from __future__ import annotations

from abc import ABC, abstractmethod

from loguru import logger

from rec_agent.agent.emitter import ChunkEmitter
from rec_agent.agent.llm import TextGenerator
from rec_agent.agent.rationale import RationaleWriter
from rec_agent.agent.refiner import build_params
from rec_agent.config import AgentConfig
from rec_agent.errors import EmitterError
from rec_agent.protocol import ItemKind, StructuredPayload
from rec_agent.providers.catalog import ItemProvider, SampleCatalog
from rec_agent.types import FetchResult, RefinedQuery, TurnContext

APOLOGY = "Sorry, something went wrong while preparing the answer. Please try again."

_GENERAL_SYSTEM_PROMPT = (
    "You are a helpful shopping and travel assistant. Answer concisely and "
    "in a friendly tone. Markdown is allowed."
)
_OFFLINE_ANSWER = (
    "I can help you discover products, activities, journeys and coupons. "
    "Tell me what you are looking for!"
)

_NOUNS = {
    ItemKind.PRODUCT: "products",
    ItemKind.ACTIVITY: "activities",
    ItemKind.JOURNEY: "journeys",
    ItemKind.COUPON: "coupons",
}


class Stage(ABC):
    """Intent handler. ``run`` always finishes the message with ``done=True``."""

    name: str = "stage"

    async def run(
        self,
        query: RefinedQuery,
        emit: ChunkEmitter,
        *,
        turn: TurnContext | None = None,
    ) -> None:
        try:
            await self._run(query, emit, turn)
        except EmitterError:
            raise
        except Exception:
            logger.exception("Stage {} failed", self.name)
            if not emit.terminated:
                await emit.emit(f"\n\n{APOLOGY}", done=True)

    @abstractmethod
    async def _run(
        self, query: RefinedQuery, emit: ChunkEmitter, turn: TurnContext | None
    ) -> None:
        """Emit status, body and the terminal event."""


class ItemStage(Stage):
    """Search -> describe -> rationale per item -> terminal structured payload."""

    def __init__(
        self,
        kind: ItemKind,
        provider: ItemProvider,
        *,
        samples: SampleCatalog,
        rationale: RationaleWriter,
        config: AgentConfig | None = None,
    ) -> None:
        self.kind = kind
        self.name = kind.value
        self.provider = provider
        self.samples = samples
        self.rationale = rationale
        self.config = config or AgentConfig()

    async def _run(
        self, query: RefinedQuery, emit: ChunkEmitter, turn: TurnContext | None
    ) -> None:
        await emit.emit(f"Searching for {_NOUNS[self.kind]}...\n\n")

        result = await self._fetch(query)
        # Frozen from here on: the payload must describe exactly these items.
        items = result.items[: self.config.max_items]

        await emit.emit(describe_results(self.kind, query, result.is_exact_match))
        for item in items:
            await self.rationale.write(item, query, emit)

        payload = StructuredPayload(
            kind=self.kind,
            items=list(items),
            is_exact_match=result.is_exact_match,
        )
        await emit.emit("", done=True, payload=payload)

    async def _fetch(self, query: RefinedQuery) -> FetchResult:
        params = build_params(self.kind, query, limit=self.config.max_items)
        try:
            return await self.provider.fetch(self.kind, params)
        except Exception as exc:
            logger.warning("Item fetch for {} failed, using samples: {}", self.kind.value, exc)
            return self.samples.fallback(
                self.kind, list(query.keywords), limit=self.config.fallback_items
            )


class GeneralAnswerStage(Stage):
    """Plain incremental answer from the text generator; no structured payload."""

    name = "general"

    def __init__(self, generator: TextGenerator | None = None) -> None:
        self.generator = generator

    async def _run(
        self, query: RefinedQuery, emit: ChunkEmitter, turn: TurnContext | None
    ) -> None:
        if self.generator is None:
            await emit.emit(_OFFLINE_ANSWER)
            await emit.emit("", done=True)
            return

        question = turn.user_text if turn is not None else query.user_intent
        history = [
            (entry.user, entry.assistant) for entry in (turn.history if turn is not None else [])
        ]
        produced = False
        try:
            async for fragment in self.generator.stream(
                _GENERAL_SYSTEM_PROMPT, question, history=history
            ):
                if fragment:
                    produced = True
                    await emit.emit(fragment)
        except EmitterError:
            raise
        except Exception as exc:
            logger.warning("General answer generation failed: {}", exc)
            await emit.emit(f"\n\n{APOLOGY}" if produced else APOLOGY)
        await emit.emit("", done=True)


def describe_results(kind: ItemKind, query: RefinedQuery, is_exact_match: bool) -> str:
    subject = ", ".join(query.keywords) or query.user_intent
    noun = _NOUNS[kind]
    if is_exact_match:
        return f'Based on your request "{subject}", here are some {noun} I recommend:'
    return f'Sorry, I could not find {noun} that exactly match "{subject}", but here are some you might like:'
