"""Turn orchestrator: classify -> refine -> dispatch, with reply recording."""

from __future__ import annotations

import asyncio

from loguru import logger

from rec_agent.agent.emitter import ChunkEmitter, CollectingEmitter, RecordingEmitter
from rec_agent.agent.intent import IntentClassifier
from rec_agent.agent.refiner import QueryRefiner, fallback_query
from rec_agent.agent.registry import StageRegistry
from rec_agent.config import AgentConfig
from rec_agent.errors import ChatError
from rec_agent.obs.tracing import Timer, TraceStore
from rec_agent.protocol import ConversationEntry, RecommendationDocument
from rec_agent.storage.history import HistoryStore
from rec_agent.types import IntentAnalysis, RefinedQuery, StageTrace, TurnContext

STATUS_ANALYZING = "Analyzing your request...\n"
STATUS_REFINING = "Refining the search...\n"


class Orchestrator:
    """Runs one user turn end to end.

    Instances hold only collaborators; all per-turn state lives in ``run`` so
    turns for different tokens can run concurrently on one orchestrator.
    """

    def __init__(
        self,
        *,
        classifier: IntentClassifier,
        refiner: QueryRefiner,
        registry: StageRegistry,
        history: HistoryStore | None = None,
        trace_store: TraceStore | None = None,
        config: AgentConfig | None = None,
    ) -> None:
        self.classifier = classifier
        self.refiner = refiner
        self.registry = registry
        self.history = history
        self.trace_store = trace_store
        self.config = config or AgentConfig()

    async def run(self, user_text: str, token: str, emit: ChunkEmitter) -> None:
        """Stream one turn into ``emit``.

        Raises ``ClassificationError`` when the intent cannot be determined;
        every other failure is absorbed by the stage, which still terminates
        the message.
        """

        recorder = RecordingEmitter(emit)
        analysis: IntentAnalysis | None = None
        stage_trace: StageTrace | None = None
        dispatched = False
        error_code: str | None = None
        timer = Timer()
        try:
            with timer:
                await recorder.emit(STATUS_ANALYZING)
                analysis = await self.classifier.classify(user_text)
                logger.info("[{}] intent={} keywords={}", token, analysis.intent.value, analysis.keywords)

                await recorder.emit(STATUS_REFINING)
                query = await self._refine(user_text, analysis)

                turn = TurnContext(token=token, user_text=user_text)
                if analysis.intent.item_kind is None:
                    turn.history = await self._read_history(token)

                dispatched = True
                stage_trace = await self.registry.dispatch(
                    analysis.intent, query, recorder, turn=turn
                )
        except ChatError as exc:
            error_code = exc.code
            raise
        except asyncio.CancelledError:
            error_code = "CANCELLED"
            raise
        except Exception:
            error_code = "INTERNAL_ERROR"
            raise
        finally:
            await self._persist(token, user_text, recorder if dispatched else None)
            self._record_trace(token, user_text, analysis, recorder, timer, error_code, stage_trace)

    async def reply(self, user_text: str, token: str) -> str | RecommendationDocument:
        """Non-streaming path: run the turn and fold it into a single answer."""

        sink = CollectingEmitter()
        await self.run(user_text, token, sink)
        text = "".join(event.text for event in sink.events)
        payload = next(
            (
                event.structured_payload
                for event in sink.events
                if event.structured_payload is not None
            ),
            None,
        )
        if payload is None:
            return text
        return RecommendationDocument(
            text=text,
            items=payload.items,
            kind=payload.kind,
            is_exact_match=payload.is_exact_match,
        )

    async def _refine(self, user_text: str, analysis: IntentAnalysis) -> RefinedQuery:
        try:
            return await self.refiner.refine(user_text, analysis.keywords, analysis.intent)
        except Exception as exc:
            logger.warning("Query refinement failed, using raw keywords: {}", exc)
            return fallback_query(analysis.keywords, analysis.intent)

    async def _read_history(self, token: str) -> list[ConversationEntry]:
        if self.history is None or self.config.history_turns == 0:
            return []
        try:
            return await self.history.conversation_history(token, self.config.history_turns)
        except Exception as exc:
            logger.warning("[{}] Could not read history, answering without context: {}", token, exc)
            return []

    async def _persist(
        self, token: str, user_text: str, recorder: RecordingEmitter | None
    ) -> None:
        if self.history is None:
            return
        try:
            await self.history.save_message(token, "user", user_text)
            if recorder is not None:
                await self.history.save_message(
                    token, "assistant", recorder.full_reply, recorder.last_payload
                )
        except Exception as exc:
            logger.warning("[{}] Failed to persist turn: {}", token, exc)

    def _record_trace(
        self,
        token: str,
        user_text: str,
        analysis: IntentAnalysis | None,
        recorder: RecordingEmitter,
        timer: Timer,
        error_code: str | None,
        stage_trace: StageTrace | None,
    ) -> None:
        if self.trace_store is None:
            return
        payload = recorder.last_payload
        self.trace_store.create_record(
            token=token,
            user_text=user_text,
            intent=analysis.intent.value if analysis is not None else None,
            reply=recorder.full_reply,
            item_kind=payload.kind.value if payload is not None else None,
            item_count=len(payload.items) if payload is not None else 0,
            is_exact_match=payload.is_exact_match if payload is not None else None,
            event_count=recorder.event_count,
            latency_ms=timer.elapsed_ms,
            error_code=error_code,
            stage_traces=[stage_trace] if stage_trace is not None else [],
        )
