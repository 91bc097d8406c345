"""FastAPI entrypoint: websocket chat channel plus chat/history/trace endpoints."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import asdict
from typing import Any

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from rec_agent.agent.emitter import ChannelEmitter
from rec_agent.agent.intent import IntentClassifier, KeywordIntentClassifier, LLMIntentClassifier
from rec_agent.agent.llm import create_text_generator
from rec_agent.agent.orchestrator import Orchestrator
from rec_agent.agent.refiner import LLMQueryRefiner, QueryRefiner, RuleBasedQueryRefiner
from rec_agent.agent.registry import build_default_registry
from rec_agent.config import AppConfig, load_config_from_env
from rec_agent.errors import ChatError
from rec_agent.obs.tracing import TraceStore
from rec_agent.protocol import (
    CLIENT_MESSAGE,
    ReplyMessage,
    StreamEventMessage,
    SubmitTurn,
    TurnErrorMessage,
)
from rec_agent.providers.catalog import HttpItemProvider, ItemProvider, SampleCatalog
from rec_agent.storage.history import HistoryStore, InMemoryHistoryStore, SqliteHistoryStore

GENERIC_ERROR = "Something went wrong while handling your message. Please try again."


def build_orchestrator(
    config: AppConfig,
    *,
    history: HistoryStore | None = None,
    trace_store: TraceStore | None = None,
) -> Orchestrator:
    """Wire the collaborators selected by ``config``."""

    generator = create_text_generator(config.llm)
    samples = SampleCatalog()
    provider: ItemProvider = (
        samples if config.provider.mock_mode else HttpItemProvider(config.provider)
    )
    classifier: IntentClassifier
    refiner: QueryRefiner
    if generator is not None:
        classifier = LLMIntentClassifier(generator)
        refiner = LLMQueryRefiner(generator)
    else:
        classifier = KeywordIntentClassifier()
        refiner = RuleBasedQueryRefiner()

    return Orchestrator(
        classifier=classifier,
        refiner=refiner,
        registry=build_default_registry(
            provider, samples=samples, generator=generator, config=config.agent
        ),
        history=history,
        trace_store=trace_store,
        config=config.agent,
    )


class ChatRequest(BaseModel):
    text: str = Field(min_length=1)
    token: str | None = None


app = FastAPI(title="Recommendation Chat Agent", version="0.1.0")

_config = load_config_from_env()
_history: HistoryStore = (
    SqliteHistoryStore(_config.history_db_path)
    if _config.history_db_path
    else InMemoryHistoryStore()
)
_trace_store = TraceStore()
_orchestrator = build_orchestrator(_config, history=_history, trace_store=_trace_store)


@app.get("/health")
def health() -> dict[str, Any]:
    return {
        "status": "ok",
        "llm_configured": _config.llm.enabled,
        "pipeline_mode": "langchain" if _config.llm.enabled else "deterministic",
        "provider_mode": "mock" if _config.provider.mock_mode else "http",
        "trace_count": len(_trace_store.list_recent(limit=1000)),
    }


@app.post("/chat")
async def chat(request: ChatRequest) -> dict[str, Any]:
    token = request.token or str(uuid.uuid4())
    try:
        answer = await _orchestrator.reply(request.text, token)
    except ChatError as exc:
        logger.error("[{}] Turn failed: {}", token, exc.message)
        raise HTTPException(
            status_code=502, detail={"code": exc.code, "message": exc.message}
        ) from exc
    return {"token": token, **ReplyMessage(data=answer).to_wire()}


@app.get("/history/{token}")
async def history(token: str, limit: int = Query(default=5, ge=1, le=50)) -> dict[str, Any]:
    entries = await _history.conversation_history(token, limit)
    return {"items": [entry.to_wire() for entry in entries]}


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()


@app.websocket("/chat/ws")
async def chat_socket(websocket: WebSocket) -> None:
    await websocket.accept()
    connection_token = str(uuid.uuid4())
    logger.info("Client connected: {}", connection_token)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = CLIENT_MESSAGE.validate_json(raw)
            except ValidationError as exc:
                logger.warning("[{}] Rejected frame: {}", connection_token, exc)
                await _send_error(websocket, "Invalid message")
                continue

            token = message.token or connection_token
            if isinstance(message, SubmitTurn):
                await _handle_reply(websocket, message.text, token)
            else:
                await _handle_stream(websocket, message.text, token)
    except WebSocketDisconnect:
        logger.info("Client disconnected: {}", connection_token)


async def _handle_reply(websocket: WebSocket, text: str, token: str) -> None:
    try:
        answer = await _orchestrator.reply(text, token)
    except ChatError as exc:
        logger.error("[{}] Turn failed: {}", token, exc.message)
        await _send_error(websocket, exc.message)
        return
    except Exception:
        logger.exception("[{}] Unexpected failure", token)
        await _send_error(websocket, GENERIC_ERROR)
        return
    await websocket.send_json(ReplyMessage(data=answer).to_wire())


async def _handle_stream(websocket: WebSocket, text: str, token: str) -> None:
    emitter = ChannelEmitter(maxsize=_config.agent.channel_size)

    async def produce() -> None:
        try:
            await _orchestrator.run(text, token, emitter)
        finally:
            await emitter.close()

    task = asyncio.create_task(produce())
    try:
        async for event in emitter.events():
            await websocket.send_json(StreamEventMessage.from_event(event).to_wire())
    except asyncio.CancelledError:
        emitter.disconnect()
        raise
    except Exception as send_exc:
        # The turn keeps running against a no-op sink so history is still written.
        emitter.disconnect()
        try:
            await task
        except Exception as exc:
            logger.warning("[{}] Turn failed after the client went away: {}", token, exc)
        if not isinstance(send_exc, WebSocketDisconnect):
            logger.error("[{}] Sending stream event failed: {}", token, send_exc)
        raise

    try:
        await task
    except ChatError as exc:
        logger.error("[{}] Turn failed: {}", token, exc.message)
        await _send_error(websocket, exc.message)
    except Exception:
        logger.exception("[{}] Unexpected failure", token)
        await _send_error(websocket, GENERIC_ERROR)


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json(TurnErrorMessage(message=message).to_wire())
