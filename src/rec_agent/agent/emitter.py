"""Chunk emitter contract and the sinks the pipeline writes into.

Every stage pushes output through ``ChunkEmitter.emit``. The base class owns
the per-message invariants: at most one structured payload, and nothing may be
emitted after the ``done`` event. Subclasses only decide where events go.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from rec_agent.errors import EmitterError
from rec_agent.protocol import StreamEvent, StructuredPayload


class ChunkEmitter(ABC):
    """Sink for one logical message's stream events."""

    def __init__(self) -> None:
        self._terminated = False
        self._payload_sent = False

    @property
    def terminated(self) -> bool:
        return self._terminated

    async def emit(
        self,
        text: str = "",
        done: bool = False,
        payload: StructuredPayload | None = None,
    ) -> None:
        if self._terminated:
            raise EmitterError("emit called after the terminal event")
        if payload is not None:
            if self._payload_sent:
                raise EmitterError("structured payload already emitted for this message")
            self._payload_sent = True
        if done:
            self._terminated = True
        await self._deliver(StreamEvent(text=text, done=done, structured_payload=payload))

    @abstractmethod
    async def _deliver(self, event: StreamEvent) -> None:
        """Hand one validated event to the underlying sink."""


class CollectingEmitter(ChunkEmitter):
    """Keeps every event in memory; used by the non-streaming path and tests."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list[StreamEvent] = []

    async def _deliver(self, event: StreamEvent) -> None:
        self.events.append(event)


class ChannelEmitter(ChunkEmitter):
    """Bounded channel between a running turn and the transport writer.

    The producer awaits ``emit`` (back-pressure once ``maxsize`` events are
    queued); the transport drains ``events()``. After ``disconnect()`` the
    emitter is a no-op sink so the turn can finish without a reader.
    """

    _CLOSED = None

    def __init__(self, maxsize: int = 64) -> None:
        super().__init__()
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue(maxsize=maxsize)
        self._connected = True
        self._closed = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def _deliver(self, event: StreamEvent) -> None:
        if not self._connected:
            return
        await self._queue.put(event)

    async def close(self) -> None:
        """Mark the end of the turn; ``events()`` stops after queued events."""
        if self._closed:
            return
        self._closed = True
        if self._connected:
            await self._queue.put(self._CLOSED)

    def disconnect(self) -> None:
        self._connected = False
        # Drop queued events so a producer blocked on a full queue wakes up.
        while not self._queue.empty():
            self._queue.get_nowait()

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self._queue.get()
            if event is self._CLOSED:
                return
            yield event


class RecordingEmitter(ChunkEmitter):
    """Wraps another emitter and observes the reply for persistence.

    Recording is a list append before delegation, so it never gates delivery.
    """

    def __init__(self, inner: ChunkEmitter) -> None:
        super().__init__()
        self._inner = inner
        self._parts: list[str] = []
        self.last_payload: StructuredPayload | None = None
        self.event_count = 0

    @property
    def full_reply(self) -> str:
        return "".join(self._parts)

    async def _deliver(self, event: StreamEvent) -> None:
        self._parts.append(event.text)
        if event.structured_payload is not None:
            self.last_payload = event.structured_payload
        self.event_count += 1
        await self._inner.emit(event.text, event.done, event.structured_payload)
