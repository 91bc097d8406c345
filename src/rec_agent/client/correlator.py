"""Session correlator: groups stream events into logical messages.

The server never tags events with a message id. Correlation is positional:
an event arriving while no message is open starts a new one, and every later
event belongs to that message until one with ``done=True`` closes it.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from enum import Enum

from loguru import logger

from rec_agent.client.render import LogicalMessage, RenderBuffer
from rec_agent.protocol import RecommendationDocument, StreamEvent


class CorrelatorState(str, Enum):
    IDLE = "idle"
    OPEN = "open"


class SessionCorrelator:
    """Owns the ordered message list for one chat session.

    Events are applied through ``apply`` by message id, never through a
    "current message" reference, so an update that lands after the state has
    moved on still reaches the message it was meant for.
    """

    def __init__(
        self,
        *,
        render: RenderBuffer | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.messages: list[LogicalMessage] = []
        self._open_id: str | None = None
        self._just_closed_id: str | None = None
        self._render = render or RenderBuffer()
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))

    @property
    def state(self) -> CorrelatorState:
        return CorrelatorState.IDLE if self._open_id is None else CorrelatorState.OPEN

    def find(self, message_id: str) -> LogicalMessage | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def add_user_message(self, text: str) -> LogicalMessage:
        self._just_closed_id = None
        message = LogicalMessage(
            id=self._new_id(),
            role="user",
            raw_text=text,
            renderable_text=text,
            is_streaming=False,
        )
        self.messages.append(message)
        return message

    def handle_event(self, event: StreamEvent) -> LogicalMessage | None:
        """Route one stream event; returns the message it was applied to."""

        just_closed_id, self._just_closed_id = self._just_closed_id, None

        if self._open_id is not None:
            message_id = self._open_id
            if event.done:
                self._open_id = None
                self._just_closed_id = message_id
            return self.apply(message_id, event)

        if not event.text and event.structured_payload is None:
            # Trailing terminator for a message that already closed.
            return None

        late_target = self._late_payload_target(event, just_closed_id)
        if late_target is not None:
            return self.apply(late_target.id, event)

        message = LogicalMessage(id=self._new_id())
        self.messages.append(message)
        if not event.done:
            self._open_id = message.id
        else:
            self._just_closed_id = message.id
        return self.apply(message.id, event)

    def apply(self, message_id: str, event: StreamEvent) -> LogicalMessage | None:
        message = self.find(message_id)
        if message is None:
            logger.debug("Discarding event for unknown message {}", message_id)
            return None
        self._render.apply(message, event)
        return message

    def handle_reply(self, data: str | RecommendationDocument) -> LogicalMessage:
        """Append the single answer of a non-streaming turn."""

        self._close_open_message()
        message = LogicalMessage(id=self._new_id())
        self.messages.append(message)
        if isinstance(data, RecommendationDocument):
            message.raw_text = data.text
            message.renderable_text = data.text
            message.structured_payload = data.to_payload()
            message.is_streaming = False
        else:
            self._render.apply(message, StreamEvent(text=data, done=True))
        return message

    def handle_error(self, text: str) -> LogicalMessage:
        """Close any open message and append a visible error element."""

        self._close_open_message()
        message = LogicalMessage(
            id=self._new_id(),
            role="error",
            raw_text=text,
            renderable_text=text,
            is_streaming=False,
        )
        self.messages.append(message)
        return message

    def _close_open_message(self) -> None:
        self._just_closed_id = None
        if self._open_id is None:
            return
        message = self.find(self._open_id)
        if message is not None:
            message.is_streaming = False
        self._open_id = None

    def _late_payload_target(
        self, event: StreamEvent, just_closed_id: str | None
    ) -> LogicalMessage | None:
        # A bare payload directly after the terminator belongs to the message
        # that terminator closed, provided it has none yet.
        if event.structured_payload is None or event.text or just_closed_id is None:
            return None
        target = self.find(just_closed_id)
        if target is None or target.role != "assistant" or target.structured_payload is not None:
            return None
        return target
