"""Client chat session: outgoing frames and incoming frame dispatch."""

from __future__ import annotations

from typing import Any

from loguru import logger

from rec_agent.client.correlator import CorrelatorState, SessionCorrelator
from rec_agent.client.render import LogicalMessage
from rec_agent.protocol import (
    SERVER_MESSAGE,
    ReplyMessage,
    StreamEventMessage,
    SubmitTurn,
    SubmitTurnStream,
    TurnErrorMessage,
)


class ChatSession:
    """Client-side state for one connection: messages, loading, last error."""

    def __init__(
        self,
        token: str | None = None,
        *,
        correlator: SessionCorrelator | None = None,
    ) -> None:
        self.token = token
        self.correlator = correlator or SessionCorrelator()
        self.is_loading = False
        self.error: str | None = None

    @property
    def messages(self) -> list[LogicalMessage]:
        return self.correlator.messages

    def submit(self, text: str, *, stream: bool = True) -> dict[str, Any]:
        """Record the user message and return the frame to send."""

        frame_model = SubmitTurnStream if stream else SubmitTurn
        frame = frame_model(text=text, token=self.token)
        self.correlator.add_user_message(text)
        self.is_loading = True
        self.error = None
        return frame.to_wire()

    def receive(self, frame: dict[str, Any]) -> LogicalMessage | None:
        message = SERVER_MESSAGE.validate_python(frame)
        if isinstance(message, StreamEventMessage):
            applied = self.correlator.handle_event(message.to_event())
            if self.correlator.state is CorrelatorState.IDLE:
                self.is_loading = False
            return applied
        if isinstance(message, ReplyMessage):
            self.is_loading = False
            return self.correlator.handle_reply(message.data)
        if isinstance(message, TurnErrorMessage):
            logger.warning("Turn failed: {}", message.message)
            self.is_loading = False
            self.error = message.message
            return self.correlator.handle_error(message.message)
        raise TypeError(f"Unhandled server frame: {type(message).__name__}")
