"""Error taxonomy for the recommendation pipeline."""

from __future__ import annotations


class ChatError(Exception):
    """Base error carrying a stable machine-readable code."""

    default_code = "CHAT_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class ClassificationError(ChatError):
    """Intent classification failed; fatal to the turn."""

    default_code = "INTENT_SERVICE_ERROR"


class RefinementError(ChatError):
    default_code = "QUERY_REFINE_ERROR"


class ProviderError(ChatError):
    """The external item provider was unreachable or answered garbage."""

    default_code = "ITEM_PROVIDER_ERROR"


class GenerationError(ChatError):
    default_code = "AI_SERVICE_ERROR"


class EmitterError(RuntimeError):
    """A stage broke the emitter contract (emit after done, second payload)."""
