"""Shared domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from rec_agent.protocol import ConversationEntry, Item, ItemKind


class IntentType(str, Enum):
    GENERAL = "GENERAL"
    PRODUCT = "PRODUCT"
    ACTIVITY = "ACTIVITY"
    JOURNEY = "JOURNEY"
    COUPON = "COUPON"

    @classmethod
    def coerce(cls, value: object) -> "IntentType":
        """Map a classifier answer onto the taxonomy; anything unknown is GENERAL."""
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.GENERAL

    @property
    def item_kind(self) -> ItemKind | None:
        if self is IntentType.GENERAL:
            return None
        return ItemKind(self.value.lower())


@dataclass(slots=True)
class IntentAnalysis:
    """Classifier output for one user message."""

    intent: IntentType
    keywords: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RefinedQuery:
    """Search intent derived once per user message; never mutated afterwards."""

    keywords: tuple[str, ...]
    user_intent: str
    preferences: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class FetchResult:
    """Item-fetch collaborator answer."""

    items: tuple[Item, ...]
    is_exact_match: bool


@dataclass(slots=True)
class TurnContext:
    """Per-turn facts a stage may need beyond the refined query."""

    token: str
    user_text: str
    history: list[ConversationEntry] = field(default_factory=list)


@dataclass(slots=True)
class StageTrace:
    """Trace record for one dispatched stage."""

    name: str
    intent: IntentType
    latency_ms: float
