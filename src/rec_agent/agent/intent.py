"""Intent classification: LLM-backed and deterministic keyword variants."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod

from loguru import logger

from rec_agent.agent.llm import TextGenerator
from rec_agent.errors import ClassificationError
from rec_agent.types import IntentAnalysis, IntentType

_SYSTEM_PROMPT = """
You are an intent analysis assistant for a shopping and travel concierge.
Classify the user's message and extract search keywords.

Possible intents:
1. PRODUCT - the user wants to learn about or buy goods
2. ACTIVITY - the user asks about events, campaigns or activities
3. JOURNEY - the user wants travel routes, trips or places to visit
4. COUPON - the user is looking for coupons, vouchers or discounts
5. GENERAL - ordinary conversation not about any of the above

Reply with JSON only, in the form:
{"intent": "PRODUCT|ACTIVITY|JOURNEY|COUPON|GENERAL", "keywords": ["keyword1", "keyword2"]}
""".strip()

_TOKEN_PATTERN = re.compile(r"[0-9a-z一-鿿]+", flags=re.UNICODE)
_PRICE_PATTERN = re.compile(
    r"\b(?:under|below|less than|cheaper than|within|over|above|more than|between)\s+\$?\d+",
    flags=re.IGNORECASE,
)

_TRIGGERS: tuple[tuple[IntentType, frozenset[str]], ...] = (
    (
        IntentType.COUPON,
        frozenset({"coupon", "coupons", "voucher", "vouchers", "discount", "discounts", "promo"}),
    ),
    (
        IntentType.JOURNEY,
        frozenset(
            {"trip", "trips", "travel", "journey", "journeys", "tour", "tours",
             "itinerary", "route", "routes", "vacation", "visit"}
        ),
    ),
    (
        IntentType.ACTIVITY,
        frozenset(
            {"activity", "activities", "event", "events", "festival", "concert",
             "exhibition", "workshop", "campaign", "campaigns"}
        ),
    ),
    (
        IntentType.PRODUCT,
        frozenset({"buy", "purchase", "product", "products", "shop", "shopping", "goods", "cheap"}),
    ),
)

_STOPWORDS = frozenset(
    {
        "a", "an", "the", "me", "my", "i", "you", "we", "us", "it", "is", "are", "am",
        "be", "to", "of", "for", "in", "on", "at", "with", "and", "or", "any", "some",
        "what", "which", "who", "how", "can", "could", "would", "should", "do", "does",
        "please", "want", "need", "like", "looking", "find", "show", "give", "get",
        "recommend", "suggest", "suggestions", "good", "best", "there", "this", "that",
        "these", "those", "under", "below", "over", "above", "less", "more", "than",
        "between", "within", "cheaper", "about", "from", "next", "week", "weekend",
        "month", "today", "tomorrow", "yuan", "dollars", "price", "budget",
    }
)


class IntentClassifier(ABC):
    """Classifies a user message into an intent plus keywords."""

    @abstractmethod
    async def classify(self, text: str) -> IntentAnalysis:
        """Raise ``ClassificationError`` when the turn cannot be classified."""


class LLMIntentClassifier(IntentClassifier):
    def __init__(self, generator: TextGenerator) -> None:
        self.generator = generator

    async def classify(self, text: str) -> IntentAnalysis:
        try:
            raw = await self.generator.complete(_SYSTEM_PROMPT, text, json_mode=True)
        except Exception as exc:
            logger.error("Intent classification failed: {}", exc)
            raise ClassificationError("Intent service is temporarily unavailable.") from exc
        if not raw.strip():
            raise ClassificationError("Intent service returned an empty reply.")
        return parse_intent_reply(raw)


class KeywordIntentClassifier(IntentClassifier):
    """Deterministic classifier used when no text-completion service is configured."""

    async def classify(self, text: str) -> IntentAnalysis:
        tokens = tokenize(text)
        intent = IntentType.GENERAL
        for candidate, triggers in _TRIGGERS:
            if triggers.intersection(tokens):
                intent = candidate
                break
        if intent is IntentType.GENERAL and _PRICE_PATTERN.search(text):
            intent = IntentType.PRODUCT

        trigger_words = set().union(*(triggers for _, triggers in _TRIGGERS))
        keywords: list[str] = []
        for token in tokens:
            if token in _STOPWORDS or token in trigger_words or token.isdigit():
                continue
            if token not in keywords:
                keywords.append(token)
        return IntentAnalysis(intent=intent, keywords=keywords)


def parse_intent_reply(raw: str) -> IntentAnalysis:
    """Parse the classifier JSON; malformed replies degrade to GENERAL."""

    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Unparseable intent reply, treating as GENERAL: {!r}", raw[:200])
        return IntentAnalysis(intent=IntentType.GENERAL)
    if not isinstance(data, dict):
        return IntentAnalysis(intent=IntentType.GENERAL)

    raw_keywords = data.get("keywords")
    keywords = (
        [str(keyword).strip() for keyword in raw_keywords if str(keyword).strip()]
        if isinstance(raw_keywords, list)
        else []
    )
    return IntentAnalysis(intent=IntentType.coerce(data.get("intent")), keywords=keywords)


def tokenize(text: str) -> list[str]:
    return _TOKEN_PATTERN.findall(text.lower())
