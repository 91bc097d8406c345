"""Query refinement and kind-specific search parameter mapping."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from loguru import logger

from rec_agent.agent.llm import TextGenerator
from rec_agent.errors import RefinementError
from rec_agent.protocol import ItemKind
from rec_agent.types import IntentType, RefinedQuery

_SYSTEM_PROMPT = (
    "You are a search expert for {noun}. Extract the most precise search "
    "parameters from the user's request. Output must be JSON."
)

_USER_PROMPT = """
Refine the following user request into effective search parameters: keywords,
the user's real intent, preferences and constraints.
User request: "{text}"
Keywords identified so far: {keywords}
Reply with JSON containing these fields:
{{
  "keywords": ["keyword1", "keyword2"],
  "userIntent": "description of what the user really wants",
  "preferences": ["preference1"],
  "constraints": ["constraint1"]
}}
Keep price limits as phrases such as "under 1000" or "between 200 and 500" and
dates in YYYY-MM-DD form.
""".strip()

_NUMBER = r"\$?(\d+(?:\.\d+)?)"
_BETWEEN = re.compile(rf"between\s+{_NUMBER}\s+(?:and|to)\s+{_NUMBER}", re.IGNORECASE)
_UPPER = re.compile(
    rf"(?:under|below|less than|cheaper than|within|at most|no more than)\s+{_NUMBER}",
    re.IGNORECASE,
)
_LOWER = re.compile(rf"(?:over|above|more than|at least)\s+{_NUMBER}", re.IGNORECASE)
_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")
_PLACE = re.compile(r"\b(?:in|to|near|around)\s+([A-Z][\w-]*(?:\s+[A-Z][\w-]*)*)")

_NOUNS = {
    IntentType.PRODUCT: "products",
    IntentType.ACTIVITY: "activities",
    IntentType.JOURNEY: "journeys",
    IntentType.COUPON: "coupons",
    IntentType.GENERAL: "information",
}


class QueryRefiner(ABC):
    @abstractmethod
    async def refine(
        self, text: str, keywords: list[str], intent: IntentType
    ) -> RefinedQuery:
        """Raise ``RefinementError`` on failure; callers degrade to ``fallback_query``."""


class LLMQueryRefiner(QueryRefiner):
    def __init__(self, generator: TextGenerator) -> None:
        self.generator = generator

    async def refine(
        self, text: str, keywords: list[str], intent: IntentType
    ) -> RefinedQuery:
        system = _SYSTEM_PROMPT.format(noun=_NOUNS[intent])
        prompt = _USER_PROMPT.format(text=text, keywords=", ".join(keywords) or "none")
        try:
            raw = await self.generator.complete(system, prompt, json_mode=True)
            data = json.loads(raw or "{}")
        except Exception as exc:
            raise RefinementError(f"query refinement failed: {exc}") from exc
        if not isinstance(data, dict):
            raise RefinementError("query refinement reply is not a JSON object")

        constraints = _str_list(data.get("constraints"))
        for phrase in extract_constraints(text):
            if phrase not in constraints:
                constraints.append(phrase)
        return RefinedQuery(
            keywords=tuple(_str_list(data.get("keywords")) or keywords),
            user_intent=str(data.get("userIntent") or "").strip() or synthesize_intent(intent),
            preferences=tuple(_str_list(data.get("preferences"))),
            constraints=tuple(constraints),
        )


class RuleBasedQueryRefiner(QueryRefiner):
    """Deterministic refiner: keeps the keywords, lifts price and date phrases."""

    async def refine(
        self, text: str, keywords: list[str], intent: IntentType
    ) -> RefinedQuery:
        return RefinedQuery(
            keywords=tuple(keywords),
            user_intent=synthesize_intent(intent),
            constraints=tuple(extract_constraints(text)),
        )


def fallback_query(keywords: list[str], intent: IntentType) -> RefinedQuery:
    return RefinedQuery(keywords=tuple(keywords), user_intent=synthesize_intent(intent))


def synthesize_intent(intent: IntentType) -> str:
    if intent is IntentType.GENERAL:
        return "get a helpful answer"
    return f"find related {_NOUNS[intent]}"


def extract_constraints(text: str) -> list[str]:
    """Pull price-limit and date phrases out of free text, in order of appearance."""

    found: list[tuple[int, str]] = []
    for pattern in (_BETWEEN, _UPPER, _LOWER, _DATE):
        found.extend((match.start(), match.group(0)) for match in pattern.finditer(text))
    return [phrase for _, phrase in sorted(found)]


def price_bounds(phrases: Iterable[str]) -> tuple[float | None, float | None]:
    text = " ".join(phrases)
    between = _BETWEEN.search(text)
    if between:
        low, high = sorted((float(between.group(1)), float(between.group(2))))
        return low, high
    upper = _UPPER.search(text)
    lower = _LOWER.search(text)
    return (
        float(lower.group(1)) if lower else None,
        float(upper.group(1)) if upper else None,
    )


def date_bounds(phrases: Iterable[str]) -> tuple[str | None, str | None]:
    dates = _DATE.findall(" ".join(phrases))
    start = dates[0] if dates else None
    end = dates[1] if len(dates) > 1 else None
    return start, end


def build_params(kind: ItemKind, query: RefinedQuery, *, limit: int) -> dict[str, Any]:
    """Map a refined query onto the data API's query parameters for ``kind``."""

    hints = [*query.constraints, *query.preferences]
    params: dict[str, Any] = {"limit": limit}
    if query.keywords:
        params["keywords"] = " ".join(query.keywords)

    match kind:
        case ItemKind.PRODUCT:
            min_price, max_price = price_bounds(hints)
            params.update(sortBy="sales", sortDirection="desc")
            if min_price is not None:
                params["minPrice"] = min_price
            if max_price is not None:
                params["maxPrice"] = max_price
        case ItemKind.ACTIVITY:
            start, end = date_bounds(hints)
            if start:
                params["startDate"] = start
            if end:
                params["endDate"] = end
        case ItemKind.JOURNEY:
            place = _PLACE.search(" ".join(hints))
            if place:
                params["location"] = place.group(1)
        case ItemKind.COUPON:
            min_discount, _ = price_bounds(hints)
            if min_discount is not None:
                params["minDiscount"] = min_discount
        case _:
            raise ValueError(f"Unknown item kind: {kind}")
    logger.debug("Search params for {}: {}", kind.value, params)
    return params


def _str_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(entry).strip() for entry in value if str(entry).strip()]
