"""Item-fetch collaborators: the external data API and the local sample catalog."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx
from loguru import logger

from rec_agent.config import ProviderConfig
from rec_agent.errors import ProviderError
from rec_agent.protocol import Activity, Coupon, Item, ItemKind, Journey, Product, parse_items
from rec_agent.types import FetchResult


class ItemProvider(ABC):
    """Returns items of one kind for a set of query parameters."""

    @abstractmethod
    async def fetch(self, kind: ItemKind, params: dict[str, Any]) -> FetchResult:
        """Raise ``ProviderError`` when the source cannot answer."""


class HttpItemProvider(ItemProvider):
    """REST client for ``GET {base_url}/api/<kind plural>``.

    The API answers ``{"items": [...], "isExactMatch": bool}``; anything else is
    reported as ``ProviderError`` so stages can fall back to samples.
    """

    _PATHS = {
        ItemKind.PRODUCT: "/api/products",
        ItemKind.ACTIVITY: "/api/activities",
        ItemKind.JOURNEY: "/api/journeys",
        ItemKind.COUPON: "/api/coupons",
    }

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.base_url:
            raise ValueError("HttpItemProvider requires ProviderConfig.base_url")
        self.config = config
        self._client = client

    async def fetch(self, kind: ItemKind, params: dict[str, Any]) -> FetchResult:
        url = f"{self.config.base_url.rstrip('/')}{self._PATHS[kind]}"
        headers = {"Content-Type": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"

        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                    response = await client.get(url, params=params, headers=headers)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(f"{kind.value} API request failed: {exc}") from exc

        if not isinstance(body, dict) or not isinstance(body.get("items"), list):
            raise ProviderError(f"{kind.value} API returned a malformed body")
        try:
            items = parse_items(kind, body["items"])
        except ValueError as exc:
            raise ProviderError(f"{kind.value} API returned invalid items: {exc}") from exc
        return FetchResult(items=tuple(items), is_exact_match=bool(body.get("isExactMatch", False)))


class SampleCatalog(ItemProvider):
    """Small locally held item set.

    Serves as the provider in mock-data mode and as the fallback source when
    the external API fails.
    """

    def __init__(self, samples: dict[ItemKind, list[Item]] | None = None) -> None:
        self.samples = samples if samples is not None else default_samples()

    async def fetch(self, kind: ItemKind, params: dict[str, Any]) -> FetchResult:
        keywords = str(params.get("keywords", "")).split()
        limit = int(params.get("limit", 5))
        matched = [
            item
            for item in self.search(kind, keywords)
            if _within_price(item, params.get("minPrice"), params.get("maxPrice"))
        ]
        if keywords and matched:
            return FetchResult(items=tuple(matched[:limit]), is_exact_match=True)
        return FetchResult(items=tuple(self.samples.get(kind, [])[:limit]), is_exact_match=False)

    def search(self, kind: ItemKind, keywords: list[str]) -> list[Item]:
        needles = [keyword.lower() for keyword in keywords if keyword.strip()]
        if not needles:
            return []
        return [
            item
            for item in self.samples.get(kind, [])
            if any(needle in item.search_text().lower() for needle in needles)
        ]

    def fallback(self, kind: ItemKind, keywords: list[str], *, limit: int = 3) -> FetchResult:
        """Keyword-filtered samples, never reported as an exact match."""

        items = self.search(kind, keywords) or self.samples.get(kind, [])
        logger.info("Serving {} sample {} item(s) as fallback", min(len(items), limit), kind.value)
        return FetchResult(items=tuple(items[:limit]), is_exact_match=False)


def _within_price(item: Item, min_price: Any, max_price: Any) -> bool:
    if not isinstance(item, Product):
        return True
    if min_price is not None and item.price < float(min_price):
        return False
    if max_price is not None and item.price > float(max_price):
        return False
    return True


def default_samples() -> dict[ItemKind, list[Item]]:
    return {
        ItemKind.PRODUCT: [
            Product(id=1, name="5G Smartphone", price=4999, sales=1280,
                    image="https://example.com/smartphone.jpg"),
            Product(id=2, name="Ultralight Laptop", price=6999, sales=640,
                    image="https://example.com/laptop.jpg"),
            Product(id=3, name="Fitness Smartwatch", price=1599, sales=2210,
                    image="https://example.com/smartwatch.jpg"),
            Product(id=4, name="Noise-Cancelling Headphones", price=899, sales=3020,
                    image="https://example.com/headphones.jpg"),
            Product(id=5, name="Tablet with Stylus", price=3699, sales=870,
                    image="https://example.com/tablet.jpg"),
        ],
        ItemKind.ACTIVITY: [
            Activity(id="a1", title="Global Shopping Festival", start_time="2024-11-01",
                     end_time="2024-11-12", location="Online",
                     cover="https://example.com/festival.jpg"),
            Activity(id="a2", title="New Product Launch", start_time="2024-10-15",
                     end_time="2024-10-15", location="Exhibition Center",
                     cover="https://example.com/launch.jpg"),
            Activity(id="a3", title="Teachers' Day Special", start_time="2024-09-08",
                     end_time="2024-09-10", location="Online"),
            Activity(id="a4", title="Summer Cool Sale", start_time="2024-07-01",
                     end_time="2024-08-15", location="Downtown Mall"),
            Activity(id="a5", title="Members' Day", start_time="2024-06-18",
                     end_time="2024-06-20", location="Flagship Store"),
        ],
        ItemKind.JOURNEY: [
            Journey(id="j1", name="West Lake Cycling Loop", location="Hangzhou",
                    description="A half-day ride around the lake and tea hills."),
            Journey(id="j2", name="Old Town Night Walk", location="Lijiang",
                    description="Lantern-lit alleys, street food and live music."),
            Journey(id="j3", name="Coastal Highway Road Trip", location="Xiamen",
                    description="Three days of beaches, islands and seafood."),
            Journey(id="j4", name="Mountain Temple Hike", location="Emei",
                    description="Sunrise summit trek with monastery stays."),
        ],
        ItemKind.COUPON: [
            Coupon(id="c1", name="Electronics 100 off 1000", discount=100, threshold=1000,
                   start_time="2024-06-01", end_time="2024-12-31"),
            Coupon(id="c2", name="Beauty 20 off 199", discount=20, threshold=199),
            Coupon(id="c3", name="Dining 50 off 300", discount=50, threshold=300,
                   start_time="2024-07-01", end_time="2024-09-30"),
            Coupon(id="c4", name="Travel 200 off 2000", discount=200, threshold=2000),
        ],
    }
