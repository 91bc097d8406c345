import httpx
import pytest

from rec_agent.config import ProviderConfig
from rec_agent.errors import ProviderError
from rec_agent.protocol import ItemKind, Product
from rec_agent.providers.catalog import HttpItemProvider, SampleCatalog


def _provider(handler) -> HttpItemProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpItemProvider(
        ProviderConfig(base_url="http://catalog.test/", token="secret"),
        client=client,
    )


@pytest.mark.asyncio
async def test_http_provider_queries_kind_path_with_bearer_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "items": [{"id": 7, "name": "Trail Camera", "price": 1299, "sales": 42}],
                "isExactMatch": True,
            },
        )

    result = await _provider(handler).fetch(
        ItemKind.PRODUCT, {"keywords": "camera", "maxPrice": 1500.0, "limit": 5}
    )

    request = seen[0]
    assert request.url.path == "/api/products"
    assert request.url.params["keywords"] == "camera"
    assert request.url.params["limit"] == "5"
    assert request.headers["Authorization"] == "Bearer secret"
    assert result.is_exact_match
    assert result.items == (Product(id=7, name="Trail Camera", price=1299, sales=42),)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, json={"message": "down"}),
        httpx.Response(200, text="<html>oops</html>"),
        httpx.Response(200, json={"data": []}),
        httpx.Response(200, json={"items": [{"id": 1}]}),
    ],
)
async def test_http_provider_failures_become_provider_error(response: httpx.Response) -> None:
    provider = _provider(lambda request: response)

    with pytest.raises(ProviderError):
        await provider.fetch(ItemKind.PRODUCT, {"limit": 5})


@pytest.mark.asyncio
async def test_http_provider_transport_error_is_provider_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ProviderError):
        await _provider(handler).fetch(ItemKind.COUPON, {"limit": 5})


def test_http_provider_requires_base_url() -> None:
    with pytest.raises(ValueError):
        HttpItemProvider(ProviderConfig())


@pytest.mark.asyncio
async def test_sample_catalog_exact_and_non_exact() -> None:
    catalog = SampleCatalog()

    exact = await catalog.fetch(ItemKind.PRODUCT, {"keywords": "laptop", "limit": 5})
    missing = await catalog.fetch(ItemKind.PRODUCT, {"keywords": "kayak", "limit": 2})

    assert exact.is_exact_match
    assert [item.name for item in exact.items] == ["Ultralight Laptop"]
    assert not missing.is_exact_match
    assert len(missing.items) == 2


@pytest.mark.asyncio
async def test_sample_catalog_price_filter() -> None:
    result = await SampleCatalog().fetch(
        ItemKind.PRODUCT, {"keywords": "phone", "maxPrice": 1000.0, "limit": 5}
    )

    assert result.is_exact_match
    assert [item.name for item in result.items] == ["Noise-Cancelling Headphones"]


def test_sample_fallback_is_never_exact() -> None:
    catalog = SampleCatalog()

    by_keyword = catalog.fallback(ItemKind.JOURNEY, ["hangzhou"])
    unfiltered = catalog.fallback(ItemKind.ACTIVITY, ["nothing-matches"], limit=3)

    assert not by_keyword.is_exact_match
    assert [item.id for item in by_keyword.items] == ["j1"]
    assert [item.id for item in unfiltered.items] == ["a1", "a2", "a3"]
