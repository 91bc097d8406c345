import pytest

from rec_agent.agent.intent import KeywordIntentClassifier, LLMIntentClassifier, parse_intent_reply
from rec_agent.agent.refiner import (
    LLMQueryRefiner,
    RuleBasedQueryRefiner,
    build_params,
    extract_constraints,
    fallback_query,
    price_bounds,
)
from rec_agent.errors import ClassificationError, GenerationError, RefinementError
from rec_agent.protocol import ItemKind
from rec_agent.types import IntentType, RefinedQuery


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("text", "intent", "keywords"),
    [
        ("recommend me a phone under 1000", IntentType.PRODUCT, ["phone"]),
        ("any coupons for electronics?", IntentType.COUPON, ["electronics"]),
        ("plan a trip to hangzhou", IntentType.JOURNEY, ["plan", "hangzhou"]),
        ("what events are on next week", IntentType.ACTIVITY, []),
        ("hello there", IntentType.GENERAL, ["hello"]),
    ],
)
async def test_keyword_classifier(text: str, intent: IntentType, keywords: list[str]) -> None:
    analysis = await KeywordIntentClassifier().classify(text)

    assert analysis.intent is intent
    assert analysis.keywords == keywords


def test_parse_intent_reply_degrades_to_general() -> None:
    assert parse_intent_reply("not json").intent is IntentType.GENERAL
    assert parse_intent_reply('["PRODUCT"]').intent is IntentType.GENERAL

    unknown = parse_intent_reply('{"intent": "WEATHER", "keywords": ["rain"]}')
    assert unknown.intent is IntentType.GENERAL
    assert unknown.keywords == ["rain"]

    product = parse_intent_reply('{"intent": "product", "keywords": ["laptop", " "]}')
    assert product.intent is IntentType.PRODUCT
    assert product.keywords == ["laptop"]


@pytest.mark.asyncio
async def test_llm_classifier_failure_is_classification_error(generator_cls) -> None:
    failing = LLMIntentClassifier(generator_cls(replies=[GenerationError("timeout")]))
    empty = LLMIntentClassifier(generator_cls(replies=["   "]))

    with pytest.raises(ClassificationError):
        await failing.classify("phones")
    with pytest.raises(ClassificationError):
        await empty.classify("phones")


@pytest.mark.asyncio
async def test_llm_refiner_merges_reply_with_extracted_constraints(generator_cls) -> None:
    generator = generator_cls(
        replies=['{"keywords": ["phone", "5G"], "userIntent": "a cheap 5G phone", "preferences": ["long battery"]}']
    )

    query = await LLMQueryRefiner(generator).refine(
        "a 5G phone under 1000", ["phone"], IntentType.PRODUCT
    )

    assert query.keywords == ("phone", "5G")
    assert query.user_intent == "a cheap 5G phone"
    assert query.preferences == ("long battery",)
    assert query.constraints == ("under 1000",)


@pytest.mark.asyncio
async def test_llm_refiner_missing_fields_fall_back(generator_cls) -> None:
    query = await LLMQueryRefiner(generator_cls(replies=["{}"])).refine(
        "coupons please", ["coupons"], IntentType.COUPON
    )

    assert query.keywords == ("coupons",)
    assert query.user_intent == "find related coupons"
    assert query.preferences == ()


@pytest.mark.asyncio
async def test_llm_refiner_bad_reply_raises(generator_cls) -> None:
    with pytest.raises(RefinementError):
        await LLMQueryRefiner(generator_cls(replies=["nope"])).refine("x", ["x"], IntentType.PRODUCT)


@pytest.mark.asyncio
async def test_rule_based_refiner_keeps_keywords_and_constraints() -> None:
    query = await RuleBasedQueryRefiner().refine(
        "events between 2024-11-01 and 2024-11-12", ["events"], IntentType.ACTIVITY
    )

    assert query.keywords == ("events",)
    assert query.user_intent == "find related activities"
    assert query.constraints == ("2024-11-01", "2024-11-12")


def test_fallback_query_uses_raw_keywords() -> None:
    query = fallback_query(["lamp"], IntentType.PRODUCT)

    assert query == RefinedQuery(keywords=("lamp",), user_intent="find related products")


def test_extract_constraints_and_price_bounds() -> None:
    phrases = extract_constraints("laptops between 3000 and 5000, or tablets under $800")

    assert phrases == ["between 3000 and 5000", "under $800"]
    assert price_bounds(["between 5000 and 3000"]) == (3000.0, 5000.0)
    assert price_bounds(["over 200", "under 900"]) == (200.0, 900.0)
    assert price_bounds([]) == (None, None)


def test_product_params() -> None:
    query = RefinedQuery(keywords=("phone",), user_intent="x", constraints=("under 1000",))

    params = build_params(ItemKind.PRODUCT, query, limit=5)

    assert params == {
        "limit": 5,
        "keywords": "phone",
        "sortBy": "sales",
        "sortDirection": "desc",
        "maxPrice": 1000.0,
    }


def test_activity_journey_coupon_params() -> None:
    activity = build_params(
        ItemKind.ACTIVITY,
        RefinedQuery(keywords=(), user_intent="x", constraints=("2024-11-01", "2024-11-12")),
        limit=5,
    )
    journey = build_params(
        ItemKind.JOURNEY,
        RefinedQuery(keywords=("lake",), user_intent="x", preferences=("cycling in Hangzhou",)),
        limit=3,
    )
    coupon = build_params(
        ItemKind.COUPON,
        RefinedQuery(keywords=("dining",), user_intent="x", constraints=("at least 50",)),
        limit=5,
    )

    assert activity == {"limit": 5, "startDate": "2024-11-01", "endDate": "2024-11-12"}
    assert journey == {"limit": 3, "keywords": "lake", "location": "Hangzhou"}
    assert coupon == {"limit": 5, "keywords": "dining", "minDiscount": 50.0}
