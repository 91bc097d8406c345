import json

from rec_agent.client.render import FENCE, LogicalMessage, RenderBuffer, balance_fences, intercept_document
from rec_agent.protocol import ItemKind, Product, StreamEvent, StructuredPayload


def _message() -> LogicalMessage:
    return LogicalMessage(id="m1")


def test_open_fence_gets_display_only_closer() -> None:
    buffer = RenderBuffer()
    message = _message()

    buffer.apply(message, StreamEvent(text="Try this:\n```python\nprint('hi')"))

    assert message.raw_text == "Try this:\n```python\nprint('hi')"
    assert message.renderable_text == message.raw_text + FENCE
    assert message.is_streaming

    buffer.apply(message, StreamEvent(text="\n```\nDone."))

    assert message.raw_text.count(FENCE) == 2
    assert message.renderable_text == message.raw_text


def test_synthetic_closer_never_reaches_raw_text() -> None:
    buffer = RenderBuffer()
    message = _message()

    for fragment in ["```", "a", "b", "c"]:
        buffer.apply(message, StreamEvent(text=fragment))

    assert message.raw_text == "```abc"
    assert message.renderable_text == "```abc```"


def test_balance_fences_even_count_unchanged() -> None:
    assert balance_fences("plain") == "plain"
    assert balance_fences("```x```") == "```x```"
    assert balance_fences("```x```\n```") == "```x```\n``````"


def test_document_fragment_replaces_text_and_sets_payload() -> None:
    buffer = RenderBuffer()
    message = _message()
    fragment = json.dumps(
        {
            "text": "Two phones for you",
            "items": [{"id": 1, "name": "Phone A", "price": 999}, {"id": 2, "name": "Phone B", "price": 1299}],
            "type": "PRODUCT",
        }
    )

    buffer.apply(message, StreamEvent(text=fragment))

    assert message.raw_text == "Two phones for you"
    assert message.renderable_text == "Two phones for you"
    assert message.structured_payload is not None
    assert message.structured_payload.kind is ItemKind.PRODUCT
    assert [item.name for item in message.structured_payload.items] == ["Phone A", "Phone B"]
    assert not message.is_streaming


def test_json_without_document_keys_is_plain_text() -> None:
    buffer = RenderBuffer()
    message = _message()

    buffer.apply(message, StreamEvent(text='{"answer": 42}'))

    assert message.raw_text == '{"answer": 42}'
    assert message.structured_payload is None
    assert message.is_streaming


def test_intercept_rejects_partial_or_invalid_documents() -> None:
    assert intercept_document('{"text": "x", "items": [') is None
    assert intercept_document('{"text": "x", "items": [], "type": "GENERAL"}') is None
    assert intercept_document('{"text": "x", "items": [{"id": 1}], "type": "product"}') is None
    assert intercept_document("not json at all") is None


def test_intercept_accepts_kind_in_place_of_type() -> None:
    document = intercept_document('{"text": "t", "items": [], "kind": "coupon"}')

    assert document is not None
    assert document.kind is ItemKind.COUPON


def test_payload_only_event_attaches_and_stops_streaming() -> None:
    buffer = RenderBuffer()
    message = _message()
    buffer.apply(message, StreamEvent(text="Searching..."))

    payload = StructuredPayload(kind=ItemKind.PRODUCT, items=[Product(id=1, name="P", price=1.0)])
    buffer.apply(message, StreamEvent(structured_payload=payload))

    assert message.raw_text == "Searching..."
    assert message.structured_payload == payload
    assert not message.is_streaming


def test_done_event_stops_streaming() -> None:
    buffer = RenderBuffer()
    message = _message()

    buffer.apply(message, StreamEvent(text="Hello"))
    assert message.is_streaming
    buffer.apply(message, StreamEvent(text="", done=True))

    assert not message.is_streaming
    assert message.raw_text == "Hello"


def test_text_after_payload_only_event_resumes_streaming_until_done() -> None:
    buffer = RenderBuffer()
    message = _message()
    payload = StructuredPayload(kind=ItemKind.PRODUCT, items=[Product(id=1, name="P", price=1.0)])

    buffer.apply(message, StreamEvent(text="Searching..."))
    buffer.apply(message, StreamEvent(structured_payload=payload))
    buffer.apply(message, StreamEvent(text=" more"))

    assert message.is_streaming
    assert message.structured_payload == payload

    buffer.apply(message, StreamEvent(text="", done=True))

    assert not message.is_streaming
    assert message.raw_text == "Searching... more"


def test_text_with_payload_keeps_streaming_until_done() -> None:
    buffer = RenderBuffer()
    message = _message()
    payload = StructuredPayload(kind=ItemKind.COUPON, items=[])

    buffer.apply(message, StreamEvent(text="Coupons:", structured_payload=payload))

    assert message.structured_payload == payload
    assert message.is_streaming
