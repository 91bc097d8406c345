"""Wire models shared by the server pipeline and the client reconstruction.

All models serialize with camelCase field names (``structuredPayload``,
``isExactMatch``) and accept either camelCase or snake_case on input.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel


class ItemKind(str, Enum):
    PRODUCT = "product"
    ACTIVITY = "activity"
    JOURNEY = "journey"
    COUPON = "coupon"


class WireModel(BaseModel):
    """Base for every model that crosses the transport or the history store."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Product(WireModel):
    kind: Literal["product"] = "product"
    id: int | str
    name: str
    price: float
    sales: int = 0
    image: str | None = None

    @property
    def label(self) -> str:
        return self.name

    def search_text(self) -> str:
        return self.name


class Activity(WireModel):
    kind: Literal["activity"] = "activity"
    id: int | str
    title: str
    start_time: str
    end_time: str
    location: str | None = None
    cover: str | None = None

    @property
    def label(self) -> str:
        return self.title

    def search_text(self) -> str:
        return " ".join(part for part in (self.title, self.location) if part)


class Journey(WireModel):
    kind: Literal["journey"] = "journey"
    id: int | str
    name: str
    location: str
    description: str = ""
    image: str | None = None

    @property
    def label(self) -> str:
        return self.name

    def search_text(self) -> str:
        return f"{self.name} {self.location} {self.description}"


class Coupon(WireModel):
    kind: Literal["coupon"] = "coupon"
    id: int | str
    name: str
    discount: float
    threshold: float = 0.0
    start_time: str | None = None
    end_time: str | None = None

    @property
    def label(self) -> str:
        return self.name

    def search_text(self) -> str:
        return self.name


Item = Annotated[Union[Product, Activity, Journey, Coupon], Field(discriminator="kind")]

_ITEM_LIST = TypeAdapter(list[Item])


def parse_items(kind: ItemKind, raw_items: list[Any]) -> list[Item]:
    """Validate provider/JSON item dicts as the closed variant for ``kind``.

    Raw items from providers do not carry the ``kind`` tag, so it is injected
    before validation. Raises ``pydantic.ValidationError`` on malformed input.
    """

    tagged = [
        {**raw, "kind": kind.value} if isinstance(raw, dict) else raw
        for raw in raw_items
    ]
    return _ITEM_LIST.validate_python(tagged)


class StructuredPayload(WireModel):
    kind: ItemKind
    items: list[Item] = Field(default_factory=list)
    is_exact_match: bool = False

    @model_validator(mode="after")
    def _items_match_kind(self) -> "StructuredPayload":
        for item in self.items:
            if item.kind != self.kind.value:
                raise ValueError(
                    f"item {item.id!r} has kind {item.kind!r}, payload kind is {self.kind.value!r}"
                )
        return self


class StreamEvent(WireModel):
    text: str = ""
    done: bool = False
    structured_payload: StructuredPayload | None = None


class RecommendationDocument(WireModel):
    text: str
    items: list[Item] = Field(default_factory=list)
    kind: ItemKind = Field(validation_alias=AliasChoices("kind", "type"))
    is_exact_match: bool | None = None

    def to_payload(self) -> StructuredPayload:
        return StructuredPayload(
            kind=self.kind,
            items=list(self.items),
            is_exact_match=bool(self.is_exact_match),
        )


# Client -> server


class SubmitTurn(WireModel):
    type: Literal["submit_turn"] = "submit_turn"
    text: str = Field(min_length=1)
    token: str | None = None


class SubmitTurnStream(WireModel):
    type: Literal["submit_turn_stream"] = "submit_turn_stream"
    text: str = Field(min_length=1)
    token: str | None = None


ClientMessage = Annotated[Union[SubmitTurn, SubmitTurnStream], Field(discriminator="type")]
CLIENT_MESSAGE = TypeAdapter(ClientMessage)


# Server -> client


class ReplyMessage(WireModel):
    type: Literal["reply"] = "reply"
    data: Union[RecommendationDocument, str]


class StreamEventMessage(StreamEvent):
    type: Literal["stream_event"] = "stream_event"

    @classmethod
    def from_event(cls, event: StreamEvent) -> "StreamEventMessage":
        return cls(
            text=event.text,
            done=event.done,
            structured_payload=event.structured_payload,
        )

    def to_event(self) -> StreamEvent:
        return StreamEvent(
            text=self.text,
            done=self.done,
            structured_payload=self.structured_payload,
        )


class TurnErrorMessage(WireModel):
    type: Literal["turn_error"] = "turn_error"
    message: str


ServerMessage = Annotated[
    Union[ReplyMessage, StreamEventMessage, TurnErrorMessage],
    Field(discriminator="type"),
]
SERVER_MESSAGE = TypeAdapter(ServerMessage)


# History log


class HistoryRecord(WireModel):
    """One row of the append-only conversation log."""

    token: str
    role: Literal["user", "assistant"]
    content: str
    structured_payload_items_json: str | None = None
    kind: ItemKind | None = None


class ConversationEntry(WireModel):
    """A user message paired with the assistant reply that followed it."""

    user: str
    assistant: str
    structured_payload: StructuredPayload | None = None
