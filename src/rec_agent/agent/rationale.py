"""Recommendation rationale: streamed from the text generator, templated on failure."""

from __future__ import annotations

from loguru import logger

from rec_agent.agent.emitter import ChunkEmitter
from rec_agent.agent.llm import TextGenerator
from rec_agent.errors import EmitterError
from rec_agent.protocol import Activity, Coupon, Item, Journey, Product
from rec_agent.types import RefinedQuery

_SYSTEM_PROMPT = (
    "You are a recommendation assistant. In one short, specific sentence, explain "
    "why the given item fits the user's needs. Reply with the sentence only."
)


class RationaleWriter:
    """Streams one rationale per item through the emitter.

    Generation failures are never fatal: if nothing was produced for an item
    the templated default reason is emitted instead.
    """

    def __init__(self, generator: TextGenerator | None = None) -> None:
        self.generator = generator

    async def write(self, item: Item, query: RefinedQuery, emit: ChunkEmitter) -> None:
        await emit.emit(f"\n\n**{item.label}**: ")
        produced = False
        if self.generator is not None:
            try:
                async for fragment in self.generator.stream(
                    _SYSTEM_PROMPT, build_rationale_prompt(item, query)
                ):
                    if fragment:
                        produced = True
                        await emit.emit(fragment)
            except EmitterError:
                raise
            except Exception as exc:
                logger.warning("Rationale generation failed for {} {}: {}", item.kind, item.id, exc)
        if not produced:
            await emit.emit(default_reason(item))


def build_rationale_prompt(item: Item, query: RefinedQuery) -> str:
    lines = [
        f'User intent: "{query.user_intent}"',
        f'User keywords: "{", ".join(query.keywords)}"',
    ]
    if query.preferences:
        lines.append(f'User preferences: "{", ".join(query.preferences)}"')
    if query.constraints:
        lines.append(f'User constraints: "{", ".join(query.constraints)}"')
    lines.append(f"Item: {describe_item(item)}")
    return "\n".join(lines)


def describe_item(item: Item) -> str:
    match item:
        case Product():
            return f"ID {item.id}, name {item.name}, price {item.price:g}, sales {item.sales}"
        case Activity():
            where = f", location {item.location}" if item.location else ""
            return f"ID {item.id}, title {item.title}, from {item.start_time} to {item.end_time}{where}"
        case Journey():
            return f"ID {item.id}, name {item.name}, location {item.location}, {item.description}"
        case Coupon():
            return f"ID {item.id}, name {item.name}, {item.discount:g} off orders over {item.threshold:g}"
        case _:
            raise TypeError(f"Unsupported item: {item!r}")


def default_reason(item: Item) -> str:
    match item:
        case Product():
            if item.sales:
                return f"{item.name} is a best seller, already bought by {item.sales} customers."
            return f"{item.name} offers great value at {item.price:g}."
        case Activity():
            where = f" at {item.location}" if item.location else ""
            return f"{item.title} runs from {item.start_time} to {item.end_time}{where}, don't miss it."
        case Journey():
            return f"{item.name} in {item.location} is one of our most popular routes."
        case Coupon():
            return f"Save {item.discount:g} on orders over {item.threshold:g} with this coupon."
        case _:
            raise TypeError(f"Unsupported item: {item!r}")
