"""Text-generation collaborator backed by a LangChain chat model."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

from rec_agent.config import LLMConfig
from rec_agent.errors import GenerationError

Exchange = tuple[str, str]

# System and user text travel as variable values, so braces inside them
# (JSON examples in the classifier prompt) are never parsed as placeholders.
PROMPT = ChatPromptTemplate.from_messages(
    [
        ("system", "{system}"),
        MessagesPlaceholder(variable_name="chat_history", optional=True),
        ("human", "{input}"),
    ]
)


class TextGenerator(ABC):
    """Black-box text completion: a full string or an async fragment sequence."""

    @abstractmethod
    async def complete(self, system: str, prompt: str, *, json_mode: bool = False) -> str:
        """Return the whole completion."""

    @abstractmethod
    def stream(
        self,
        system: str,
        prompt: str,
        *,
        history: list[Exchange] | None = None,
    ) -> AsyncIterator[str]:
        """Yield completion fragments as they arrive."""


class LangChainTextGenerator(TextGenerator):
    """Runs ``PROMPT | llm | StrOutputParser()`` for any LangChain chat model."""

    def __init__(self, llm: Any, *, json_temperature: float | None = None) -> None:
        self.llm = llm
        self.json_temperature = json_temperature

    async def complete(self, system: str, prompt: str, *, json_mode: bool = False) -> str:
        model = self.llm
        if json_mode:
            options: dict[str, Any] = {"response_format": {"type": "json_object"}}
            if self.json_temperature is not None:
                options["temperature"] = self.json_temperature
            model = self.llm.bind(**options)
        chain = PROMPT | model | StrOutputParser()
        try:
            return await chain.ainvoke(prompt_inputs(system, prompt))
        except Exception as exc:
            raise GenerationError(f"text generation failed: {exc}") from exc

    async def stream(
        self,
        system: str,
        prompt: str,
        *,
        history: list[Exchange] | None = None,
    ) -> AsyncIterator[str]:
        chain = PROMPT | self.llm | StrOutputParser()
        try:
            async for text in chain.astream(prompt_inputs(system, prompt, history)):
                if text:
                    yield text
        except Exception as exc:
            raise GenerationError(f"text streaming failed: {exc}") from exc


def create_text_generator(config: LLMConfig) -> TextGenerator | None:
    """Build the OpenAI-backed generator, or ``None`` in deterministic mode."""

    if not config.enabled:
        return None

    from langchain_openai import ChatOpenAI

    llm = ChatOpenAI(
        model=config.model,
        temperature=config.temperature,
        api_key=config.api_key,
        base_url=config.base_url,
    )
    return LangChainTextGenerator(llm, json_temperature=config.classifier_temperature)


def prompt_inputs(
    system: str,
    prompt: str,
    history: list[Exchange] | None = None,
) -> dict[str, Any]:
    chat_history: list[tuple[str, str]] = []
    for user_text, assistant_text in history or []:
        chat_history.append(("human", user_text))
        chat_history.append(("ai", assistant_text))
    return {"system": system, "input": prompt, "chat_history": chat_history}
