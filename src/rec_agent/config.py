"""Configuration models for the recommendation chat service."""

from __future__ import annotations

import os

from pydantic import BaseModel, Field


class LLMConfig(BaseModel):
    """Configures the external text-completion service."""

    api_key: str | None = None
    base_url: str | None = None
    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    classifier_temperature: float = Field(default=0.2, ge=0.0, le=2.0)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


class ProviderConfig(BaseModel):
    """Configures the product/activity/journey/coupon data API."""

    base_url: str | None = None
    token: str | None = None
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    use_mock_data: bool = False

    @property
    def mock_mode(self) -> bool:
        return self.use_mock_data or not self.base_url


class AgentConfig(BaseModel):
    """Configures stage limits and the streaming channel."""

    max_items: int = Field(default=5, ge=1)
    fallback_items: int = Field(default=3, ge=1)
    history_turns: int = Field(default=5, ge=0)
    channel_size: int = Field(default=64, ge=1)


class AppConfig(BaseModel):
    llm: LLMConfig = Field(default_factory=LLMConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    history_db_path: str | None = None


def load_config_from_env() -> AppConfig:
    """Build an ``AppConfig`` from process environment variables."""

    timeout_ms = os.getenv("SERVER_TIMEOUT", "30000")
    return AppConfig(
        llm=LLMConfig(
            api_key=os.getenv("OPENAI_API_KEY") or None,
            base_url=os.getenv("OPENAI_BASE_URL") or None,
            model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        ),
        provider=ProviderConfig(
            base_url=os.getenv("SERVER_API_BASE_URL") or None,
            token=os.getenv("SERVER_TOKEN") or None,
            timeout_seconds=int(timeout_ms) / 1000.0,
            use_mock_data=os.getenv("USE_MOCK_DATA", "").lower() == "true",
        ),
        history_db_path=os.getenv("HISTORY_DB_PATH") or None,
    )
