"""Recommendation chat agent package."""

from .config import AgentConfig, AppConfig, LLMConfig, ProviderConfig

__all__ = ["AgentConfig", "AppConfig", "LLMConfig", "ProviderConfig"]
