"""LLM provider selection for agents."""

from actionchat.llm.provider import (
    ProviderConfig,
    ProviderError,
    list_providers,
    select_provider,
)

__all__ = ["ProviderConfig", "ProviderError", "list_providers", "select_provider"]
