"""Provider selection — which LLM backend an agent talks to, and with what credentials.

Learn: An agent names a provider and a model; the org's settings hold the
credentials. Selection combines the two and fails loudly when a credential
is missing, so a misconfigured agent is reported before any call is made.

    config = select_provider(agent, org.settings)
    config.provider   # "openai" | "anthropic" | "ollama"
    config.api_key    # from org settings (ollama uses a placeholder)
    config.base_url   # only set for ollama

The invocation itself lives outside this service.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from actionchat.config import settings


class ProviderError(ValueError):
    """Agent/org configuration cannot produce a usable provider."""


@dataclass(frozen=True)
class ProviderConfig:
    provider: str
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None

    def redacted(self) -> dict:
        """Safe for logs: never includes the key itself."""
        return {
            "provider": self.provider,
            "model": self.model,
            "has_api_key": bool(self.api_key),
            "base_url": self.base_url,
        }


# ─── Builders ──────────────────────────────────────────────


def _openai(model: str, org_settings: dict) -> ProviderConfig:
    api_key = org_settings.get("openai_api_key")
    if not api_key:
        raise ProviderError(
            "OpenAI API key not configured. Add it in your organization settings."
        )
    return ProviderConfig(provider="openai", model=model, api_key=api_key)


def _anthropic(model: str, org_settings: dict) -> ProviderConfig:
    api_key = org_settings.get("anthropic_api_key")
    if not api_key:
        raise ProviderError(
            "Anthropic API key not configured. Add it in your organization settings."
        )
    return ProviderConfig(provider="anthropic", model=model, api_key=api_key)


def _ollama(model: str, org_settings: dict) -> ProviderConfig:
    # Ollama speaks the OpenAI wire protocol and ignores the key.
    base_url = org_settings.get("ollama_base_url") or settings.default_ollama_base_url
    return ProviderConfig(
        provider="ollama", model=model, api_key="ollama", base_url=base_url
    )


_PROVIDERS: dict[str, Callable[[str, dict], ProviderConfig]] = {
    "openai": _openai,
    "anthropic": _anthropic,
    "ollama": _ollama,
}


def list_providers() -> list[str]:
    return sorted(_PROVIDERS.keys())


def _field(agent: Any, name: str) -> Any:
    if isinstance(agent, dict):
        return agent.get(name)
    return getattr(agent, name, None)


def select_provider(agent: Any, org_settings: Optional[dict] = None) -> ProviderConfig:
    """Resolve the provider config for an agent row (or dict) and its org's settings.

    Raises ProviderError when the model name is missing, the provider is
    unknown, or the provider's credential is absent.
    """
    provider = _field(agent, "model_provider")
    model = _field(agent, "model_name")

    if not model:
        raise ProviderError("Agent has no model_name configured.")

    builder = _PROVIDERS.get(provider)
    if builder is None:
        raise ProviderError(f'Unsupported model provider: "{provider}"')
    return builder(model, org_settings or {})
