"""Pydantic schemas for org settings."""

from typing import Any, Optional

from pydantic import BaseModel


class SettingsUpdate(BaseModel):
    org_name: Optional[str] = None
    # Free-form on input: unknown keys are dropped by the service, not rejected.
    settings: Optional[dict[str, Any]] = None


class MaskedSettings(BaseModel):
    openai_api_key: str
    anthropic_api_key: str
    ollama_base_url: str
    has_openai_key: bool
    has_anthropic_key: bool


class SettingsResponse(BaseModel):
    ok: bool = True
    org_name: str
    settings: MaskedSettings
    can_edit: bool
    role: Optional[str] = None


class SettingsUpdated(BaseModel):
    ok: bool = True
    message: str = "Settings updated"
