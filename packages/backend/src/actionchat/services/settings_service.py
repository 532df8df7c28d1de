"""Org settings service — allowlisted provider credentials, masked on read.

Learn: Settings live in one JSON column on the org. Writes are a merge:
only allowlisted keys are considered, an empty string or null removes a
key, and every other stored key is left untouched. Reads never return a
secret in full.
"""

import uuid
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.db.models import Organization
from actionchat.errors import NotFound, ValidationFailed
from actionchat.events.store import EventStore
from actionchat.events.types import SETTINGS_UPDATED

ALLOWED_SETTINGS_KEYS = ("openai_api_key", "anthropic_api_key", "ollama_base_url")
SECRET_KEYS = ("openai_api_key", "anthropic_api_key")


def mask_key(value: Optional[str]) -> str:
    """First 8 + "..." + last 4 for long keys, "***" for short ones, "" when absent."""
    if not value:
        return ""
    if len(value) < 16:
        return "***"
    return f"{value[:8]}...{value[-4:]}"


def masked_settings(raw: Optional[dict]) -> dict:
    raw = raw or {}
    return {
        "openai_api_key": mask_key(raw.get("openai_api_key")),
        "anthropic_api_key": mask_key(raw.get("anthropic_api_key")),
        "ollama_base_url": raw.get("ollama_base_url") or "",
        "has_openai_key": bool(raw.get("openai_api_key")),
        "has_anthropic_key": bool(raw.get("anthropic_api_key")),
    }


def merge_settings(current: Optional[dict], incoming: dict[str, Any]) -> dict:
    """Apply allowlisted keys from incoming onto a copy of current.

    Unknown keys are ignored silently; "" or None deletes the key.
    """
    merged = dict(current or {})
    for key in ALLOWED_SETTINGS_KEYS:
        if key not in incoming:
            continue
        value = incoming[key]
        if value is None or value == "":
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


class SettingsService:
    """Business logic for org settings."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = EventStore(db)

    async def get_org(self, org_id: uuid.UUID) -> Organization:
        org = await self.db.get(Organization, org_id)
        if not org:
            raise NotFound("Organization not found")
        return org

    async def update(
        self,
        org_id: uuid.UUID,
        org_name: Optional[str],
        incoming: Optional[dict],
        actor: str,
    ) -> Organization:
        """Rename the org and/or merge settings. Nothing to do → 400."""
        if org_name is None and incoming is None:
            raise ValidationFailed("No fields to update")
        if org_name is not None and not org_name.strip():
            raise ValidationFailed("Organization name cannot be empty")
        for key in ALLOWED_SETTINGS_KEYS:
            value = (incoming or {}).get(key)
            if value is not None and not isinstance(value, str):
                raise ValidationFailed(f"{key} must be a string")

        org = await self.get_org(org_id)
        changed: list[str] = []
        if org_name is not None:
            org.name = org_name.strip()
            changed.append("org_name")
        if incoming is not None:
            org.settings = merge_settings(org.settings, incoming)
            changed.extend(k for k in ALLOWED_SETTINGS_KEYS if k in incoming)

        # Only key names are recorded, never the values.
        await self.events.append(
            org_id=org_id,
            stream_id=f"org:{org_id}",
            event_type=SETTINGS_UPDATED,
            data={"fields": changed},
            actor=actor,
        )
        await self.db.commit()
        return org
