"""Pydantic schemas for org API keys.

Learn: ApiKeyRead has no raw_key and no key_hash field at all, so a
listing cannot leak either even by accident. raw_key appears only on
ApiKeyCreated, which is returned exactly once.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ApiKeyCreate(BaseModel):
    name: Optional[str] = None
    agent_ids: Optional[list[uuid.UUID]] = None
    expires_at: Optional[datetime] = None


class ApiKeyRevoke(BaseModel):
    key_id: Optional[uuid.UUID] = None


class ApiKeyRead(BaseModel):
    id: uuid.UUID
    name: str
    key_prefix: str
    agent_ids: Optional[list[str]] = None
    is_active: bool
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    created_by: uuid.UUID
    created_at: datetime

    model_config = {"from_attributes": True}


class ApiKeyListResponse(BaseModel):
    ok: bool = True
    keys: list[ApiKeyRead]


class ApiKeyCreated(BaseModel):
    ok: bool = True
    key: ApiKeyRead
    raw_key: str
    warning: str = "Save this key now. It cannot be retrieved again."
