"""Pydantic schemas for API sources and their tools."""

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

SourceType = Literal["openapi", "manual", "mcp"]
AuthType = Literal["bearer", "api_key", "basic", "passthrough", "none", "header"]
RiskLevel = Literal["safe", "moderate", "dangerous"]


# ─── Sources ────────────────────────────────────────────

class SourceCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    base_url: Optional[str] = None
    source_type: SourceType = "openapi"
    auth_type: AuthType = "passthrough"
    auth_config: dict = Field(default_factory=dict)
    spec_content: Any = None  # OpenAPI document, as object or JSON string
    spec_url: Optional[str] = None


class SourceUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    base_url: Optional[str] = None
    spec_url: Optional[str] = None
    auth_type: Optional[AuthType] = None
    auth_config: Optional[dict] = None
    is_active: Optional[bool] = None


class SourceRead(BaseModel):
    """A source as the API shows it: never with spec_content."""

    id: uuid.UUID
    org_id: uuid.UUID
    name: str
    description: Optional[str] = None
    source_type: str
    spec_url: Optional[str] = None
    spec_hash: Optional[str] = None
    base_url: Optional[str] = None
    auth_type: str
    auth_config: Optional[dict] = None  # admins only
    is_active: bool
    has_spec: bool = False
    tool_count: int = 0
    last_synced_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# ─── Tools ──────────────────────────────────────────────

class ToolCreate(BaseModel):
    name: Optional[str] = None
    method: Optional[str] = None
    path: Optional[str] = None
    description: Optional[str] = None
    parameters: Optional[dict] = None
    request_body: Optional[dict] = None
    risk_level: Optional[str] = None
    requires_confirmation: Optional[bool] = None
    tags: Optional[list[str]] = None


class ToolUpdate(BaseModel):
    tool_id: Optional[uuid.UUID] = None
    name: Optional[str] = None
    description: Optional[str] = None
    method: Optional[str] = None
    path: Optional[str] = None
    parameters: Optional[dict] = None
    request_body: Optional[dict] = None
    risk_level: Optional[str] = None
    requires_confirmation: Optional[bool] = None
    tags: Optional[list[str]] = None
    is_active: Optional[bool] = None


class ToolDelete(BaseModel):
    tool_id: Optional[uuid.UUID] = None


class ToolRead(BaseModel):
    id: uuid.UUID
    source_id: uuid.UUID
    operation_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    method: str
    path: str
    parameters: Optional[dict] = None
    request_body: Optional[dict] = None
    risk_level: str
    requires_confirmation: bool
    tags: list = Field(default_factory=list)
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ─── Sync + credentials ─────────────────────────────────

class SourceSyncRequest(BaseModel):
    spec_content: Any = None  # replaces the stored document when sent


class CredentialsIn(BaseModel):
    """Fields by auth_type: bearer → token; api_key → api_key (+header_name);
    basic → username, password; header → header_name, header_value."""

    token: Optional[str] = None
    api_key: Optional[str] = None
    header_name: Optional[str] = None
    header_value: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None


# ─── Envelopes ──────────────────────────────────────────

class SourceListResponse(BaseModel):
    ok: bool = True
    sources: list[SourceRead]


class SourceResponse(BaseModel):
    ok: bool = True
    source: SourceRead


class SourceDetailResponse(BaseModel):
    ok: bool = True
    source: SourceRead
    tools: list[ToolRead]


class ToolListResponse(BaseModel):
    ok: bool = True
    tools: list[ToolRead]


class ToolResponse(BaseModel):
    ok: bool = True
    tool: ToolRead


class SourceSyncResponse(BaseModel):
    ok: bool = True
    changed: bool
    message: Optional[str] = None
    inserted: int = 0
    updated: int = 0
    removed: int = 0
    tool_count: int = 0


class CredentialStatus(BaseModel):
    ok: bool = True
    source_id: uuid.UUID
    auth_type: str
    has_credentials: bool
    credentials_updated_at: Optional[datetime] = None
