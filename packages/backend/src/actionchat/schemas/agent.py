"""Pydantic schemas for agents and their source links.

Learn: Inputs are deliberately lenient where the API clamps or defaults
(temperature accepts anything and is clamped by the service; a missing
name is reported as "Name is required" rather than a schema error).
Outputs are strict Read models built from ORM rows.
"""

import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

ModelProvider = Literal["openai", "anthropic", "ollama"]
LinkPermission = Literal["read", "read_write"]


# ─── Requests ───────────────────────────────────────────

class SourceLinkIn(BaseModel):
    source_id: uuid.UUID
    permission: LinkPermission = "read"


class AgentCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    model_provider: Optional[ModelProvider] = None
    model_name: Optional[str] = None
    temperature: Any = None
    settings: Optional[dict] = None
    source_links: list[SourceLinkIn] = Field(default_factory=list)


class AgentUpdate(BaseModel):
    """Every field optional; only the ones sent are applied."""

    name: Optional[str] = None
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    model_provider: Optional[ModelProvider] = None
    model_name: Optional[str] = None
    temperature: Any = None
    is_active: Optional[bool] = None
    settings: Optional[dict] = None


class SourceLinkRequest(BaseModel):
    source_id: Optional[uuid.UUID] = None
    permission: LinkPermission = "read"


class SourceUnlinkRequest(BaseModel):
    source_id: Optional[uuid.UUID] = None


class AccessGrantRequest(BaseModel):
    member_id: Optional[uuid.UUID] = None
    access_level: Optional[str] = "operator"  # checked by the service


class AccessRevokeRequest(BaseModel):
    member_id: Optional[uuid.UUID] = None


# ─── Responses ──────────────────────────────────────────

class AgentRead(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    name: str
    description: Optional[str] = None
    system_prompt: str
    model_provider: str
    model_name: str
    temperature: float
    is_active: bool
    settings: dict = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AgentSummary(AgentRead):
    source_count: int = 0


class AgentSourceRead(BaseModel):
    id: uuid.UUID
    agent_id: uuid.UUID
    source_id: uuid.UUID
    permission: str
    created_at: datetime

    model_config = {"from_attributes": True}


class LinkedSource(BaseModel):
    id: uuid.UUID
    link_id: uuid.UUID
    permission: str
    linked_at: datetime
    name: str
    description: Optional[str] = None
    base_url: Optional[str] = None
    source_type: str
    is_active: bool


class AvailableSource(BaseModel):
    id: uuid.UUID
    name: str
    base_url: Optional[str] = None
    source_type: str
    is_active: bool

    model_config = {"from_attributes": True}


class ProviderStatus(BaseModel):
    ready: bool
    error: Optional[str] = None


class AgentListResponse(BaseModel):
    ok: bool = True
    agents: list[AgentSummary]


class AgentResponse(BaseModel):
    ok: bool = True
    agent: AgentSummary


class AgentDetailResponse(BaseModel):
    ok: bool = True
    agent: AgentRead
    linked_sources: list[LinkedSource]
    available_sources: list[AvailableSource]
    provider: ProviderStatus


class AgentSourceResponse(BaseModel):
    ok: bool = True
    link: AgentSourceRead


# ─── Member access ──────────────────────────────────────

class AgentAccessRead(BaseModel):
    id: uuid.UUID
    member_id: uuid.UUID
    agent_id: uuid.UUID
    access_level: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AccessEntry(BaseModel):
    id: uuid.UUID
    member_id: uuid.UUID
    access_level: str
    created_at: datetime
    user_id: uuid.UUID
    role: str
    email: str


class AvailableMember(BaseModel):
    member_id: uuid.UUID
    user_id: uuid.UUID
    role: str
    email: str
    has_access: bool


class AgentAccessListResponse(BaseModel):
    ok: bool = True
    access: list[AccessEntry]
    available_members: list[AvailableMember]


class AgentAccessResponse(BaseModel):
    ok: bool = True
    access: AgentAccessRead
