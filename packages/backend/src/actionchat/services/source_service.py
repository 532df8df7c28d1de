"""Source service — API sources and the tools derived from them.

Learn: A source is registered once. For OpenAPI sources the document is
parsed at registration time (see tools/openapi.py) and one tool row is
written per operation. Manual sources start empty and get tools one at
a time through the tools endpoints.

Responses never carry spec_content (it can be megabytes); they carry
has_spec instead. auth_config is only shown to admins.

POST /sources/{id}/sync re-reads the document later and reconciles the
tools by operation_id. Each user can also keep their own credentials for
a source; those are write-only through the API.
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from actionchat.db.models import AgentSource, ApiSource, SourceCredential, Tool
from actionchat.errors import NotFound, ValidationFailed
from actionchat.events.store import EventStore
from actionchat.events.types import (
    SOURCE_CREATED,
    SOURCE_CREDENTIALS_DELETED,
    SOURCE_CREDENTIALS_SAVED,
    SOURCE_DELETED,
    SOURCE_SYNCED,
    SOURCE_UPDATED,
    TOOL_CREATED,
    TOOL_DELETED,
    TOOL_UPDATED,
)
from actionchat.schemas.source import CredentialsIn, SourceCreate, ToolCreate
from actionchat.tools.openapi import OpenApiError, ParsedSpec, parse_openapi_spec

logger = structlog.get_logger()

SPEC_FETCH_TIMEOUT = 15.0

VALID_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
VALID_RISK_LEVELS = ("safe", "moderate", "dangerous")
SAFE_METHODS = ("GET", "HEAD", "OPTIONS")

SOURCE_UPDATABLE_FIELDS = (
    "name",
    "description",
    "base_url",
    "spec_url",
    "auth_type",
    "auth_config",
    "is_active",
)
TOOL_UPDATABLE_FIELDS = (
    "name",
    "description",
    "method",
    "path",
    "parameters",
    "request_body",
    "risk_level",
    "requires_confirmation",
    "tags",
    "is_active",
)


def source_view(
    source: ApiSource, tool_count: int = 0, include_auth_config: bool = False
) -> dict:
    """Shape a source row for responses: no spec_content, optional auth_config."""
    return {
        "id": source.id,
        "org_id": source.org_id,
        "name": source.name,
        "description": source.description,
        "source_type": source.source_type,
        "spec_url": source.spec_url,
        "spec_hash": source.spec_hash,
        "base_url": source.base_url,
        "auth_type": source.auth_type,
        "auth_config": source.auth_config if include_auth_config else None,
        "is_active": source.is_active,
        "has_spec": source.spec_content is not None,
        "tool_count": tool_count,
        "last_synced_at": source.last_synced_at,
        "created_at": source.created_at,
        "updated_at": source.updated_at,
    }


def active_tool_count(tools: list[Tool]) -> int:
    return sum(1 for t in tools if t.is_active)


def default_risk_level(method: str) -> str:
    """Manual tools: read-only methods are safe, anything else is dangerous."""
    return "safe" if method.upper() in SAFE_METHODS else "dangerous"


def credentials_for(auth_type: str, body: CredentialsIn) -> dict:
    """Pick and check the fields a user must supply for this auth_type."""
    if auth_type == "bearer":
        if not body.token:
            raise ValidationFailed("token is required for bearer auth")
        return {"token": body.token}
    if auth_type == "api_key":
        if not body.api_key:
            raise ValidationFailed("api_key is required")
        return {"api_key": body.api_key, "header_name": body.header_name or "X-API-Key"}
    if auth_type == "basic":
        if not body.username or not body.password:
            raise ValidationFailed("username and password are required")
        return {"username": body.username, "password": body.password}
    if auth_type == "header":
        if not body.header_name or not body.header_value:
            raise ValidationFailed("header_name and header_value are required")
        return {"header_name": body.header_name, "header_value": body.header_value}
    if auth_type in ("none", "passthrough"):
        return {}
    raise ValidationFailed(f"Unknown auth_type: {auth_type}")


async def fetch_spec(url: str) -> Any:
    """Download an OpenAPI document. Failures become 400s, not 500s."""
    try:
        async with httpx.AsyncClient(timeout=SPEC_FETCH_TIMEOUT) as client:
            resp = await client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as e:
        raise ValidationFailed("Failed to fetch spec from URL", details=str(e))
    if resp.status_code >= 400:
        raise ValidationFailed(
            f"Failed to fetch spec from URL: {resp.status_code} {resp.reason_phrase}"
        )
    try:
        return resp.json()
    except ValueError as e:
        raise ValidationFailed("Failed to fetch spec from URL", details=str(e))


class SourceService:
    """Business logic for sources and tools."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = EventStore(db)

    # ─── Sources ────────────────────────────────────────

    async def list_sources(self, org_id: uuid.UUID) -> list[tuple[ApiSource, int]]:
        """Org sources newest first, each with its count of active tools."""
        counts = (
            select(Tool.source_id, func.count(Tool.id).label("n"))
            .where(Tool.is_active.is_(True))
            .group_by(Tool.source_id)
            .subquery()
        )
        result = await self.db.execute(
            select(ApiSource, func.coalesce(counts.c.n, 0))
            .outerjoin(counts, counts.c.source_id == ApiSource.id)
            .where(ApiSource.org_id == org_id)
            .order_by(ApiSource.created_at.desc(), ApiSource.id)
        )
        return [(source, int(n)) for source, n in result.all()]

    async def get_source(self, org_id: uuid.UUID, source_id: uuid.UUID) -> ApiSource:
        result = await self.db.execute(
            select(ApiSource).where(
                ApiSource.id == source_id, ApiSource.org_id == org_id
            )
        )
        source = result.scalars().first()
        if not source:
            raise NotFound("Source not found")
        return source

    async def create_source(
        self, org_id: uuid.UUID, body: SourceCreate, actor: str
    ) -> tuple[ApiSource, int]:
        """Register a source; derive tools when it carries an OpenAPI document."""
        name = (body.name or "").strip()
        if not name:
            raise ValidationFailed("Name is required")

        spec_doc = body.spec_content
        if isinstance(spec_doc, str):
            try:
                spec_doc = json.loads(spec_doc)
            except json.JSONDecodeError as e:
                raise ValidationFailed("Failed to parse OpenAPI spec", details=e.msg)
        if body.spec_url and not spec_doc and body.source_type == "openapi":
            spec_doc = await fetch_spec(body.spec_url)

        parsed: Optional[ParsedSpec] = None
        if spec_doc and body.source_type == "openapi":
            try:
                parsed = parse_openapi_spec(spec_doc)
            except OpenApiError as e:
                raise ValidationFailed("Failed to parse OpenAPI spec", details=str(e))

        meta = parsed.source_meta if parsed else None
        source = ApiSource(
            org_id=org_id,
            name=name,
            description=body.description or (meta.description if meta else ""),
            base_url=body.base_url or (meta.base_url if meta else ""),
            source_type=body.source_type,
            auth_type=body.auth_type,
            auth_config=body.auth_config,
            spec_content=spec_doc or None,
            spec_url=body.spec_url or None,
            spec_hash=meta.spec_hash if meta else None,
            last_synced_at=datetime.now(timezone.utc) if spec_doc else None,
        )
        self.db.add(source)
        await self.db.flush()

        tool_count = 0
        if parsed:
            for parsed_tool in parsed.tools:
                self.db.add(
                    Tool(
                        source_id=source.id,
                        operation_id=parsed_tool.operation_id,
                        name=parsed_tool.name,
                        description=parsed_tool.description,
                        method=parsed_tool.method,
                        path=parsed_tool.path,
                        parameters=parsed_tool.parameters or {},
                        request_body=parsed_tool.request_body,
                        risk_level=parsed_tool.risk_level,
                        requires_confirmation=parsed_tool.requires_confirmation,
                        tags=parsed_tool.tags,
                    )
                )
            tool_count = len(parsed.tools)
            await self.db.flush()

        await self.events.append(
            org_id=org_id,
            stream_id=f"source:{source.id}",
            event_type=SOURCE_CREATED,
            data={
                "name": source.name,
                "source_type": source.source_type,
                "tool_count": tool_count,
            },
            actor=actor,
        )
        await self.db.commit()

        logger.info(
            "source.created",
            source_id=str(source.id),
            org_id=str(org_id),
            tool_count=tool_count,
        )
        return source, tool_count

    async def update_source(
        self,
        org_id: uuid.UUID,
        source_id: uuid.UUID,
        updates: dict,
        actor: str,
    ) -> ApiSource:
        changes = {k: v for k, v in updates.items() if k in SOURCE_UPDATABLE_FIELDS}
        if not changes:
            raise ValidationFailed("No fields to update")
        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationFailed("Name is required")
            changes["name"] = name
        for required in ("auth_type", "is_active"):
            if required in changes and changes[required] is None:
                raise ValidationFailed(f"{required} cannot be null")
        if "auth_config" in changes and changes["auth_config"] is None:
            changes["auth_config"] = {}

        source = await self.get_source(org_id, source_id)
        for key, value in changes.items():
            setattr(source, key, value)

        await self.events.append(
            org_id=org_id,
            stream_id=f"source:{source.id}",
            event_type=SOURCE_UPDATED,
            data={"fields": sorted(changes)},
            actor=actor,
        )
        await self.db.commit()
        await self.db.refresh(source)
        return source

    async def delete_source(
        self, org_id: uuid.UUID, source_id: uuid.UUID, actor: str
    ) -> None:
        """Delete a source together with its tools and agent links."""
        source = await self.get_source(org_id, source_id)
        await self.db.execute(delete(Tool).where(Tool.source_id == source.id))
        await self.db.execute(
            delete(AgentSource).where(AgentSource.source_id == source.id)
        )
        await self.db.execute(
            delete(SourceCredential).where(SourceCredential.source_id == source.id)
        )
        await self.db.delete(source)
        await self.events.append(
            org_id=org_id,
            stream_id=f"source:{source_id}",
            event_type=SOURCE_DELETED,
            data={"name": source.name},
            actor=actor,
        )
        await self.db.commit()

    # ─── Tools ──────────────────────────────────────────

    async def list_tools(
        self, org_id: uuid.UUID, source_id: uuid.UUID
    ) -> list[Tool]:
        source = await self.get_source(org_id, source_id)
        result = await self.db.execute(
            select(Tool)
            .where(Tool.source_id == source.id)
            .order_by(Tool.method, Tool.path)
        )
        return list(result.scalars().all())

    async def get_tool(
        self, org_id: uuid.UUID, source_id: uuid.UUID, tool_id: Optional[uuid.UUID]
    ) -> Tool:
        if tool_id is None:
            raise ValidationFailed("tool_id is required")
        result = await self.db.execute(
            select(Tool)
            .join(ApiSource, ApiSource.id == Tool.source_id)
            .where(
                Tool.id == tool_id,
                Tool.source_id == source_id,
                ApiSource.org_id == org_id,
            )
        )
        tool = result.scalars().first()
        if not tool:
            raise NotFound("Tool not found")
        return tool

    async def create_tool(
        self,
        org_id: uuid.UUID,
        source_id: uuid.UUID,
        body: ToolCreate,
        actor: str,
    ) -> Tool:
        """Add a hand-written tool. Only manual sources accept these."""
        source = await self.get_source(org_id, source_id)
        if source.source_type != "manual":
            raise ValidationFailed(
                "Can only add tools to manual sources. Use sync for OpenAPI sources."
            )
        if not body.name or not body.method or not body.path:
            raise ValidationFailed("name, method, and path are required")

        method = body.method.upper()
        if method not in VALID_METHODS:
            raise ValidationFailed(f"method must be one of: {', '.join(VALID_METHODS)}")
        risk = body.risk_level or default_risk_level(method)
        if risk not in VALID_RISK_LEVELS:
            raise ValidationFailed(
                f"risk_level must be one of: {', '.join(VALID_RISK_LEVELS)}"
            )

        tool = Tool(
            source_id=source.id,
            name=body.name,
            method=method,
            path=body.path,
            description=body.description or None,
            parameters=body.parameters or {},
            request_body=body.request_body or None,
            risk_level=risk,
            requires_confirmation=(
                body.requires_confirmation
                if body.requires_confirmation is not None
                else risk == "dangerous"
            ),
            tags=body.tags or [],
            is_active=True,
        )
        self.db.add(tool)
        await self.db.flush()

        await self.events.append(
            org_id=org_id,
            stream_id=f"source:{source.id}",
            event_type=TOOL_CREATED,
            data={"tool_id": str(tool.id), "method": method, "path": tool.path},
            actor=actor,
        )
        await self.db.commit()
        return tool

    async def update_tool(
        self,
        org_id: uuid.UUID,
        source_id: uuid.UUID,
        tool_id: Optional[uuid.UUID],
        updates: dict,
        actor: str,
    ) -> Tool:
        tool = await self.get_tool(org_id, source_id, tool_id)
        changes = {k: v for k, v in updates.items() if k in TOOL_UPDATABLE_FIELDS}
        if not changes:
            raise ValidationFailed("No valid fields to update")

        if changes.get("method"):
            changes["method"] = changes["method"].upper()
            if changes["method"] not in VALID_METHODS:
                raise ValidationFailed(
                    f"method must be one of: {', '.join(VALID_METHODS)}"
                )
        if "risk_level" in changes and changes["risk_level"] not in VALID_RISK_LEVELS:
            raise ValidationFailed(
                f"risk_level must be one of: {', '.join(VALID_RISK_LEVELS)}"
            )
        for required in ("name", "method", "path", "requires_confirmation", "is_active"):
            if required in changes and changes[required] is None:
                raise ValidationFailed(f"{required} cannot be null")
        if "tags" in changes and changes["tags"] is None:
            changes["tags"] = []

        for key, value in changes.items():
            setattr(tool, key, value)

        await self.events.append(
            org_id=org_id,
            stream_id=f"source:{source_id}",
            event_type=TOOL_UPDATED,
            data={"tool_id": str(tool.id), "fields": sorted(changes)},
            actor=actor,
        )
        await self.db.commit()
        await self.db.refresh(tool)
        return tool

    async def delete_tool(
        self,
        org_id: uuid.UUID,
        source_id: uuid.UUID,
        tool_id: Optional[uuid.UUID],
        actor: str,
    ) -> None:
        tool = await self.get_tool(org_id, source_id, tool_id)
        await self.db.delete(tool)
        await self.events.append(
            org_id=org_id,
            stream_id=f"source:{source_id}",
            event_type=TOOL_DELETED,
            data={"tool_id": str(tool_id)},
            actor=actor,
        )
        await self.db.commit()

    # ─── Sync ───────────────────────────────────────────

    async def sync_source(
        self,
        org_id: uuid.UUID,
        source_id: uuid.UUID,
        spec_content: Any,
        actor: str,
    ) -> dict:
        """Re-parse an OpenAPI source and reconcile its tools.

        Learn: The document comes from the request body, else spec_url,
        else the stored spec_content. Tools are matched by operation_id:
        matches are rewritten and reactivated, new operations become new
        tools, and tools whose operation disappeared are deactivated
        rather than deleted so agent history keeps pointing at something.
        An unchanged spec_hash is a no-op unless a document was sent.
        """
        source = await self.get_source(org_id, source_id)
        if source.source_type != "openapi":
            raise ValidationFailed("Only OpenAPI sources can be synced")

        if isinstance(spec_content, str):
            try:
                spec_content = json.loads(spec_content)
            except json.JSONDecodeError as e:
                raise ValidationFailed("Failed to parse OpenAPI spec", details=e.msg)

        provided = bool(spec_content)
        fetched = False
        spec_doc = spec_content or None
        if spec_doc is None and source.spec_url:
            spec_doc = await fetch_spec(source.spec_url)
            fetched = True
        if spec_doc is None:
            spec_doc = source.spec_content
        if not spec_doc:
            raise ValidationFailed(
                "No spec content to sync. Add a spec URL or upload a spec."
            )

        try:
            parsed = parse_openapi_spec(spec_doc)
        except OpenApiError as e:
            raise ValidationFailed("Failed to parse OpenAPI spec", details=str(e))

        meta = parsed.source_meta
        if meta.spec_hash == source.spec_hash and not provided:
            return {
                "changed": False,
                "message": "Spec unchanged, no sync needed",
                "inserted": 0,
                "updated": 0,
                "removed": 0,
                "tool_count": 0,
            }

        source.spec_hash = meta.spec_hash
        source.last_synced_at = datetime.now(timezone.utc)
        if provided or fetched:
            source.spec_content = spec_doc
        if meta.base_url and not source.base_url:
            source.base_url = meta.base_url

        result = await self.db.execute(select(Tool).where(Tool.source_id == source.id))
        existing = {t.operation_id: t for t in result.scalars().all() if t.operation_id}

        inserted = updated = 0
        seen: set[str] = set()
        for parsed_tool in parsed.tools:
            seen.add(parsed_tool.operation_id)
            fields = {
                "name": parsed_tool.name,
                "description": parsed_tool.description,
                "method": parsed_tool.method,
                "path": parsed_tool.path,
                "parameters": parsed_tool.parameters or {},
                "request_body": parsed_tool.request_body,
                "risk_level": parsed_tool.risk_level,
                "requires_confirmation": parsed_tool.requires_confirmation,
                "tags": parsed_tool.tags,
                "is_active": True,
            }
            tool = existing.get(parsed_tool.operation_id)
            if tool is None:
                self.db.add(
                    Tool(source_id=source.id, operation_id=parsed_tool.operation_id, **fields)
                )
                inserted += 1
            else:
                for key, value in fields.items():
                    setattr(tool, key, value)
                updated += 1

        removed = 0
        for operation_id, tool in existing.items():
            if operation_id not in seen and tool.is_active:
                tool.is_active = False
                removed += 1
        await self.db.flush()

        summary = {
            "inserted": inserted,
            "updated": updated,
            "removed": removed,
            "tool_count": inserted + updated,
        }
        await self.events.append(
            org_id=org_id,
            stream_id=f"source:{source.id}",
            event_type=SOURCE_SYNCED,
            data={"spec_hash": meta.spec_hash, **summary},
            actor=actor,
        )
        await self.db.commit()

        logger.info("source.synced", source_id=str(source.id), org_id=str(org_id), **summary)
        return {"changed": True, "message": None, **summary}

    # ─── Per-user credentials ───────────────────────────

    async def _get_credential(
        self, user_id: uuid.UUID, source_id: uuid.UUID
    ) -> Optional[SourceCredential]:
        result = await self.db.execute(
            select(SourceCredential).where(
                SourceCredential.user_id == user_id,
                SourceCredential.source_id == source_id,
            )
        )
        return result.scalars().first()

    async def credential_status(
        self, org_id: uuid.UUID, source_id: uuid.UUID, user_id: uuid.UUID
    ) -> dict:
        """Whether the caller has stored credentials; never the values."""
        source = await self.get_source(org_id, source_id)
        credential = await self._get_credential(user_id, source.id)
        return {
            "source_id": source.id,
            "auth_type": source.auth_type,
            "has_credentials": credential is not None,
            "credentials_updated_at": credential.updated_at if credential else None,
        }

    async def save_credentials(
        self,
        org_id: uuid.UUID,
        source_id: uuid.UUID,
        user_id: uuid.UUID,
        body: CredentialsIn,
        actor: str,
    ) -> None:
        source = await self.get_source(org_id, source_id)
        credentials = credentials_for(source.auth_type, body)

        credential = await self._get_credential(user_id, source.id)
        if credential:
            credential.credentials = credentials
        else:
            self.db.add(
                SourceCredential(
                    user_id=user_id, source_id=source.id, credentials=credentials
                )
            )
        await self.db.flush()

        await self.events.append(
            org_id=org_id,
            stream_id=f"source:{source.id}",
            event_type=SOURCE_CREDENTIALS_SAVED,
            data={"user_id": str(user_id), "auth_type": source.auth_type},
            actor=actor,
        )
        await self.db.commit()

    async def delete_credentials(
        self,
        org_id: uuid.UUID,
        source_id: uuid.UUID,
        user_id: uuid.UUID,
        actor: str,
    ) -> None:
        source = await self.get_source(org_id, source_id)
        await self.db.execute(
            delete(SourceCredential).where(
                SourceCredential.user_id == user_id,
                SourceCredential.source_id == source.id,
            )
        )
        await self.events.append(
            org_id=org_id,
            stream_id=f"source:{source.id}",
            event_type=SOURCE_CREDENTIALS_DELETED,
            data={"user_id": str(user_id)},
            actor=actor,
        )
        await self.db.commit()
