"""ActionChat CLI — manage agents, sources, and API keys from a terminal.

Usage:
    actionchat login you@acme.com                 # Print an access token
    actionchat agents                             # List agents in your org
    actionchat agent-create "Support bot" -T 0.3  # Create an agent
    actionchat sources                            # List sources with tool counts
    actionchat source-import petstore.json        # Register an OpenAPI source
    actionchat source-sync <source-id>            # Re-parse and reconcile tools
    actionchat parse-spec petstore.json           # Preview tools locally, no server
    actionchat keys                               # List API keys
    actionchat key-create "CI"                    # Mint a key (shown once)
    actionchat key-revoke <key-id>                # Revoke a key
    actionchat activity                           # Recent org activity

Auth comes from ACTIONCHAT_TOKEN (a JWT access token or an ac_ API key);
ACTIONCHAT_ORG_ID selects the org when you belong to several.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

from actionchat import __version__
from actionchat.tools.openapi import OpenApiError, parse_openapi_spec

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("ACTIONCHAT_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the ActionChat backend."""
    headers = {}
    token = os.environ.get("ACTIONCHAT_TOKEN")
    if token:
        headers["Authorization"] = f"Bearer {token}"
    cookies = {}
    org_id = os.environ.get("ACTIONCHAT_ORG_ID")
    if org_id:
        cookies["org_id"] = org_id
    return httpx.AsyncClient(
        base_url=_api_url(), headers=headers, cookies=cookies, timeout=30.0
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _check(r: httpx.Response) -> dict:
    """Return the JSON body, or print the API's error and exit 1."""
    if r.is_success:
        return r.json()
    try:
        body = r.json()
        message = body.get("error", r.text)
        details = body.get("details")
    except ValueError:
        message, details = r.text, None
    click.secho(f"Error ({r.status_code}): {message}", fg="red", err=True)
    if details:
        click.echo(f"  {_pretty_json(details)}", err=True)
    sys.exit(1)


def _pretty_json(data) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _risk_color(level: str) -> str:
    return {"safe": "green", "moderate": "yellow", "dangerous": "red"}.get(level, "white")


def _load_json_file(path: str) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        click.secho(f"Cannot read {path}: {e}", fg="red", err=True)
        sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="actionchat")
def main():
    """ActionChat — agents that call your APIs."""


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@main.command()
@click.argument("email")
@click.password_option(confirmation_prompt=False)
def login(email: str, password: str):
    """Log in and print an access token (export it as ACTIONCHAT_TOKEN)."""
    _run(_login_impl(email, password))


async def _login_impl(email: str, password: str):
    async with _client() as c:
        r = await c.post("/api/v1/auth/login", json={"email": email, "password": password})
        tokens = _check(r)
    click.echo(tokens["access_token"])


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------


@main.command()
def agents():
    """List agents in the current org."""
    _run(_agents_impl())


async def _agents_impl():
    async with _client() as c:
        data = _check(await c.get("/api/v1/agents"))

    rows = data["agents"]
    if not rows:
        click.echo("No agents found.")
        return
    click.secho(f"Agents ({len(rows)}):", bold=True)
    _print_table(
        [
            {
                **a,
                "id": a["id"][:8],
                "model": f"{a['model_provider']}/{a['model_name']}",
                "state": "active" if a["is_active"] else "inactive",
            }
            for a in rows
        ],
        [
            ("ID", "id", 8),
            ("NAME", "name", 24),
            ("MODEL", "model", 24),
            ("TEMP", "temperature", 5),
            ("SOURCES", "source_count", 7),
            ("STATE", "state", 8),
        ],
    )


@main.command("agent-create")
@click.argument("name")
@click.option("--description", "-d", default="", help="What the agent is for")
@click.option("--provider", "-p", type=click.Choice(["openai", "anthropic", "ollama"]))
@click.option("--model", "-m", help="Model name (default: server default)")
@click.option("--temperature", "-T", type=float, help="0.0 – 2.0 (clamped)")
@click.option("--source", "-s", "sources", multiple=True, help="Source UUID to link")
def agent_create(name: str, description: str, provider: Optional[str],
                 model: Optional[str], temperature: Optional[float], sources: tuple):
    """Create an agent (admin)."""
    body: dict = {"name": name, "description": description}
    if provider:
        body["model_provider"] = provider
    if model:
        body["model_name"] = model
    if temperature is not None:
        body["temperature"] = temperature
    if sources:
        body["source_links"] = [{"source_id": s} for s in sources]
    _run(_agent_create_impl(body))


async def _agent_create_impl(body: dict):
    async with _client() as c:
        data = _check(await c.post("/api/v1/agents", json=body))
    agent = data["agent"]
    click.secho(f"Agent created: {agent['name']} ({agent['id']})", fg="green")
    click.echo(
        f"  model={agent['model_provider']}/{agent['model_name']}  "
        f"temperature={agent['temperature']}  sources={agent['source_count']}"
    )


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


@main.command()
def sources():
    """List API sources with their active tool counts."""
    _run(_sources_impl())


async def _sources_impl():
    async with _client() as c:
        data = _check(await c.get("/api/v1/sources"))

    rows = data["sources"]
    if not rows:
        click.echo("No sources found.")
        return
    _print_table(
        [{**s, "id": s["id"][:8]} for s in rows],
        [
            ("ID", "id", 8),
            ("NAME", "name", 24),
            ("TYPE", "source_type", 8),
            ("TOOLS", "tool_count", 5),
            ("BASE URL", "base_url", 40),
        ],
    )


@main.command("source-import")
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--name", "-n", help="Source name (default: the document's title)")
@click.option("--base-url", help="Override the document's first server URL")
def source_import(spec_file: str, name: Optional[str], base_url: Optional[str]):
    """Register an OpenAPI 3.x document as a source (admin)."""
    doc = _load_json_file(spec_file)
    body = {
        "name": name or (doc.get("info") or {}).get("title") or spec_file,
        "source_type": "openapi",
        "spec_content": doc,
    }
    if base_url:
        body["base_url"] = base_url
    _run(_source_import_impl(body))


async def _source_import_impl(body: dict):
    async with _client() as c:
        data = _check(await c.post("/api/v1/sources", json=body))
    source = data["source"]
    click.secho(
        f"Source created: {source['name']} ({source['id']}) with "
        f"{source['tool_count']} tool(s)",
        fg="green",
    )


@main.command("source-sync")
@click.argument("source_id")
@click.option("--spec-file", "-f", type=click.Path(exists=True, dir_okay=False),
              help="Replace the stored document before syncing")
def source_sync(source_id: str, spec_file: Optional[str]):
    """Re-parse an OpenAPI source and reconcile its tools (admin)."""
    body = {"spec_content": _load_json_file(spec_file)} if spec_file else {}
    _run(_source_sync_impl(source_id, body))


async def _source_sync_impl(source_id: str, body: dict):
    async with _client() as c:
        data = _check(await c.post(f"/api/v1/sources/{source_id}/sync", json=body))
    if not data["changed"]:
        click.echo(data.get("message") or "Spec unchanged")
        return
    click.secho(
        f"Synced: {data['inserted']} new, {data['updated']} updated, "
        f"{data['removed']} deactivated",
        fg="green",
    )


@main.command("parse-spec")
@click.argument("spec_file", type=click.Path(exists=True, dir_okay=False))
def parse_spec(spec_file: str):
    """Preview the tools an OpenAPI document would produce (offline)."""
    try:
        parsed = parse_openapi_spec(_load_json_file(spec_file))
    except OpenApiError as e:
        click.secho(f"Invalid spec: {e}", fg="red", err=True)
        sys.exit(1)

    meta = parsed.source_meta
    click.secho(f"{meta.title} {meta.version}".strip(), bold=True)
    click.echo(f"  base_url: {meta.base_url or '—'}")
    click.echo(f"  hash:     {meta.spec_hash[:16]}")
    click.echo()
    for tool in parsed.tools:
        risk = click.style(tool.risk_level.ljust(9), fg=_risk_color(tool.risk_level))
        click.echo(f"  {tool.method:7s} {risk} {tool.path}  ({tool.operation_id})")
    click.echo()
    click.echo(f"{len(parsed.tools)} tool(s)")


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


@main.command()
def keys():
    """List API keys (admin). Raw keys are never shown here."""
    _run(_keys_impl())


async def _keys_impl():
    async with _client() as c:
        data = _check(await c.get("/api/v1/api-keys"))

    rows = data["keys"]
    if not rows:
        click.echo("No API keys.")
        return
    _print_table(
        [
            {
                **k,
                "state": "active" if k["is_active"] else "revoked",
                "last_used": k.get("last_used_at") or "never",
            }
            for k in rows
        ],
        [
            ("ID", "id", 36),
            ("NAME", "name", 20),
            ("PREFIX", "key_prefix", 14),
            ("STATE", "state", 8),
            ("LAST USED", "last_used", 20),
        ],
    )


@main.command("key-create")
@click.argument("name")
@click.option("--agent", "-a", "agent_ids", multiple=True, help="Restrict to agent UUID")
@click.option("--expires-at", help="ISO-8601 expiry, e.g. 2027-01-01T00:00:00Z")
def key_create(name: str, agent_ids: tuple, expires_at: Optional[str]):
    """Mint an API key (admin). The key is printed once."""
    body: dict = {"name": name}
    if agent_ids:
        body["agent_ids"] = list(agent_ids)
    if expires_at:
        body["expires_at"] = expires_at
    _run(_key_create_impl(body))


async def _key_create_impl(body: dict):
    async with _client() as c:
        data = _check(await c.post("/api/v1/api-keys", json=body))
    click.secho(data["raw_key"], bold=True)
    click.secho(data["warning"], fg="yellow", err=True)


@main.command("key-revoke")
@click.argument("key_id")
def key_revoke(key_id: str):
    """Revoke an API key (admin)."""
    _run(_key_revoke_impl(key_id))


async def _key_revoke_impl(key_id: str):
    async with _client() as c:
        _check(await c.request("DELETE", "/api/v1/api-keys", json={"key_id": key_id}))
    click.secho(f"Revoked {key_id}", fg="green")


# ---------------------------------------------------------------------------
# Activity
# ---------------------------------------------------------------------------


@main.command()
@click.option("--limit", "-l", default=20, help="Max events (1-100)")
@click.option("--type", "-t", "event_type", help="Only this event type")
def activity(limit: int, event_type: Optional[str]):
    """Show recent activity in the org."""
    _run(_activity_impl(limit, event_type))


async def _activity_impl(limit: int, event_type: Optional[str]):
    params: dict = {"limit": limit}
    if event_type:
        params["type"] = event_type
    async with _client() as c:
        data = _check(await c.get("/api/v1/activity", params=params))

    events = data["events"]
    if not events:
        click.echo("No activity.")
        return
    for e in events:
        when = str(e["created_at"])[:19].replace("T", " ")
        click.echo(f"  {when}  {e['type']:24s}  {e['stream_id']}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
