"""CLI tests — Click commands against a canned HTTP backend.

Learn: The commands only speak HTTP, so swapping `_client` for one backed
by httpx.MockTransport lets us check what each command sends and prints
without a running server. These tests are sync on purpose: with no
running loop, `_run` goes through plain asyncio.run.
"""

import json

import httpx
import pytest
from click.testing import CliRunner

from actionchat.cli import main as cli

from conftest import PETSTORE


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def backend(monkeypatch):
    """Route the CLI's HTTP calls to a handler; returns the request log."""
    calls: list[httpx.Request] = []
    routes: dict[tuple[str, str], httpx.Response] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        key = (request.method, request.url.path)
        if key not in routes:
            return httpx.Response(404, json={"error": "Not found"})
        return routes[key]

    monkeypatch.setattr(
        cli,
        "_client",
        lambda: httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://test"
        ),
    )
    return routes, calls


# ═══════════════════════════════════════════════════════════
# Client config
# ═══════════════════════════════════════════════════════════


def test_client_reads_env(monkeypatch):
    monkeypatch.setenv("ACTIONCHAT_API_URL", "http://api.example.com/")
    monkeypatch.setenv("ACTIONCHAT_TOKEN", "ac_secret")
    monkeypatch.setenv("ACTIONCHAT_ORG_ID", "org-123")
    client = cli._client()
    assert client.base_url.host == "api.example.com"
    assert client.headers["Authorization"] == "Bearer ac_secret"
    assert client.cookies["org_id"] == "org-123"


# ═══════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════


def test_login_prints_token(runner, backend):
    routes, calls = backend
    routes[("POST", "/api/v1/auth/login")] = httpx.Response(
        200, json={"access_token": "jwt-abc", "refresh_token": "r", "token_type": "bearer"}
    )
    result = runner.invoke(cli.main, ["login", "a@acme.com", "--password", "pw"])
    assert result.exit_code == 0, result.output
    assert result.stdout.strip() == "jwt-abc"
    assert json.loads(calls[0].content) == {"email": "a@acme.com", "password": "pw"}


def test_agents_table(runner, backend):
    routes, _ = backend
    routes[("GET", "/api/v1/agents")] = httpx.Response(
        200,
        json={
            "ok": True,
            "agents": [
                {
                    "id": "1234567890abcdef",
                    "name": "Support bot",
                    "model_provider": "openai",
                    "model_name": "gpt-5-mini",
                    "temperature": 0.7,
                    "source_count": 2,
                    "is_active": True,
                }
            ],
        },
    )
    result = runner.invoke(cli.main, ["agents"])
    assert result.exit_code == 0
    assert "Agents (1):" in result.stdout
    assert "12345678" in result.stdout
    assert "openai/gpt-5-mini" in result.stdout


def test_agents_empty(runner, backend):
    routes, _ = backend
    routes[("GET", "/api/v1/agents")] = httpx.Response(200, json={"ok": True, "agents": []})
    result = runner.invoke(cli.main, ["agents"])
    assert result.exit_code == 0
    assert "No agents found." in result.stdout


def test_agent_create_sends_options(runner, backend):
    routes, calls = backend
    routes[("POST", "/api/v1/agents")] = httpx.Response(
        201,
        json={
            "ok": True,
            "agent": {
                "id": "a1",
                "name": "Ops",
                "model_provider": "ollama",
                "model_name": "llama3",
                "temperature": 2.0,
                "source_count": 1,
            },
        },
    )
    result = runner.invoke(
        cli.main,
        ["agent-create", "Ops", "-p", "ollama", "-m", "llama3", "-T", "9", "-s", "src-1"],
    )
    assert result.exit_code == 0, result.output
    assert json.loads(calls[0].content) == {
        "name": "Ops",
        "description": "",
        "model_provider": "ollama",
        "model_name": "llama3",
        "temperature": 9.0,
        "source_links": [{"source_id": "src-1"}],
    }
    assert "temperature=2.0" in result.stdout


def test_source_import_uses_spec_title(runner, backend, tmp_path):
    routes, calls = backend
    routes[("POST", "/api/v1/sources")] = httpx.Response(
        201, json={"ok": True, "source": {"id": "s1", "name": "Petstore", "tool_count": 4}}
    )
    spec_file = tmp_path / "petstore.json"
    spec_file.write_text(json.dumps(PETSTORE))

    result = runner.invoke(cli.main, ["source-import", str(spec_file)])
    assert result.exit_code == 0, result.output
    sent = json.loads(calls[0].content)
    assert sent["name"] == "Petstore"
    assert sent["source_type"] == "openapi"
    assert sent["spec_content"] == PETSTORE
    assert "with 4 tool(s)" in result.stdout


def test_key_create_prints_raw_key_once(runner, backend):
    routes, calls = backend
    routes[("POST", "/api/v1/api-keys")] = httpx.Response(
        201,
        json={
            "ok": True,
            "key": {"id": "k1", "key_prefix": "ac_abcd1234..."},
            "raw_key": "ac_abcd1234rest",
            "warning": "Save this key now. It cannot be retrieved again.",
        },
    )
    result = runner.invoke(cli.main, ["key-create", "CI", "-a", "agent-1"])
    assert result.exit_code == 0, result.output
    assert result.stdout.strip() == "ac_abcd1234rest"
    assert json.loads(calls[0].content) == {"name": "CI", "agent_ids": ["agent-1"]}


def test_key_revoke_sends_body(runner, backend):
    routes, calls = backend
    routes[("DELETE", "/api/v1/api-keys")] = httpx.Response(200, json={"ok": True})
    result = runner.invoke(cli.main, ["key-revoke", "k1"])
    assert result.exit_code == 0
    assert json.loads(calls[0].content) == {"key_id": "k1"}
    assert "Revoked k1" in result.stdout


def test_activity_passes_filters(runner, backend):
    routes, calls = backend
    routes[("GET", "/api/v1/activity")] = httpx.Response(
        200,
        json={
            "ok": True,
            "events": [
                {
                    "type": "agent.created",
                    "stream_id": "agent:1",
                    "created_at": "2026-01-02T03:04:05Z",
                }
            ],
        },
    )
    result = runner.invoke(cli.main, ["activity", "-l", "5", "-t", "agent.created"])
    assert result.exit_code == 0
    assert calls[0].url.params["limit"] == "5"
    assert calls[0].url.params["type"] == "agent.created"
    assert "2026-01-02 03:04:05" in result.stdout


def test_api_error_exits_1(runner, backend):
    routes, _ = backend
    routes[("GET", "/api/v1/api-keys")] = httpx.Response(403, json={"error": "Admin access required"})
    result = runner.invoke(cli.main, ["keys"])
    assert result.exit_code == 1
    assert "Error (403): Admin access required" in result.stderr


# ═══════════════════════════════════════════════════════════
# Offline spec preview
# ═══════════════════════════════════════════════════════════


def test_parse_spec_offline(runner, tmp_path):
    spec_file = tmp_path / "petstore.json"
    spec_file.write_text(json.dumps(PETSTORE))
    result = runner.invoke(cli.main, ["parse-spec", str(spec_file)])
    assert result.exit_code == 0, result.output
    assert "Petstore 1.2.0" in result.stdout
    assert "https://petstore.example.com/v1" in result.stdout
    assert "4 tool(s)" in result.stdout
    assert "deletePet" in result.stdout


def test_parse_spec_invalid(runner, tmp_path):
    spec_file = tmp_path / "swagger.json"
    spec_file.write_text(json.dumps({"swagger": "2.0", "paths": {"/": {}}}))
    result = runner.invoke(cli.main, ["parse-spec", str(spec_file)])
    assert result.exit_code == 1
    assert "Invalid spec" in result.stderr


def test_source_sync_reports_counts(runner, backend):
    routes, calls = backend
    routes[("POST", "/api/v1/sources/s1/sync")] = httpx.Response(
        200,
        json={"ok": True, "changed": True, "inserted": 1, "updated": 3, "removed": 2, "tool_count": 4},
    )
    result = runner.invoke(cli.main, ["source-sync", "s1"])
    assert result.exit_code == 0, result.output
    assert json.loads(calls[0].content) == {}
    assert "1 new, 3 updated, 2 deactivated" in result.stdout


def test_source_sync_unchanged(runner, backend):
    routes, _ = backend
    routes[("POST", "/api/v1/sources/s1/sync")] = httpx.Response(
        200, json={"ok": True, "changed": False, "message": "Spec unchanged, no sync needed"}
    )
    result = runner.invoke(cli.main, ["source-sync", "s1"])
    assert result.exit_code == 0
    assert "Spec unchanged, no sync needed" in result.stdout
