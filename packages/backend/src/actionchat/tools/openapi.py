"""OpenAPI 3.x → tool rows.

Learn: A source's spec_content is parsed once, at registration time, into
one tool per (path, method). Each tool carries what an LLM needs to call
it: a JSON-schema for parameters, a JSON-schema for the request body, and
a risk level that decides whether a human must confirm the call.

Risk is derived from the HTTP method only:
    GET / HEAD / OPTIONS → safe
    POST                 → moderate
    PUT / PATCH / DELETE → dangerous (requires_confirmation)
"""

import hashlib
import json
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Optional, Union

HTTP_METHODS = ("get", "post", "put", "patch", "delete", "head", "options")

RISK_BY_METHOD = {
    "GET": "safe",
    "HEAD": "safe",
    "OPTIONS": "safe",
    "POST": "moderate",
    "PUT": "dangerous",
    "PATCH": "dangerous",
    "DELETE": "dangerous",
}


class OpenApiError(ValueError):
    """The document is not a usable OpenAPI 3.x spec."""


@dataclass
class SourceMeta:
    title: str
    description: str
    version: str
    base_url: str
    spec_hash: str


@dataclass
class ParsedTool:
    operation_id: str
    name: str
    description: str
    method: str
    path: str
    parameters: Optional[dict]
    request_body: Optional[dict]
    risk_level: str
    requires_confirmation: bool
    tags: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ParsedSpec:
    source_meta: SourceMeta
    tools: list[ParsedTool]


def risk_level_for(method: str) -> str:
    return RISK_BY_METHOD.get(method.upper(), "moderate")


def spec_hash(doc: dict) -> str:
    """SHA-256 of the compact JSON encoding, key order as given."""
    encoded = json.dumps(doc, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def _derived_operation_id(method: str, path: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]", "_", path)
    slug = re.sub(r"_+", "_", slug).strip("_")
    return f"{method}_{slug}"


def _expect(value: Any, kind: type, where: str) -> Any:
    if not isinstance(value, kind):
        label = "an object" if kind is dict else "a list"
        raise OpenApiError(f"Invalid OpenAPI spec: {where} must be {label}")
    return value


def parse_openapi_spec(spec_input: Union[str, dict]) -> ParsedSpec:
    """Parse a raw JSON string or an already-decoded document.

    Raises OpenApiError when the input is not JSON, lacks ``openapi`` or
    ``paths``, declares a major version below 3, or has a structural node
    (paths, path item, operation, parameters, requestBody) of the wrong type.
    """
    if isinstance(spec_input, str):
        try:
            doc = json.loads(spec_input)
        except json.JSONDecodeError as e:
            raise OpenApiError(f"Invalid JSON: {e.msg}")
    else:
        doc = spec_input

    if not isinstance(doc, dict) or not doc.get("openapi") or not doc.get("paths"):
        raise OpenApiError(
            'Invalid OpenAPI spec: must have "openapi" and "paths" fields'
        )

    version = str(doc["openapi"])
    try:
        major = int(version.split(".")[0])
    except ValueError:
        raise OpenApiError(f"Unsupported OpenAPI version: {version}")
    if major < 3:
        raise OpenApiError(
            f"Unsupported OpenAPI version: {version}. Only 3.x is supported."
        )

    info = _expect(doc.get("info") or {}, dict, "info")
    servers = _expect(doc.get("servers") or [], list, "servers")
    paths = _expect(doc["paths"], dict, "paths")
    base_url = servers[0].get("url", "") if servers and isinstance(servers[0], dict) else ""

    meta = SourceMeta(
        title=info.get("title") or "Untitled API",
        description=info.get("description") or "",
        version=info.get("version") or "",
        base_url=base_url,
        spec_hash=spec_hash(doc),
    )

    tools: list[ParsedTool] = []
    for path, path_item in paths.items():
        _expect(path_item, dict, f"paths[{path!r}]")
        path_params = _expect(path_item.get("parameters") or [], list, f"{path} parameters")
        for method in HTTP_METHODS:
            operation = path_item.get(method)
            if not operation:
                continue
            where = f"{method.upper()} {path}"
            _expect(operation, dict, where)

            upper = method.upper()
            risk = risk_level_for(upper)
            tools.append(
                ParsedTool(
                    operation_id=operation.get("operationId")
                    or _derived_operation_id(method, path),
                    name=operation.get("summary") or f"{upper} {path}",
                    description=operation.get("description") or "",
                    method=upper,
                    path=path,
                    parameters=build_parameters_schema(
                        _expect(operation.get("parameters") or [], list, f"{where} parameters"),
                        path_params,
                    ),
                    request_body=extract_request_body(operation.get("requestBody"), where),
                    risk_level=risk,
                    requires_confirmation=risk == "dangerous",
                    tags=[
                        t
                        for t in _expect(operation.get("tags") or [], list, f"{where} tags")
                        if isinstance(t, str)
                    ],
                )
            )

    return ParsedSpec(source_meta=meta, tools=tools)


def build_parameters_schema(
    operation_params: list[dict], path_params: list[dict]
) -> Optional[dict]:
    """Merge path-level and operation-level parameters into one object schema.

    Operation-level entries override path-level ones with the same
    (in, name). Returns None when there are no parameters at all.
    """
    merged: dict[str, dict] = {}
    for param in [*path_params, *operation_params]:
        if isinstance(param, dict) and param.get("name"):
            merged[f"{param.get('in')}:{param['name']}"] = param

    if not merged:
        return None

    properties: dict[str, Any] = {}
    required: list[str] = []
    for param in merged.values():
        schema_node = param.get("schema")
        prop = dict(schema_node) if isinstance(schema_node, dict) else {}
        if param.get("description"):
            prop["description"] = param["description"]
        prop["in"] = param.get("in")
        properties[param["name"]] = prop
        if param.get("required"):
            required.append(param["name"])

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def extract_request_body(
    request_body: Optional[dict], where: str = "operation"
) -> Optional[dict]:
    """JSON request body schema, sanitized, or None."""
    if not request_body:
        return None
    _expect(request_body, dict, f"{where} requestBody")
    content = _expect(request_body.get("content") or {}, dict, f"{where} requestBody content")
    content = content.get("application/json") or {}
    if not isinstance(content, dict):
        return None
    if not content.get("schema"):
        return None
    return sanitize_schema(content["schema"])


def sanitize_schema(schema: Any) -> dict:
    """Repair common defects of generated specs.

    - missing type, ``"None"``, ``"null"`` or null → object when it has
      properties, string otherwise
    - recurses into properties, items and additionalProperties
    """
    if not isinstance(schema, dict):
        return {"type": "object", "properties": {}}

    cleaned = dict(schema)
    if cleaned.get("type") in (None, "", "None", "null"):
        cleaned["type"] = "object" if isinstance(cleaned.get("properties"), dict) else "string"

    if isinstance(cleaned.get("properties"), dict):
        cleaned["properties"] = {
            key: sanitize_schema(value) for key, value in cleaned["properties"].items()
        }
    if isinstance(cleaned.get("items"), dict):
        cleaned["items"] = sanitize_schema(cleaned["items"])
    if isinstance(cleaned.get("additionalProperties"), dict):
        cleaned["additionalProperties"] = sanitize_schema(cleaned["additionalProperties"])

    return cleaned
