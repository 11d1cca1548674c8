"""Collection file reader.

Reads Postman (v2.0/v2.1) and Bruno JSON exports into an ordered list of
normalized ``Request`` records. Folders are walked depth-first in pre-order,
and every emitted request receives its sequence index at that moment.

Postman format: https://schema.postman.com/collection/json/v2.1.0/draft-07/docs/index.html
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote

from devwebify.analysis.patterns import has_placeholder
from devwebify.collection.models import (
    AuthSource,
    BodyMode,
    Collection,
    KeyValue,
    Request,
    RequestBody,
)
from devwebify.exceptions import CollectionParseError
from devwebify.logging import get_logger

LOG = get_logger(__name__)

_BRUNO_REQUEST_TYPES = ("http-request", "graphql-request", "http")
_INHERIT_AUTH_TYPES = ("inherit",)
_NO_AUTH_TYPES = ("noauth", "none")
_BRUNO_BODY_MODES = ("json", "text", "xml", "sparql", "formUrlEncoded", "multipartForm")


@dataclass
class ParseError:
    """Error encountered while normalizing a single collection item.

    Attributes:
        index: Zero-based position of the item in traversal order.
        name: Name of the item that failed, or "unknown" if unavailable.
        error: Human-readable error message describing the failure.
    """

    index: int
    name: str
    error: str


@dataclass
class CollectionParseResult:
    """Result of reading a collection.

    Supports partial success: items that fail to normalize are recorded as
    errors while valid requests are still returned.

    Attributes:
        collection: The parsed collection with its successfully read requests.
        errors: Errors for items that could not be processed.
    """

    collection: Collection
    errors: list[ParseError] = field(default_factory=list)

    @property
    def requests(self) -> list[Request]:
        return self.collection.requests

    @property
    def has_errors(self) -> bool:
        """Return True if any item failed to parse."""
        return bool(self.errors)


def _script_text(script: Any) -> str | None:
    """Flatten a script value (string, list of lines, or exec object) to text."""
    if script is None:
        return None
    if isinstance(script, dict):
        script = script.get("exec", script.get("script"))
    if isinstance(script, list):
        script = "\n".join(str(line) for line in script)
    if not isinstance(script, str):
        return None
    return script if script.strip() else None


def _join_scripts(*parts: str | None) -> str | None:
    texts = [p for p in parts if p]
    return "\n".join(texts) if texts else None


def _normalize_pairs(entries: Any) -> tuple[KeyValue, ...]:
    """Normalize header/form entries to ordered ``KeyValue`` records.

    Accepts Postman ``{key, value, disabled}`` lists, Bruno
    ``{name, value, enabled}`` lists, and plain ``{name: value}`` objects.
    """
    if not entries:
        return ()
    if isinstance(entries, dict):
        return tuple(KeyValue(key=str(k), value="" if v is None else str(v)) for k, v in entries.items())
    if not isinstance(entries, list):
        raise TypeError(f"expected list or object, got {type(entries).__name__}")

    result: list[KeyValue] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        key = entry.get("key", entry.get("name"))
        if not key:
            continue
        disabled = bool(entry.get("disabled", False)) or entry.get("enabled") is False
        kind = "file" if entry.get("type") == "file" else "text"
        value = entry.get("value", entry.get("src", ""))
        if isinstance(value, list):
            value = ",".join(str(v) for v in value)
        result.append(
            KeyValue(
                key=str(key),
                value="" if value is None else str(value),
                disabled=disabled,
                kind=kind,
            )
        )
    return tuple(result)


def _build_query_string(query: list[dict[str, Any]]) -> str:
    """Build ``?k=v`` from Postman query entries, leaving placeholders unencoded."""
    pairs: list[str] = []
    for entry in query:
        if not isinstance(entry, dict) or entry.get("disabled"):
            continue
        key = str(entry.get("key") or "")
        value = "" if entry.get("value") is None else str(entry.get("value"))
        if not key:
            continue
        key = key if has_placeholder(key) else quote(key, safe="")
        value = value if has_placeholder(value) else quote(value, safe="")
        pairs.append(f"{key}={value}")
    return f"?{'&'.join(pairs)}" if pairs else ""


def normalize_url(url: Any) -> str:
    """Normalize a URL given as a string or a Postman URL object.

    The ``raw`` form is preferred because it preserves ``{{variable}}``
    templates exactly as authored.
    """
    if isinstance(url, str):
        return url
    if not isinstance(url, dict):
        return ""
    if url.get("raw"):
        return str(url["raw"])

    protocol = url.get("protocol") or "https"
    host = url.get("host") or ""
    if isinstance(host, list):
        host = ".".join(str(h) for h in host)
    path = url.get("path") or ""
    if isinstance(path, list):
        path = "/".join(str(p) for p in path)
    query = url.get("query") or []
    query_string = _build_query_string(query) if isinstance(query, list) else ""
    return f"{protocol}://{host}/{path}{query_string}"


def _normalize_postman_body(body: dict[str, Any]) -> RequestBody | None:
    mode = body.get("mode")
    if mode == "raw":
        raw = body.get("raw") or ""
        language = ((body.get("options") or {}).get("raw") or {}).get("language")
        if language == "json" or _looks_like_json(raw):
            return RequestBody(mode=BodyMode.JSON, raw=raw)
        return RequestBody(mode=BodyMode.RAW, raw=raw)
    if mode == "urlencoded":
        return RequestBody(mode=BodyMode.URLENCODED, fields=_normalize_pairs(body.get("urlencoded")))
    if mode == "formdata":
        return RequestBody(mode=BodyMode.FORMDATA, fields=_normalize_pairs(body.get("formdata")))
    if mode == "graphql":
        graphql = body.get("graphql") or {}
        return RequestBody(mode=BodyMode.JSON, raw=_graphql_payload(graphql))
    return None


def _normalize_bruno_body(body: dict[str, Any]) -> RequestBody | None:
    mode = body.get("mode")
    if mode == "json":
        return RequestBody(mode=BodyMode.JSON, raw=body.get("json") or "")
    if mode in ("text", "xml", "sparql"):
        return RequestBody(mode=BodyMode.RAW, raw=body.get(mode) or "")
    if mode == "formUrlEncoded":
        return RequestBody(mode=BodyMode.URLENCODED, fields=_normalize_pairs(body.get("formUrlEncoded")))
    if mode == "multipartForm":
        return RequestBody(mode=BodyMode.FORMDATA, fields=_normalize_pairs(body.get("multipartForm")))
    if mode == "graphql":
        return RequestBody(mode=BodyMode.JSON, raw=_graphql_payload(body.get("graphql") or {}))
    return None


def _graphql_payload(graphql: dict[str, Any]) -> str:
    variables = graphql.get("variables") or {}
    if isinstance(variables, str):
        try:
            variables = json.loads(variables) if variables.strip() else {}
        except json.JSONDecodeError:
            LOG.warning("graphql_variables_not_json")
            variables = {}
    return json.dumps({"query": graphql.get("query", ""), "variables": variables})


def _looks_like_json(raw: str) -> bool:
    stripped = raw.strip()
    if not stripped or stripped[0] not in "{[":
        return False
    try:
        json.loads(stripped)
    except json.JSONDecodeError:
        return False
    return True


def _normalize_auth(auth: Any) -> dict[str, Any] | None:
    """Normalize Postman ``{type, <type>: ...}`` and Bruno ``{mode, <mode>: ...}`` blocks."""
    if not isinstance(auth, dict):
        return None
    auth_type = auth.get("type") or auth.get("mode")
    if not auth_type:
        return None
    auth_type = str(auth_type).lower()
    return {"type": auth_type, auth_type: auth.get(auth_type) or {}}


def _nested_auth(container: Any) -> Any:
    """Return ``container.root.request.auth`` (Bruno folder/collection roots) if present."""
    if not isinstance(container, dict):
        return None
    root = container.get("root")
    if not isinstance(root, dict):
        return None
    request = root.get("request")
    return request.get("auth") if isinstance(request, dict) else None


def _declares_auth(auth: dict[str, Any] | None) -> bool:
    return auth is not None and auth["type"] not in _INHERIT_AUTH_TYPES + _NO_AUTH_TYPES


def _effective_auth(auth: dict[str, Any] | None, inherited: dict[str, Any] | None) -> dict[str, Any] | None:
    if auth is None or auth["type"] in _INHERIT_AUTH_TYPES:
        return inherited
    if auth["type"] in _NO_AUTH_TYPES:
        return None
    return auth


def _response_headers(responses: Any) -> tuple[KeyValue, ...]:
    """Collect headers declared on saved example responses."""
    if not isinstance(responses, list):
        return ()
    headers: list[KeyValue] = []
    for response in responses:
        if isinstance(response, dict):
            headers.extend(_normalize_pairs(response.get("header") or response.get("headers")))
    return tuple(headers)


def _event_script(events: Any, listen: str) -> str | None:
    if not isinstance(events, list):
        return None
    texts = [
        _script_text(event.get("script"))
        for event in events
        if isinstance(event, dict) and event.get("listen") == listen
    ]
    return _join_scripts(*texts)


def _is_request_item(item: dict[str, Any]) -> bool:
    return "request" in item or item.get("type") in _BRUNO_REQUEST_TYPES


def _is_folder_item(item: dict[str, Any]) -> bool:
    return isinstance(item.get("item"), list) or isinstance(item.get("items"), list)


def _normalize_request(
    item: dict[str, Any],
    index: int,
    folder: str,
    inherited_auth: dict[str, Any] | None,
) -> Request:
    """Normalize one request item (Postman or Bruno) into a ``Request``."""
    request = item.get("request", item)
    if isinstance(request, str):
        # Postman allows a bare URL string as the request
        request = {"url": request, "method": "GET"}
    if not isinstance(request, dict):
        raise TypeError("request must be an object")

    method = request.get("method")
    method = method.upper() if isinstance(method, str) and method else "GET"

    body_data = request.get("body")
    body = None
    if isinstance(body_data, dict):
        if body_data.get("mode") in _BRUNO_BODY_MODES:
            body = _normalize_bruno_body(body_data)
        else:
            body = _normalize_postman_body(body_data)

    script = request.get("script") if isinstance(request.get("script"), dict) else {}
    pre_request = _join_scripts(
        _event_script(item.get("event"), "prerequest"),
        _script_text(request.get("preRequestScript")),
        _script_text(script.get("req")),
    )
    test = _join_scripts(
        _event_script(item.get("event"), "test"),
        _script_text(script.get("res")),
        _script_text(request.get("tests")),
    )

    description = request.get("description") or item.get("description") or ""
    if isinstance(description, dict):
        description = description.get("content", "")

    return Request(
        index=index,
        name=str(item.get("name") or "Unnamed Request"),
        folder=folder,
        method=method,
        url=normalize_url(request.get("url")),
        headers=_normalize_pairs(request.get("header", request.get("headers"))),
        body=body,
        pre_request_script=pre_request,
        test_script=test,
        auth=_effective_auth(_normalize_auth(request.get("auth", item.get("auth"))), inherited_auth),
        description=str(description),
        response_headers=_response_headers(item.get("response")),
    )


def _traverse(
    items: list[Any],
    collection: Collection,
    errors: list[ParseError],
    folder: str = "",
    inherited_auth: dict[str, Any] | None = None,
    position: list[int] | None = None,
) -> None:
    """Walk items depth-first, pre-order, appending requests in sequence order."""
    if position is None:
        position = [0]

    for item in items:
        item_position = position[0]
        position[0] += 1
        if not isinstance(item, dict):
            errors.append(ParseError(index=item_position, name="unknown", error="item must be an object"))
            continue

        name = str(item.get("name") or "unknown")
        if _is_request_item(item):
            try:
                request = _normalize_request(item, len(collection.requests), folder, inherited_auth)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                errors.append(ParseError(index=item_position, name=name, error=str(exc)))
                LOG.warning("request_parse_failed", error=str(exc), item_index=item_position, name=name)
                continue
            collection.requests.append(request)
            raw_request = item.get("request")
            own_auth = _normalize_auth(raw_request.get("auth") if isinstance(raw_request, dict) else None)
            if _declares_auth(own_auth):
                collection.auth_sources.append(
                    AuthSource(owner=request.name, folder=folder, level="request", block=own_auth)
                )
        elif _is_folder_item(item):
            child_folder = f"{folder}/{name}" if folder else name
            folder_auth = _normalize_auth(item.get("auth") or _nested_auth(item))
            if _declares_auth(folder_auth):
                collection.auth_sources.append(
                    AuthSource(owner=name, folder=child_folder, level="folder", block=folder_auth)
                )
            _traverse(
                item.get("item") or item.get("items") or [],
                collection,
                errors,
                folder=child_folder,
                inherited_auth=_effective_auth(folder_auth, inherited_auth),
                position=position,
            )


def _collection_variables(data: dict[str, Any]) -> dict[str, Any]:
    """Read declared variables from a Postman ``variable`` list or a Bruno environment."""
    variables: dict[str, Any] = {}
    for entry in data.get("variable") or []:
        if isinstance(entry, dict) and entry.get("key") and not entry.get("disabled"):
            variables[str(entry["key"])] = entry.get("value")

    environments = data.get("environments")
    if isinstance(environments, list) and environments and isinstance(environments[0], dict):
        for entry in environments[0].get("variables") or []:
            if isinstance(entry, dict) and entry.get("name") and entry.get("enabled", True):
                variables[str(entry["name"])] = entry.get("value")
    return variables


def validate_collection_schema(data: Any) -> None:
    """Validate collection data has the required structure.

    Args:
        data: Parsed JSON data from a collection file.

    Raises:
        CollectionParseError: If the data is not a recognizable collection.
    """
    if not isinstance(data, dict):
        raise CollectionParseError("Collection file must contain a JSON object")

    if not any(key in data for key in ("item", "items", "request")):
        raise CollectionParseError("Collection must contain an 'item' or 'items' array")

    items = data.get("item", data.get("items"))
    if items is not None and not isinstance(items, list):
        raise CollectionParseError("Collection 'item'/'items' must be an array")


def _parse_collection_data(data: dict[str, Any], environment: dict[str, Any] | None = None) -> CollectionParseResult:
    info = data.get("info") if isinstance(data.get("info"), dict) else {}
    if info.get("schema"):
        source_format = "postman"
        name = info.get("name") or "Postman Collection"
    else:
        source_format = "bruno"
        name = data.get("name") or "Bruno Collection"

    collection_auth = _normalize_auth(data.get("auth") or _nested_auth(data))
    if not _declares_auth(collection_auth):
        collection_auth = None

    collection = Collection(
        name=str(name),
        source_format=source_format,
        variables=_collection_variables(data),
        auth=collection_auth,
    )
    if collection_auth:
        collection.auth_sources.append(
            AuthSource(owner="collection", folder="", level="collection", block=collection_auth)
        )
    if environment:
        collection.variables.update(environment)

    errors: list[ParseError] = []
    if "request" in data and not any(key in data for key in ("item", "items")):
        # A single exported request
        _traverse([data], collection, errors, inherited_auth=collection_auth)
    else:
        _traverse(data.get("item") or data.get("items") or [], collection, errors, inherited_auth=collection_auth)

    return CollectionParseResult(collection=collection, errors=errors)


def _load_json(filepath: Path, what: str) -> Any:
    if not filepath.exists():
        raise CollectionParseError(f"{what} file not found: {filepath}")
    try:
        with open(filepath, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as exc:
        raise CollectionParseError(f"Invalid JSON in {what.lower()} file: {exc}") from exc
    except OSError as exc:
        raise CollectionParseError(f"Cannot read {what.lower()} file {filepath}: {exc}") from exc


def parse_environment_file(filepath: Path | str) -> dict[str, Any]:
    """Read a Postman environment export into a name -> value map.

    Entries with ``enabled: false`` are skipped.

    Raises:
        CollectionParseError: If the file is missing or not a valid environment.
    """
    filepath = Path(filepath)
    data = _load_json(filepath, "Environment")
    if not isinstance(data, dict) or not isinstance(data.get("values"), list):
        raise CollectionParseError("Environment file must contain a 'values' array")

    variables: dict[str, Any] = {}
    for entry in data["values"]:
        if isinstance(entry, dict) and entry.get("key") and entry.get("enabled", True):
            variables[str(entry["key"])] = entry.get("value")
    LOG.info("environment_file_parsed", filepath=str(filepath), variables=len(variables))
    return variables


def parse_collection_file(
    filepath: Path | str,
    environment: dict[str, Any] | None = None,
) -> CollectionParseResult:
    """Parse a collection file and return requests plus per-item errors.

    Args:
        filepath: Path to a Postman or Bruno JSON export.
        environment: Optional environment variables overriding collection variables.

    Returns:
        CollectionParseResult containing the parsed collection and any errors.

    Raises:
        CollectionParseError: If the file is missing, unreadable, not valid
            JSON, or not a collection.
    """
    filepath = Path(filepath)
    data = _load_json(filepath, "Collection")
    validate_collection_schema(data)
    result = _parse_collection_data(data, environment)

    LOG.info(
        "collection_file_parsed",
        filepath=str(filepath),
        format=result.collection.source_format,
        requests=len(result.requests),
        errors=len(result.errors),
    )
    return result


def parse_collection_string(content: str, environment: dict[str, Any] | None = None) -> CollectionParseResult:
    """Parse collection content from a string.

    Raises:
        CollectionParseError: If content is not valid JSON or not a collection.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise CollectionParseError(f"Invalid JSON in collection content: {exc}") from exc

    validate_collection_schema(data)
    return _parse_collection_data(data, environment)
