"""Fallback extraction of parameterizable literal values.

Used when full variable classification is switched off: instead of deciding
which declared variables are external data, this scans the collection for
literal values that are commonly varied in load tests (hosts, query values,
long header values, form and JSON body fields) and reports them as candidate
parameters.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from urllib.parse import parse_qsl, urlsplit

from devwebify.analysis.patterns import find_placeholders, has_placeholder
from devwebify.collection.models import BodyMode, Collection, Request
from devwebify.logging import get_logger

LOG = get_logger(__name__)

SKIP_HEADERS = frozenset({"content-type", "accept", "user-agent", "connection", "cache-control"})
STATIC_VALUES = frozenset({"true", "false", "null", "0", "1"})

MIN_HEADER_LENGTH = 20
MIN_FIELD_LENGTH = 5

_NUMBER_REGEX = re.compile(r"^-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?$")
_EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_URL_REGEX = re.compile(r"^https?://.+")
_DATE_REGEX = re.compile(r"\d{4}-\d{2}-\d{2}")
_UUID_REGEX = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_HOST_REGEX = re.compile(r"^https?://([^/?#]+)")


def detect_parameter_type(value: Any) -> str:
    """Guess a parameter's data type from its literal value.

    Returns one of ``string``, ``number``, ``boolean``, ``email``, ``url``,
    ``date`` or ``uuid``.
    """
    if value is None:
        return "string"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    text = str(value)
    if _NUMBER_REGEX.match(text):
        return "number"
    if text in ("true", "false"):
        return "boolean"
    if _EMAIL_REGEX.match(text):
        return "email"
    if _URL_REGEX.match(text):
        return "url"
    match = _DATE_REGEX.search(text)
    if match:
        try:
            date.fromisoformat(match.group(0))
        except ValueError:
            pass
        else:
            return "date"
    if _UUID_REGEX.match(text):
        return "uuid"
    return "string"


def should_parameterize(value: Any, context: str) -> bool:
    """Decide whether a literal in the given context is worth parameterizing.

    Args:
        value: The literal value.
        context: One of ``host``, ``header``, ``query``, ``form_data``,
            ``json_body``.
    """
    if not value or not isinstance(value, str):
        return False
    if has_placeholder(value):
        return True
    if value.lower() in STATIC_VALUES:
        return False
    if context in ("host", "query"):
        return True
    if context == "header":
        return len(value) > MIN_HEADER_LENGTH
    if context in ("form_data", "json_body"):
        return len(value) > MIN_FIELD_LENGTH
    return False


@dataclass
class ExtractedParameter:
    """A candidate parameter found by literal scanning."""

    key: str
    value: Any
    source: str
    type: str = "string"
    description: str = ""
    used_in: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "source": self.source,
            "type": self.type,
            "description": self.description,
            "used_in": list(self.used_in),
        }


class ParameterExtractor:
    """Accumulates candidate parameters across a collection.

    Later sightings of the same key merge ``used_in`` and keep the first
    value and source.
    """

    def __init__(self) -> None:
        self.parameters: dict[str, ExtractedParameter] = {}

    def add(self, key: str, value: Any, source: str, *, description: str, request: str | None = None) -> None:
        existing = self.parameters.get(key)
        if existing is None:
            existing = self.parameters[key] = ExtractedParameter(
                key=key,
                value=value,
                source=source,
                type=detect_parameter_type(value),
                description=description,
            )
        if request and request not in existing.used_in:
            existing.used_in.append(request)

    def extract(self, collection: Collection) -> dict[str, ExtractedParameter]:
        for name, value in collection.variables.items():
            self.add(name, value, "collection", description=f"Collection variable: {name}")
        for request in collection.requests:
            try:
                self._scan_request(request)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                LOG.warning("parameter_scan_failed", request=request.name, error=str(exc))
        return self.parameters

    def _scan_request(self, request: Request) -> None:
        self._scan_url(request)
        for header in request.active_headers:
            if header.key.lower() in SKIP_HEADERS:
                continue
            if should_parameterize(header.value, "header"):
                self.add(
                    f"header_{header.key}",
                    header.value,
                    "header",
                    description=f"Header: {header.key}",
                    request=request.name,
                )
        self._scan_body(request)

    def _scan_url(self, request: Request) -> None:
        url = request.url or ""
        host = _HOST_REGEX.match(url)
        if host and "{{" not in host.group(1) and should_parameterize(host.group(1), "host"):
            scheme = url.split("://", 1)[0]
            self.add(
                "baseUrl",
                f"{scheme}://{host.group(1)}",
                "url",
                description="Base URL for API requests",
                request=request.name,
            )
        query = urlsplit(url).query
        for key, value in parse_qsl(query, keep_blank_values=True):
            if should_parameterize(value, "query"):
                self.add(f"query_{key}", value, "query", description=f"Query parameter: {key}", request=request.name)

    def _scan_body(self, request: Request) -> None:
        body = request.body
        if body is None:
            return
        if body.mode in (BodyMode.URLENCODED, BodyMode.FORMDATA):
            for field_ in body.active_fields:
                if field_.kind != "file" and should_parameterize(field_.value, "form_data"):
                    self.add(
                        f"form_{field_.key}",
                        field_.value,
                        "form_data",
                        description=f"Form data: {field_.key}",
                        request=request.name,
                    )
            return
        parsed = body.parsed_json()
        if isinstance(parsed, dict):
            self._scan_json(parsed, request.name, "")
        elif parsed is None:
            for name in find_placeholders(body.raw):
                self.add(name, "", "body", description=f"Body variable: {name}", request=request.name)

    def _scan_json(self, node: dict[str, Any], request_name: str, prefix: str) -> None:
        for key, value in node.items():
            full_key = f"{prefix}_{key}" if prefix else key
            if isinstance(value, dict):
                self._scan_json(value, request_name, full_key)
            elif should_parameterize(value, "json_body"):
                self.add(
                    full_key,
                    value,
                    "json_body",
                    description=f"JSON body field: {full_key}",
                    request=request_name,
                )


def extract_parameters(collection: Collection) -> dict[str, ExtractedParameter]:
    """Scan a collection for candidate parameters, keyed by parameter name."""
    return ParameterExtractor().extract(collection)


def parameter_report(parameters: dict[str, ExtractedParameter]) -> dict[str, Any]:
    """Summarize extracted parameters by source and type."""
    by_source: dict[str, int] = {}
    by_type: dict[str, int] = {}
    for param in parameters.values():
        by_source[param.source] = by_source.get(param.source, 0) + 1
        by_type[param.type] = by_type.get(param.type, 0) + 1
    return {
        "total": len(parameters),
        "by_source": by_source,
        "by_type": by_type,
        "parameters": [param.to_dict() for param in parameters.values()],
    }
