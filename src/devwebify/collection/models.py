"""Normalized request model shared by every analysis stage.

A collection reader turns Postman or Bruno exports into an ordered list of
``Request`` records. Each record carries its sequence ``index`` explicitly:
the index is assigned once, at emission time, by a depth-first pre-order walk
of the folder tree, and it is the only ordering signal correlation uses.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Literal


class BodyMode(StrEnum):
    """Shape of a request body."""

    NONE = "none"
    RAW = "raw"
    JSON = "json"
    URLENCODED = "urlencoded"
    FORMDATA = "formdata"


@dataclass(frozen=True)
class KeyValue:
    """One header, form field, or query entry.

    ``kind`` only matters for multipart fields, where it is ``"file"`` for
    file uploads and ``"text"`` otherwise.
    """

    key: str
    value: str = ""
    disabled: bool = False
    kind: str = "text"


@dataclass(frozen=True)
class RequestBody:
    """Tagged body union: raw text, raw JSON, url-encoded pairs, multipart, none."""

    mode: BodyMode
    raw: str = ""
    fields: tuple[KeyValue, ...] = ()

    def parsed_json(self) -> Any | None:
        """Return the body parsed as JSON, or None if it is not valid JSON.

        Only raw and JSON modes are attempted. Bodies whose JSON contains
        unquoted placeholders (``{"id": {{id}}}``) fail to parse and are
        handled by callers through literal placeholder scanning instead.
        """
        if self.mode not in (BodyMode.RAW, BodyMode.JSON) or not self.raw.strip():
            return None
        try:
            return json.loads(self.raw)
        except (json.JSONDecodeError, ValueError):
            return None

    @property
    def active_fields(self) -> list[KeyValue]:
        """Form fields that are not disabled."""
        return [f for f in self.fields if not f.disabled]


@dataclass(frozen=True)
class Request:
    """One HTTP call definition from a collection.

    Attributes:
        index: Position in the flattened depth-first traversal.
        name: Request name as written in the collection (not guaranteed unique).
        folder: Slash-joined folder path, empty for top-level requests.
        method: Upper-case HTTP method.
        url: Raw URL, may embed ``{{var}}`` placeholders.
        headers: Ordered request headers.
        body: Request body, or None.
        pre_request_script: Raw pre-request script text, or None.
        test_script: Raw test/post-response script text, or None.
        auth: Effective auth block (after folder/collection inheritance), or None.
        description: Free-text description.
        response_headers: Headers from saved example responses.
    """

    index: int
    name: str
    method: str
    url: str
    folder: str = ""
    headers: tuple[KeyValue, ...] = ()
    body: RequestBody | None = None
    pre_request_script: str | None = None
    test_script: str | None = None
    auth: dict[str, Any] | None = None
    description: str = ""
    response_headers: tuple[KeyValue, ...] = ()

    @property
    def active_headers(self) -> list[KeyValue]:
        """Headers that are enabled and have a key."""
        return [h for h in self.headers if not h.disabled and h.key]

    def scripts(self) -> list[tuple[str, str]]:
        """Return ``(kind, text)`` pairs for the scripts this request carries."""
        result: list[tuple[str, str]] = []
        if self.pre_request_script:
            result.append(("pre-request", self.pre_request_script))
        if self.test_script:
            result.append(("test", self.test_script))
        return result


@dataclass(frozen=True)
class AuthSource:
    """An auth block as declared at collection, folder, or request level."""

    owner: str
    folder: str
    level: Literal["collection", "folder", "request"]
    block: dict[str, Any]


@dataclass
class Collection:
    """A parsed collection: ordered requests plus collection-level declarations.

    Attributes:
        name: Collection name.
        source_format: ``"postman"`` or ``"bruno"``.
        requests: Requests in sequence order; ``requests[i].index == i``.
        variables: Declared variables (collection, then environment overrides)
            in declaration order.
        auth: Collection-level auth block, or None.
        auth_sources: Every declared auth block in traversal order.
    """

    name: str
    source_format: str
    requests: list[Request] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)
    auth: dict[str, Any] | None = None
    auth_sources: list[AuthSource] = field(default_factory=list)


@dataclass(frozen=True)
class ConversionWarning:
    """A non-fatal problem surfaced in the final report.

    Attributes:
        category: One of ``script``, ``unresolved_variable``,
            ``builtin_variable``, ``malformed_request``, ``auth``.
        message: Human-readable description.
        request: Name of the affected request, or None for collection-wide issues.
    """

    category: str
    message: str
    request: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"category": self.category, "message": self.message, "request": self.request}
