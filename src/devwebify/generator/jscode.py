"""JavaScript source rendering helpers."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from devwebify.analysis.patterns import is_identifier

INDENT = "    "


@dataclass(frozen=True)
class JsExpr:
    """A JavaScript expression emitted verbatim (never quoted)."""

    code: str

    def __str__(self) -> str:
        return self.code


def js_string(text: str) -> str:
    """Render text as a double-quoted JavaScript string literal."""
    return json.dumps(text, ensure_ascii=False)


def js_key(key: str) -> str:
    """Render an object key, quoting it unless it is a bare identifier."""
    return key if is_identifier(key) else js_string(key)


def _escape_template_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")


def template_literal(parts: Sequence[str | JsExpr]) -> JsExpr:
    """Join literal text and expressions into one expression.

    A single expression part is returned as-is; pure text becomes a string
    literal; anything mixed becomes a backtick template literal.
    """
    parts = [part for part in parts if part != ""]
    if not parts:
        return JsExpr('""')
    if len(parts) == 1 and isinstance(parts[0], JsExpr):
        return parts[0]
    if all(isinstance(part, str) for part in parts):
        return JsExpr(js_string("".join(parts)))
    body = "".join(
        f"${{{part.code}}}" if isinstance(part, JsExpr) else _escape_template_text(part) for part in parts
    )
    return JsExpr(f"`{body}`")


def render_value(value: Any, level: int = 0) -> str:
    """Render a Python value as a JavaScript literal.

    Dicts and lists are laid out one entry per line, indented by
    ``level`` steps; ``JsExpr`` values are emitted verbatim.
    """
    if isinstance(value, JsExpr):
        return value.code
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return json.dumps(value)
    if isinstance(value, str):
        return js_string(value)
    pad = INDENT * (level + 1)
    close = INDENT * level
    if isinstance(value, dict):
        if not value:
            return "{}"
        entries = [f"{pad}{js_key(str(k))}: {render_value(v, level + 1)}" for k, v in value.items()]
        return "{\n" + ",\n".join(entries) + f"\n{close}}}"
    if isinstance(value, list | tuple):
        if not value:
            return "[]"
        entries = [f"{pad}{render_value(v, level + 1)}" for v in value]
        return "[\n" + ",\n".join(entries) + f"\n{close}]"
    return js_string(str(value))


def indent_lines(lines: Iterable[str], level: int = 1) -> list[str]:
    """Indent every non-empty line (splitting embedded newlines) by ``level`` steps."""
    pad = INDENT * level
    result: list[str] = []
    for line in lines:
        for part in line.split("\n"):
            result.append(f"{pad}{part}" if part else "")
    return result


def comment_lines(text: str) -> list[str]:
    """Render free text as ``//`` comment lines."""
    return [f"// {line}".rstrip() for line in text.splitlines() if line.strip()]


def sanitize_identifier(name: str) -> str:
    """Turn arbitrary text into a JavaScript identifier.

    Non-identifier characters collapse to single underscores; a leading
    digit gets an underscore prefix.
    """
    result = re.sub(r"[^A-Za-z0-9_]+", "_", name).strip("_")
    result = re.sub(r"_+", "_", result)
    if not result:
        return "request"
    if result[0].isdigit():
        result = f"_{result}"
    return result


def unique_name(base_name: str, seen: set[str]) -> str:
    """Return ``base_name`` or the first free ``base_name_N``; records the result in ``seen``."""
    name = base_name
    counter = 1
    while name in seen:
        name = f"{base_name}_{counter}"
        counter += 1
    seen.add(name)
    return name
