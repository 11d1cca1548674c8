"""Shared patterns and marker tables for collection analysis."""

from __future__ import annotations

import re

# {{name}} -- the collection template syntax
TEMPLATE_VAR_REGEX = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")

# {{name}} or ${name} -- the two placeholder spellings accepted as consumption
PLACEHOLDER_REGEX = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}|\$\{\s*([^{}]+?)\s*\}")

# Looser placeholder shapes seen in Authorization headers: {name}, <name>
LOOSE_PLACEHOLDER_REGEX = re.compile(r"\{\{.*?\}\}|\$\{.*?\}|\{.*?\}|<.*?>")

# Bare JavaScript identifier
IDENTIFIER_REGEX = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")

# Request URL/name markers
LOGIN_URL_MARKERS = ("/login", "/auth", "/token")
LOGIN_NAME_MARKERS = ("login", "auth")
SESSION_URL_MARKERS = ("/session",)
SESSION_NAME_MARKERS = ("session",)
OAUTH_URL_MARKERS = ("/oauth", "/authorize")
CREATE_URL_MARKERS = ("/create", "/add")
CREATE_NAME_MARKERS = ("create", "add")
CRITICAL_URL_MARKERS = ("/login", "/auth", "/token", "/session")
CRITICAL_NAME_MARKERS = ("login", "auth", "token", "session")

# Example-response header keys worth extracting
RESPONSE_HEADER_MARKERS = ("token", "authorization", "cookie")

# Framework built-in dynamic values ({{$guid}}, {{$timestamp}}, ...)
BUILTIN_SIGIL = "$"


def find_placeholders(text: str | None) -> list[str]:
    """Return placeholder names (``{{x}}`` or ``${x}``) in order of appearance."""
    if not text or not isinstance(text, str):
        return []
    return [(m.group(1) or m.group(2)).strip() for m in PLACEHOLDER_REGEX.finditer(text)]


def has_placeholder(text: str | None) -> bool:
    """Check whether text contains a ``{{x}}`` or ``${x}`` placeholder."""
    return bool(text) and isinstance(text, str) and PLACEHOLDER_REGEX.search(text) is not None


def has_loose_placeholder(text: str | None) -> bool:
    """Check for any placeholder-like shape, including ``{x}`` and ``<x>``."""
    return bool(text) and isinstance(text, str) and LOOSE_PLACEHOLDER_REGEX.search(text) is not None


def contains_any(text: str, markers: tuple[str, ...]) -> bool:
    """Case-insensitive substring check against a marker table."""
    lowered = text.lower()
    return any(marker in lowered for marker in markers)


def is_identifier(name: str) -> bool:
    """Check whether name can be used as a bare JavaScript property name."""
    return bool(IDENTIFIER_REGEX.match(name))


def is_builtin(name: str) -> bool:
    """Check whether name is a framework built-in dynamic value."""
    return name.startswith(BUILTIN_SIGIL)


def property_access(base: str, name: str) -> str:
    """Render ``base.name``, or ``base["name"]`` when name is not an identifier."""
    if is_identifier(name):
        return f"{base}.{name}"
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'{base}["{escaped}"]'
