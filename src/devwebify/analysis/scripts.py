"""Pattern-based mining of variable reads and writes from collection scripts.

This is a best-effort heuristic, not a JavaScript parser. Each supported
scripting dialect contributes rows to the ``WRITE_RULES`` and ``READ_RULES``
tables; supporting a new idiom means adding a row, not new parsing logic.

Written variables also get a guess at how their value could be extracted
from a response, based only on substrings of the right-hand-side expression:

- ``jsonData`` / ``response.body`` / ``JSON.parse`` (and friends) => JSON path,
  derived from the dotted access suffix (``jsonData.a["b"]`` -> ``$.a.b``)
- ``header`` / ``getResponseHeader`` => response header
- ``cookie`` => cookie
- anything else => JSON path ``$.<name>``
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum

from devwebify.collection.models import Request


class ExtractorType(StrEnum):
    """How a correlated value is pulled out of a response."""

    JSON = "json"
    BOUNDARY = "boundary"
    HEADER = "header"
    COOKIE = "cookie"
    REGEX = "regex"
    TEXTCHECK = "textcheck"


@dataclass(frozen=True)
class MatchRule:
    """One dialect idiom for reading or writing a variable.

    Write patterns match up to and including the comma after the variable
    name; the value expression is then read as the balanced remainder of the
    call. Read patterns match the whole call and capture ``name``.
    """

    dialect: str
    idiom: str
    pattern: re.Pattern[str]


WRITE_RULES: tuple[MatchRule, ...] = (
    MatchRule(
        "postman",
        "pm.<scope>.set",
        re.compile(
            r"""pm\.(?:environment|globals|collectionVariables|variables)\.set\s*\(\s*["'](?P<name>[^"']+)["']\s*,"""
        ),
    ),
    MatchRule(
        "postman",
        "postman.set<Scope>Variable",
        re.compile(r"""postman\.set(?:Environment|Global)Variable\s*\(\s*["'](?P<name>[^"']+)["']\s*,"""),
    ),
    MatchRule(
        "bruno",
        "bru.set<Scope>Var",
        re.compile(r"""bru\.(?:setVar|setEnvVar|setGlobalEnvVar)\s*\(\s*["'](?P<name>[^"']+)["']\s*,"""),
    ),
)

READ_RULES: tuple[MatchRule, ...] = (
    MatchRule(
        "postman",
        "pm.<scope>.get",
        re.compile(
            r"""pm\.(?:environment|globals|collectionVariables|variables)\.get\s*\(\s*["'](?P<name>[^"']+)["']\s*\)"""
        ),
    ),
    MatchRule(
        "postman",
        "postman.get<Scope>Variable",
        re.compile(r"""postman\.get(?:Environment|Global)Variable\s*\(\s*["'](?P<name>[^"']+)["']\s*\)"""),
    ),
    MatchRule(
        "bruno",
        "bru.get<Scope>Var",
        re.compile(
            r"""bru\.(?:getVar|getEnvVar|getGlobalEnvVar|getRequestVar)\s*\(\s*["'](?P<name>[^"']+)["']\s*\)"""
        ),
    ),
)

JSON_MARKERS = (
    "jsonData",
    "response.body",
    "JSON.parse",
    "responseBody",
    "res.body",
    "res.getBody",
    ".json()",
)
HEADER_MARKERS = ("header", "getResponseHeader")
COOKIE_MARKERS = ("cookie",)

_JSON_ACCESS_REGEX = re.compile(
    r"""(?:jsonData|responseBody|response\.body|res\.body|res\.getBody\(\)|\.json\(\)|JSON\.parse\([^)]*\))"""
    r"""(?P<suffix>(?:\s*(?:\.[A-Za-z_$][\w$]*|\[\s*["'][^"']+["']\s*\]|\[\s*\d+\s*\]))+)"""
)
_BRACKET_STRING_REGEX = re.compile(r"""\[\s*["']([^"']+)["']\s*\]""")
_BRACKET_INDEX_REGEX = re.compile(r"\[\s*(\d+)\s*\]")
_HEADER_NAME_REGEX = re.compile(r"""[Hh]eaders?(?:\.get)?\s*\(\s*["']([^"']+)["']""")
_COOKIE_NAME_REGEX = re.compile(r"""[Cc]ookies?(?:\.get)?\s*\(\s*["']([^"']+)["']""")


@dataclass(frozen=True)
class WrittenVariable:
    """A variable a script sets, with a best-effort extractor guess."""

    name: str
    expression: str
    extractor_type: ExtractorType
    extract_path: str
    dialect: str


@dataclass(frozen=True)
class ScriptVariables:
    """Variables written and read by one script, in order of first appearance."""

    writes: tuple[WrittenVariable, ...] = ()
    reads: tuple[str, ...] = ()

    @property
    def written_names(self) -> list[str]:
        return [w.name for w in self.writes]


def call_argument(text: str, start: int) -> str:
    """Read the remainder of a call argument list starting at ``start``.

    Scans forward until the parenthesis that closes the call, skipping
    parentheses inside string literals. Unbalanced text yields everything up
    to the end of the line.
    """
    depth = 0
    quote: str | None = None
    i = start
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in "\"'`":
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            if depth == 0:
                return text[start:i].strip()
            depth -= 1
        elif ch == "\n" and depth == 0:
            break
        i += 1
    return text[start:i].strip().rstrip(";").strip()


def _normalize_json_suffix(suffix: str) -> str:
    suffix = re.sub(r"\s+", "", suffix)
    suffix = _BRACKET_STRING_REGEX.sub(r".\1", suffix)
    return _BRACKET_INDEX_REGEX.sub(r"[\1]", suffix)


def classify_expression(name: str, expression: str) -> tuple[ExtractorType, str]:
    """Guess the extractor type and path for a value expression.

    Args:
        name: The variable name being written.
        expression: The right-hand-side expression text.

    Returns:
        Tuple of (extractor type, extract path). JSON paths start with ``$``;
        header and cookie paths are the header or cookie name.
    """
    if any(marker in expression for marker in JSON_MARKERS):
        match = _JSON_ACCESS_REGEX.search(expression)
        if match:
            return ExtractorType.JSON, f"${_normalize_json_suffix(match.group('suffix'))}"
        return ExtractorType.JSON, f"$.{name}"

    lowered = expression.lower()
    if any(marker.lower() in lowered for marker in HEADER_MARKERS):
        match = _HEADER_NAME_REGEX.search(expression)
        return ExtractorType.HEADER, match.group(1) if match else name

    if any(marker in lowered for marker in COOKIE_MARKERS):
        match = _COOKIE_NAME_REGEX.search(expression)
        return ExtractorType.COOKIE, match.group(1) if match else name

    return ExtractorType.JSON, f"$.{name}"


def find_writes(script: str | None) -> list[WrittenVariable]:
    """Find variables written by a script. First write of each name wins."""
    if not script or not isinstance(script, str):
        return []

    found: list[tuple[int, WrittenVariable]] = []
    for rule in WRITE_RULES:
        for match in rule.pattern.finditer(script):
            name = match.group("name").strip()
            expression = call_argument(script, match.end())
            extractor_type, extract_path = classify_expression(name, expression)
            found.append(
                (
                    match.start(),
                    WrittenVariable(
                        name=name,
                        expression=expression,
                        extractor_type=extractor_type,
                        extract_path=extract_path,
                        dialect=rule.dialect,
                    ),
                )
            )

    seen: set[str] = set()
    writes: list[WrittenVariable] = []
    for _, written in sorted(found, key=lambda pair: pair[0]):
        if written.name not in seen:
            seen.add(written.name)
            writes.append(written)
    return writes


def find_reads(script: str | None) -> list[str]:
    """Find variables read by a script, in order of first appearance."""
    if not script or not isinstance(script, str):
        return []

    found: list[tuple[int, str]] = []
    for rule in READ_RULES:
        found.extend((m.start(), m.group("name").strip()) for m in rule.pattern.finditer(script))
    return list(dict.fromkeys(name for _, name in sorted(found)))


def mine_script(script: str | None) -> ScriptVariables:
    """Mine one script for written and read variables.

    Never raises: text with no recognizable idioms (or no text at all)
    yields empty results.
    """
    return ScriptVariables(writes=tuple(find_writes(script)), reads=tuple(find_reads(script)))


def collect_script_writes(requests: Iterable[Request]) -> list[str]:
    """Return every variable name set by any script of any request.

    Scans pre-request and test scripts collection-wide, in sequence order.
    """
    names: dict[str, None] = {}
    for request in requests:
        for _, text in request.scripts():
            for written in find_writes(text):
                names.setdefault(written.name, None)
    return list(names)
