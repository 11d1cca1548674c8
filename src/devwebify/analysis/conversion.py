"""Line-by-line conversion of collection scripts into DevWeb statements.

Each line is matched against an ordered rule table; the first rule that
applies produces the output. Lines nothing understands are kept as
``// TODO: Manual conversion needed`` comments and reported as warnings, so
the generated script stays syntactically valid while the original logic
remains visible for a human to port. Brackets are tracked across the lines
kept as live code: a closing line stays live only when its opener did.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from devwebify.analysis.patterns import property_access
from devwebify.analysis.scripts import COOKIE_MARKERS, HEADER_MARKERS, JSON_MARKERS, WRITE_RULES, call_argument
from devwebify.logging import get_logger

LOG = get_logger(__name__)

ScriptKind = Literal["pre-request", "test"]

_READ_CALL_REGEX = re.compile(
    r"""(?:pm\.(?:environment|globals|collectionVariables|variables)\.get"""
    r"""|postman\.get(?:Environment|Global)Variable"""
    r"""|bru\.(?:getVar|getEnvVar|getGlobalEnvVar|getRequestVar))"""
    r"""\s*\(\s*["'](?P<name>[^"']+)["']\s*\)"""
)
_STATUS_REGEXES = (
    re.compile(r"\.to\.have\.status\s*\(\s*(\d{3})\s*\)"),
    re.compile(r"\.(?:code|status)\s*\)?\s*\.to\.(?:equal|eql|be)\s*\(\s*(\d{3})\s*\)"),
)
_TEXT_EXPECTATION_REGEX = re.compile(
    r"""expect\s*\(\s*(?:pm\.response\.text\(\)|responseBody|res\.getBody\(\)|res\.body)\s*\)"""
    r"""\.to\.(?:include|contain|have\.string)\s*\(\s*["']([^"']+)["']\s*\)"""
)
_TEST_NAME_REGEX = re.compile(r"""(?:pm\.)?test\s*\(\s*["']([^"']+)["']""")
_BODY_BINDING_REGEX = re.compile(
    r"""^(?:const|let|var)\s+\w+\s*=\s*"""
    r"""(?:pm\.response\.json\(\)|JSON\.parse\(\s*(?:responseBody|pm\.response\.text\(\))\s*\)"""
    r"""|res\.getBody\(\)|res\.body)"""
    r"""\s*;?$"""
)
_DECLARATION_REGEX = re.compile(r"^(?:const|let|var)\s+[\w$]+\s*=")
_CLOSER_REGEX = re.compile(r"^[\s})\];,]+$")
_BLOCK_CONTINUATION_REGEX = re.compile(r"^\}\s*(?:else(?:\s+if\s*\(.*\))?|catch\s*(?:\(.*\))?|finally)\s*\{$")
_CONSOLE_LOG_REGEX = re.compile(r"console\.log\((.*)\)")
_STRING_LITERAL_REGEX = re.compile(r"""(["'`])(?:\\.|(?!\1).)*\1""")
_CLOSING_BRACKETS = {"{": "}", "(": ")", "[": "]"}

RESPONSE_ACCESS_MARKERS = ("res.body", "res.getBody", "pm.response", "responseBody", "jsonData")
BUILTIN_CALLS = ("Date.now()", "new Date(", "Math.random()", "JSON.parse", "JSON.stringify")


@dataclass
class LineResult:
    """Output of one rule applied to one line."""

    code: str | None = None
    warning: str | None = None
    unsupported: bool = False
    assertion: str | None = None
    expected_status: int | None = None
    validation: str | None = None
    captured: str | None = None


@dataclass(frozen=True)
class LineRule:
    """One entry of the conversion table."""

    name: str
    applies: Callable[[str, ScriptKind], bool]
    convert: Callable[[str, ScriptKind], LineResult]


@dataclass(frozen=True)
class ConvertedScript:
    """A converted script, ready to be indented into a request block.

    Attributes:
        kind: ``"pre-request"`` or ``"test"``.
        lines: DevWeb statements and comments, one per entry.
        warnings: Messages for lines that need manual conversion.
        assertions: Names of ``pm.test`` blocks, kept for the report.
        expected_statuses: Status codes the script asserts on.
        validations: Text the script expects in the response body.
        captured: Names written from the response, which must be supplied
            by response extractors rather than script code.
        has_unsupported: Whether any line was left for manual conversion.
    """

    kind: str
    lines: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    assertions: tuple[str, ...] = ()
    expected_statuses: tuple[int, ...] = ()
    validations: tuple[str, ...] = ()
    captured: tuple[str, ...] = ()
    has_unsupported: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.lines


def track_brackets(code: str, open_brackets: tuple[str, ...] = ()) -> tuple[str, ...] | None:
    """Return the brackets still open after ``code``, starting from ``open_brackets``.

    Brackets inside string literals are ignored. Returns None when ``code``
    closes a bracket that is not open.
    """
    stack = list(open_brackets)
    for char in _STRING_LITERAL_REGEX.sub('""', code):
        if char in _CLOSING_BRACKETS:
            stack.append(char)
        elif char in "})]":
            if not stack or _CLOSING_BRACKETS[stack[-1]] != char:
                return None
            stack.pop()
    return tuple(stack)


def _replace_reads(text: str) -> str:
    return _READ_CALL_REGEX.sub(lambda m: property_access("load.global", m.group("name")), text)


def _todo(line: str, message: str | None = None) -> LineResult:
    return LineResult(
        code=f"// TODO: Manual conversion needed - {line}",
        warning=message or f"Unsupported code pattern: {line[:50]}",
        unsupported=True,
    )


def _is_response_expression(expression: str) -> bool:
    lowered = expression.lower()
    return (
        any(marker in expression for marker in JSON_MARKERS)
        or any(marker.lower() in lowered for marker in HEADER_MARKERS)
        or any(marker in lowered for marker in COOKIE_MARKERS)
    )


def _write_match(line: str) -> re.Match[str] | None:
    for rule in WRITE_RULES:
        match = rule.pattern.search(line)
        if match:
            return match
    return None


def _convert_write(line: str, kind: ScriptKind) -> LineResult:
    match = _write_match(line)
    if match is None:
        return _todo(line)
    name = match.group("name").strip()
    expression = call_argument(line, match.end())
    if kind == "test" and _is_response_expression(expression):
        return LineResult(code=f"// {name} is captured by a response extractor: {line}", captured=name)
    if not expression or track_brackets(expression) != ():
        return _todo(line)
    return LineResult(code=f"{property_access('load.global', name)} = {_replace_reads(expression)};")


def _convert_expectation(line: str, kind: ScriptKind) -> LineResult:
    for regex in _STATUS_REGEXES:
        match = regex.search(line)
        if match:
            status = int(match.group(1))
            return LineResult(code=f"// Expected status {status}", expected_status=status)
    match = _TEXT_EXPECTATION_REGEX.search(line)
    if match:
        text = match.group(1)
        return LineResult(code=f'// Expected response text: "{text}"', validation=text)
    return _todo(line, f"Complex assertion needs manual conversion: {line[:50]}")


def _convert_test_block(line: str, kind: ScriptKind) -> LineResult:
    name = _TEST_NAME_REGEX.search(line).group(1)
    comment = f"// Assertion: {name}"
    # single-line tests carry their expectation inline
    if _is_expectation(line):
        inline = _convert_expectation(line, kind)
        if not inline.unsupported:
            inline.code = f"{comment}\n{inline.code}"
            inline.assertion = name
            return inline
    return LineResult(code=comment, assertion=name)


def _convert_crypto(line: str, kind: ScriptKind) -> LineResult:
    if "CryptoJS" in line:
        return _todo(line, "CryptoJS not supported - convert to Node.js crypto module")
    return LineResult(code=line)


def _is_expectation(line: str) -> bool:
    return "expect(" in line or ".to.have.status" in line


def _keep(line: str, kind: ScriptKind) -> LineResult:
    return LineResult(code=line)


LINE_RULES: tuple[LineRule, ...] = (
    LineRule("block-closer", lambda line, kind: bool(_CLOSER_REGEX.match(line)), _keep),
    LineRule("block-continuation", lambda line, kind: bool(_BLOCK_CONTINUATION_REGEX.match(line)), _keep),
    LineRule("variable-write", lambda line, kind: _write_match(line) is not None, _convert_write),
    LineRule(
        "test-block",
        lambda line, kind: kind == "test" and _TEST_NAME_REGEX.search(line) is not None,
        _convert_test_block,
    ),
    LineRule("expectation", lambda line, kind: kind == "test" and _is_expectation(line), _convert_expectation),
    LineRule(
        "response-binding",
        lambda line, kind: kind == "test" and bool(_BODY_BINDING_REGEX.match(line)),
        lambda line, kind: LineResult(code=f"// Response body is read through extractors: {line}"),
    ),
    LineRule(
        "response-access",
        lambda line, kind: kind == "test" and any(m in line for m in RESPONSE_ACCESS_MARKERS),
        lambda line, kind: _todo(
            line, "Response body access requires manual conversion with proper response variable"
        ),
    ),
    LineRule(
        "variable-read",
        lambda line, kind: _READ_CALL_REGEX.search(line) is not None,
        lambda line, kind: LineResult(code=_replace_reads(line)),
    ),
    LineRule("crypto", lambda line, kind: "crypto" in line or "CryptoJS" in line, _convert_crypto),
    LineRule(
        "console-log",
        lambda line, kind: "console.log" in line,
        lambda line, kind: LineResult(code=_CONSOLE_LOG_REGEX.sub(r"load.log(\1)", line)),
    ),
    LineRule("builtin", lambda line, kind: any(call in line for call in BUILTIN_CALLS), _keep),
    LineRule("declaration", lambda line, kind: bool(_DECLARATION_REGEX.match(line)), _keep),
)


def convert_line(line: str, kind: ScriptKind) -> LineResult:
    """Convert one stripped, non-empty script line using the first matching rule."""
    for rule in LINE_RULES:
        if rule.applies(line, kind):
            return rule.convert(line, kind)
    return _todo(line)


def convert_script(text: str | None, kind: ScriptKind) -> ConvertedScript:
    """Convert a pre-request or test script to DevWeb statements.

    Never raises: empty or non-text input gives an empty result, and lines
    that cannot be converted become TODO comments with a warning.

    Args:
        text: Raw script text.
        kind: ``"pre-request"`` or ``"test"``.

    Returns:
        The converted script.
    """
    if not text or not isinstance(text, str) or not text.strip():
        return ConvertedScript(kind=kind)

    lines: list[str] = []
    warnings: list[str] = []
    assertions: list[str] = []
    statuses: list[int] = []
    validations: list[str] = []
    captured: list[str] = []
    unsupported = False
    open_brackets: tuple[str, ...] = ()

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("//"):
            continue
        result = convert_line(line, kind)
        for code in result.code.split("\n") if result.code else ():
            if code.startswith("//"):
                lines.append(code)
                continue
            after = track_brackets(code, open_brackets)
            if after is not None:
                open_brackets = after
                lines.append(code)
            elif _CLOSER_REGEX.match(code) or _BLOCK_CONTINUATION_REGEX.match(code):
                # opener was commented out
                lines.append(f"// {code}")
            else:
                todo = _todo(code, f"Unbalanced brackets need manual conversion: {code[:50]}")
                lines.append(todo.code)
                warnings.append(todo.warning)
                unsupported = True
        if result.warning:
            warnings.append(result.warning)
        if result.assertion:
            assertions.append(result.assertion)
        if result.expected_status is not None and result.expected_status not in statuses:
            statuses.append(result.expected_status)
        if result.validation and result.validation not in validations:
            validations.append(result.validation)
        if result.captured and result.captured not in captured:
            captured.append(result.captured)
        unsupported = unsupported or result.unsupported

    if open_brackets:
        lines.extend(_CLOSING_BRACKETS[char] for char in reversed(open_brackets))
        warnings.append("Script ends inside an open block; closing brackets were added")
        unsupported = True

    if warnings:
        LOG.debug("script_needs_manual_conversion", kind=kind, lines=len(warnings))

    return ConvertedScript(
        kind=kind,
        lines=tuple(lines),
        warnings=tuple(warnings),
        assertions=tuple(assertions),
        expected_statuses=tuple(statuses),
        validations=tuple(validations),
        captured=tuple(captured),
        has_unsupported=unsupported,
    )
