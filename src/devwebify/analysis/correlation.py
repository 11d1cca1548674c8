"""Correlation detection across an ordered request sequence.

Two forward passes over the requests:

1. Produce pass: every request contributes produced-value candidates (script
   writes in its test script, URL/name heuristics, example-response headers).
   Candidates accumulate in a per-name registry tagged with the producing
   request's sequence index.
2. Consume pass: every request contributes consumed names (script reads,
   header/URL/body placeholders). Each consumed name that has a producer with
   a strictly smaller index becomes a ``CorrelationRule`` pointing at the most
   recent such producer.

Names with no earlier producer are dropped without error; they remain
visible as unresolved placeholders in the generated script.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any
from urllib.parse import parse_qsl, urlsplit

from devwebify.analysis.patterns import (
    CREATE_NAME_MARKERS,
    CREATE_URL_MARKERS,
    LOGIN_NAME_MARKERS,
    LOGIN_URL_MARKERS,
    LOOSE_PLACEHOLDER_REGEX,
    OAUTH_URL_MARKERS,
    RESPONSE_HEADER_MARKERS,
    SESSION_NAME_MARKERS,
    SESSION_URL_MARKERS,
    contains_any,
    find_placeholders,
    has_loose_placeholder,
)
from devwebify.analysis.scripts import ExtractorType, find_writes, mine_script
from devwebify.collection.models import BodyMode, ConversionWarning, Request
from devwebify.logging import get_logger

LOG = get_logger(__name__)

__all__ = [
    "ConsumedValue",
    "CorrelationResult",
    "CorrelationRule",
    "ExtractorType",
    "ProducedValue",
    "ProducerRegistry",
    "build_registry",
    "correlation_summary",
    "detect_consumed_values",
    "detect_correlations",
    "detect_produced_values",
    "infer_type",
]

# (substring of lower-cased name, inferred type), first match wins
TYPE_RULES: tuple[tuple[str, str], ...] = (
    ("token", "token"),
    ("session", "sessionId"),
    ("auth", "auth"),
    ("id", "id"),
    ("csrf", "csrf"),
    ("nonce", "nonce"),
    ("timestamp", "timestamp"),
)

DEFAULT_AUTH_TOKEN_NAME = "authToken"


def infer_type(name: str, expression: str = "") -> str:
    """Infer a descriptive value type from a variable name.

    The type is informational (comments, report grouping); it never affects
    which rules are created.
    """
    lowered = name.lower()
    if "token" in expression.lower():
        return "token"
    for marker, value_type in TYPE_RULES:
        if marker in lowered:
            return value_type
    return "dynamic"


@dataclass(frozen=True)
class ProducedValue:
    """A value some request's response (or test script) makes available.

    Attributes:
        name: Variable name the value is stored under.
        type: Inferred value type (token, sessionId, id, header, ...).
        extractor_type: How to pull the value from the response.
        extract_path: JSON path, header name, cookie name, or left boundary.
        producer_request: Name of the producing request.
        producer_index: Sequence index of the producing request.
        source: ``script``, ``heuristic`` or ``response_header``.
        left_bound: Left delimiter for boundary extractors.
        right_bound: Right delimiter for boundary extractors.
    """

    name: str
    type: str
    extractor_type: ExtractorType
    extract_path: str
    producer_request: str
    producer_index: int
    source: str = "script"
    left_bound: str | None = None
    right_bound: str | None = None


@dataclass(frozen=True)
class ConsumedValue:
    """A variable name a request reads, and where it reads it."""

    name: str
    type: str
    location: str
    path: str


@dataclass(frozen=True)
class CorrelationRule:
    """Links one producer to one consumer for one variable name.

    Invariant: ``producer_index < consumer_index``.
    """

    name: str
    type: str
    producer_request: str
    producer_index: int
    consumer_request: str
    consumer_index: int
    extractor_type: ExtractorType
    extract_path: str
    usage_location: str
    usage_path: str
    left_bound: str | None = None
    right_bound: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["extractor_type"] = str(self.extractor_type)
        return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True)
class ProducerRegistry:
    """Read-only map of variable name -> producers in sequence order."""

    entries: Mapping[str, tuple[ProducedValue, ...]] = field(default_factory=lambda: MappingProxyType({}))

    def __contains__(self, name: object) -> bool:
        return name in self.entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def producers(self, name: str) -> tuple[ProducedValue, ...]:
        return self.entries.get(name, ())

    def latest_before(self, name: str, index: int) -> ProducedValue | None:
        """Return the producer of ``name`` with the greatest index below ``index``."""
        eligible = [p for p in self.producers(name) if p.producer_index < index]
        if not eligible:
            return None
        return max(eligible, key=lambda p: p.producer_index)


@dataclass(frozen=True)
class CorrelationResult:
    """Output of correlation detection."""

    rules: tuple[CorrelationRule, ...] = ()
    registry: ProducerRegistry = field(default_factory=ProducerRegistry)
    warnings: tuple[ConversionWarning, ...] = ()

    @property
    def names(self) -> set[str]:
        return {rule.name for rule in self.rules}

    def produced_by(self, index: int) -> list[CorrelationRule]:
        """Rules whose producer is the request at ``index``, first rule per name."""
        seen: dict[str, CorrelationRule] = {}
        for rule in self.rules:
            if rule.producer_index == index:
                seen.setdefault(rule.name, rule)
        return list(seen.values())

    def consumed_by(self, index: int) -> list[CorrelationRule]:
        return [rule for rule in self.rules if rule.consumer_index == index]


# -- produce pass -----------------------------------------------------------


def _heuristic_candidates(request: Request, produced: dict[str, ProducedValue]) -> Iterator[ProducedValue]:
    url = request.url or ""
    name = request.name or ""

    def candidate(var: str, value_type: str, extractor: ExtractorType, path: str, **bounds: str) -> ProducedValue:
        return ProducedValue(
            name=var,
            type=value_type,
            extractor_type=extractor,
            extract_path=path,
            producer_request=request.name,
            producer_index=request.index,
            source="heuristic",
            **bounds,
        )

    if contains_any(url, LOGIN_URL_MARKERS) or contains_any(name, LOGIN_NAME_MARKERS):
        if not any(p.type == "token" for p in produced.values()):
            yield candidate(DEFAULT_AUTH_TOKEN_NAME, "token", ExtractorType.JSON, "$.access_token")
        yield candidate("userId", "id", ExtractorType.JSON, "$.userId")

    if contains_any(url, SESSION_URL_MARKERS) or contains_any(name, SESSION_NAME_MARKERS):
        yield candidate("sessionId", "sessionId", ExtractorType.JSON, "$.sessionId")

    if contains_any(url, OAUTH_URL_MARKERS):
        yield candidate("authCode", "token", ExtractorType.BOUNDARY, "code=", left_bound="code=", right_bound="&")

    if request.method.upper() == "POST" and (
        contains_any(url, CREATE_URL_MARKERS) or contains_any(name, CREATE_NAME_MARKERS)
    ):
        yield candidate("createdId", "id", ExtractorType.JSON, "$.id")


def detect_produced_values(request: Request) -> list[ProducedValue]:
    """Return the values a request makes available to later requests.

    Sources, in precedence order (first candidate per name wins):
    test-script writes, URL/name heuristics, example-response headers.
    """
    produced: dict[str, ProducedValue] = {}

    for written in find_writes(request.test_script):
        produced.setdefault(
            written.name,
            ProducedValue(
                name=written.name,
                type=infer_type(written.name, written.expression),
                extractor_type=written.extractor_type,
                extract_path=written.extract_path,
                producer_request=request.name,
                producer_index=request.index,
                source="script",
            ),
        )

    for value in list(_heuristic_candidates(request, produced)):
        produced.setdefault(value.name, value)

    for header in request.response_headers:
        if header.key and contains_any(header.key, RESPONSE_HEADER_MARKERS):
            produced.setdefault(
                header.key,
                ProducedValue(
                    name=header.key,
                    type="header",
                    extractor_type=ExtractorType.HEADER,
                    extract_path=header.key,
                    producer_request=request.name,
                    producer_index=request.index,
                    source="response_header",
                ),
            )

    return list(produced.values())


def _ordered(requests: Iterable[Request]) -> list[Request]:
    return sorted(requests, key=lambda r: r.index)


def _malformed(request: Request, stage: str, exc: Exception) -> ConversionWarning:
    LOG.warning("correlation_request_skipped", stage=stage, request=request.name, error=str(exc))
    return ConversionWarning(
        category="malformed_request",
        message=f"{stage} analysis skipped: {exc}",
        request=request.name,
    )


def build_registry(requests: Iterable[Request]) -> tuple[ProducerRegistry, list[ConversionWarning]]:
    """Run the produce pass over all requests.

    Returns:
        Tuple of (registry, warnings for requests whose analysis failed).
    """
    accumulated: dict[str, list[ProducedValue]] = {}
    warnings: list[ConversionWarning] = []
    for request in _ordered(requests):
        try:
            values = detect_produced_values(request)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            warnings.append(_malformed(request, "produce", exc))
            continue
        for value in values:
            accumulated.setdefault(value.name, []).append(value)

    entries = MappingProxyType({name: tuple(values) for name, values in accumulated.items()})
    return ProducerRegistry(entries=entries), warnings


# -- consume pass -----------------------------------------------------------


def _loose_name(value: str) -> str | None:
    match = LOOSE_PLACEHOLDER_REGEX.search(value)
    if not match:
        return None
    inner = match.group(0)
    for opener, closer in (("{{", "}}"), ("${", "}"), ("{", "}"), ("<", ">")):
        if inner.startswith(opener) and inner.endswith(closer):
            inner = inner[len(opener) : len(inner) - len(closer)]
            break
    return inner.strip() or None


def _placeholder_names(value: Any) -> list[str]:
    """Names referenced in a value, accepting the looser ``{x}``/``<x>`` shapes as a fallback."""
    if not isinstance(value, str) or not has_loose_placeholder(value):
        return []
    names = find_placeholders(value)
    if names:
        return names
    loose = _loose_name(value)
    return [loose] if loose else []


def _walk_json(node: Any, path: str) -> Iterator[tuple[str, str]]:
    if isinstance(node, dict):
        for key, value in node.items():
            yield from _walk_json(value, f"{path}.{key}")
    elif isinstance(node, list):
        for i, value in enumerate(node):
            yield from _walk_json(value, f"{path}[{i}]")
    else:
        for name in _placeholder_names(node):
            yield name, path


def _url_consumption(url: str) -> Iterator[ConsumedValue]:
    try:
        parts = urlsplit(url)
    except ValueError:
        LOG.debug("url_split_failed", url=url)
        for name in find_placeholders(url):
            yield ConsumedValue(name=name, type="url", location="url", path="url")
        return

    prefix = f"{parts.scheme}://{parts.netloc}{parts.path}" if parts.scheme else f"{parts.netloc}{parts.path}"
    for name in find_placeholders(prefix):
        yield ConsumedValue(name=name, type="path", location="url", path="path")
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        for name in _placeholder_names(value):
            yield ConsumedValue(name=name, type="query", location="queryString", path=key)


def _body_consumption(request: Request) -> Iterator[ConsumedValue]:
    body = request.body
    if body is None or body.mode == BodyMode.NONE:
        return
    if body.mode in (BodyMode.URLENCODED, BodyMode.FORMDATA):
        for field_ in body.active_fields:
            for name in _placeholder_names(field_.value):
                yield ConsumedValue(name=name, type="body", location="body", path=field_.key)
        return

    parsed = body.parsed_json()
    if parsed is not None:
        for name, path in _walk_json(parsed, "$"):
            yield ConsumedValue(name=name, type="body", location="body", path=path)
        return

    if body.raw and body.mode == BodyMode.JSON:
        LOG.debug("request_body_not_json", request=request.name)
    for name in find_placeholders(body.raw):
        yield ConsumedValue(name=name, type="body", location="body", path="$")


def _header_consumption(request: Request) -> Iterator[ConsumedValue]:
    for header in request.active_headers:
        value = header.value or ""
        names = _placeholder_names(value)
        for name in names:
            yield ConsumedValue(name=name, type="header", location="headers", path=header.key)

        if header.key.lower() == "authorization" and has_loose_placeholder(value):
            yield ConsumedValue(
                name=names[0] if names else DEFAULT_AUTH_TOKEN_NAME,
                type="token",
                location="headers",
                path="Authorization",
            )
        if "bearer" in value.lower() and names:
            yield ConsumedValue(name=names[0], type="token", location="headers", path=header.key)


def detect_consumed_values(request: Request) -> list[ConsumedValue]:
    """Return the names a request reads, first location per name.

    Sources, in order: script reads, headers, URL path and query, body.
    """
    candidates: list[ConsumedValue] = []
    for kind, text in request.scripts():
        for name in mine_script(text).reads:
            candidates.append(ConsumedValue(name=name, type="variable", location="script", path=kind))
    candidates.extend(_header_consumption(request))
    candidates.extend(_url_consumption(request.url or ""))
    candidates.extend(_body_consumption(request))

    consumed: dict[str, ConsumedValue] = {}
    for candidate in candidates:
        consumed.setdefault(candidate.name, candidate)
    return list(consumed.values())


def detect_correlations(requests: Iterable[Request]) -> CorrelationResult:
    """Produce the ordered correlation rules for a request sequence.

    Args:
        requests: Requests carrying their sequence ``index``.

    Returns:
        Rules in consumer order (then consumption order within a request),
        the producer registry, and warnings for requests that were skipped.
    """
    ordered = _ordered(requests)
    registry, warnings = build_registry(ordered)

    rules: list[CorrelationRule] = []
    emitted: set[tuple[str, str]] = set()
    for request in ordered:
        try:
            consumed = detect_consumed_values(request)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            warnings.append(_malformed(request, "consume", exc))
            continue

        for value in consumed:
            if value.name not in registry:
                continue
            producer = registry.latest_before(value.name, request.index)
            if producer is None:
                LOG.debug("correlation_no_prior_producer", name=value.name, request=request.name)
                continue
            key = (value.name, request.name)
            if key in emitted:
                continue
            emitted.add(key)
            rules.append(
                CorrelationRule(
                    name=value.name,
                    type=producer.type or value.type,
                    producer_request=producer.producer_request,
                    producer_index=producer.producer_index,
                    consumer_request=request.name,
                    consumer_index=request.index,
                    extractor_type=producer.extractor_type,
                    extract_path=producer.extract_path,
                    usage_location=value.location,
                    usage_path=value.path,
                    left_bound=producer.left_bound,
                    right_bound=producer.right_bound,
                )
            )

    LOG.info("correlations_detected", count=len(rules), produced_names=len(registry))
    return CorrelationResult(rules=tuple(rules), registry=registry, warnings=tuple(warnings))


def correlation_summary(rules: Iterable[CorrelationRule]) -> dict[str, Any]:
    """Summarize rules for the analysis report."""
    rules = list(rules)
    by_type: dict[str, int] = {}
    for rule in rules:
        by_type[rule.type] = by_type.get(rule.type, 0) + 1

    recommendations: list[str] = []
    if "token" in by_type:
        recommendations.append("Authentication tokens detected. Ensure proper token extraction and usage.")
    if "csrf" in by_type:
        recommendations.append("CSRF tokens detected. Verify CSRF handling in your application.")
    if not rules:
        recommendations.append("No automatic correlations detected. Manual review recommended.")

    return {
        "total": len(rules),
        "by_type": by_type,
        "recommendations": recommendations,
        "rules": [rule.to_dict() for rule in rules],
    }
