"""DevWeb extractor declarations, one renderer per extractor type."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from devwebify.analysis.correlation import CorrelationRule
from devwebify.analysis.patterns import property_access
from devwebify.analysis.scripts import ExtractorType
from devwebify.generator.jscode import JsExpr, js_string

HEADER_LINE_END = "\r\n"


@dataclass(frozen=True)
class Extractor:
    """A declarative rule for pulling a named value out of a response.

    ``path`` is a JSON path for JSON extractors, the header or cookie name
    for header and cookie extractors, and the pattern for regex extractors.
    """

    name: str
    type: ExtractorType
    path: str = ""
    left_bound: str | None = None
    right_bound: str | None = None
    text: str | None = None
    value_type: str = "dynamic"

    @classmethod
    def from_rule(cls, rule: CorrelationRule) -> Extractor:
        return cls(
            name=rule.name,
            type=rule.extractor_type,
            path=rule.extract_path,
            left_bound=rule.left_bound,
            right_bound=rule.right_bound,
            value_type=rule.type,
        )

    @classmethod
    def text_check(cls, name: str, text: str) -> Extractor:
        return cls(name=name, type=ExtractorType.TEXTCHECK, text=text, value_type="validation")

    @property
    def is_validation(self) -> bool:
        return self.type == ExtractorType.TEXTCHECK


def render_json(extractor: Extractor) -> str:
    path = extractor.path or f"$.{extractor.name}"
    return f"new load.JsonPathExtractor({js_string(extractor.name)}, {js_string(path)})"


def render_boundary(extractor: Extractor) -> str:
    left = extractor.left_bound if extractor.left_bound is not None else "<"
    right = extractor.right_bound if extractor.right_bound is not None else ">"
    return f"new load.BoundaryExtractor({js_string(extractor.name)}, {js_string(left)}, {js_string(right)})"


def render_header(extractor: Extractor) -> str:
    header = extractor.path or extractor.name
    left = js_string(f"{header}: ")
    return f"new load.BoundaryExtractor({js_string(extractor.name)}, {left}, {js_string(HEADER_LINE_END)})"


def render_cookie(extractor: Extractor) -> str:
    return f"new load.CookieExtractor({js_string(extractor.name)}, {js_string(extractor.path or extractor.name)})"


def render_regex(extractor: Extractor) -> str:
    return f"new load.RegexpExtractor({js_string(extractor.name)}, {js_string(extractor.path or '(.+)')})"


def render_textcheck(extractor: Extractor) -> str:
    return (
        f"new load.TextCheckExtractor({js_string(extractor.name)}, "
        f"{{text: {js_string(extractor.text or '')}, scope: load.ExtractorScope.Body, failOn: false}})"
    )


EXTRACTOR_RENDERERS: dict[ExtractorType, Callable[[Extractor], str]] = {
    ExtractorType.JSON: render_json,
    ExtractorType.BOUNDARY: render_boundary,
    ExtractorType.HEADER: render_header,
    ExtractorType.COOKIE: render_cookie,
    ExtractorType.REGEX: render_regex,
    ExtractorType.TEXTCHECK: render_textcheck,
}


def render_extractor(extractor: Extractor) -> JsExpr:
    """Render an extractor declaration."""
    return JsExpr(EXTRACTOR_RENDERERS[extractor.type](extractor))


def extracted_value(response_var: str, name: str) -> str:
    """Expression reading an extracted value from a response object."""
    return property_access(f"{response_var}.extractors", name)
