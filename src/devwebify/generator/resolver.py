"""Resolution of ``{{name}}`` placeholders into JavaScript expressions.

Resolution order for one name:

1. classified dynamic -> ``load.global.<name>``
2. classified parameterized -> ``load.params.<name>``
3. built-in sigil -> fixed literal from ``BUILTIN_VALUES`` (unknown sigils
   get a ``TODO_REPLACE`` marker)
4. classification disabled and the name is declared -> the declared value,
   inlined as text; correlated or script-set names -> ``load.global.<name>``
5. otherwise the ``{{name}}`` text is kept and a warning is recorded

Built-in values are fixed literals rather than random ones so that
repeated conversions produce identical scripts.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from devwebify.analysis.classifier import VariableClassification, VariableKind
from devwebify.analysis.patterns import TEMPLATE_VAR_REGEX, is_builtin, property_access
from devwebify.collection.models import ConversionWarning
from devwebify.generator.jscode import JsExpr, js_string, template_literal
from devwebify.logging import get_logger

LOG = get_logger(__name__)

FIXED_GUID = "00000000-0000-4000-8000-000000000000"

BUILTIN_VALUES: Mapping[str, str] = MappingProxyType(
    {
        "$guid": js_string(FIXED_GUID),
        "$randomUUID": js_string(FIXED_GUID),
        "$timestamp": "Math.floor(Date.now() / 1000)",
        "$isoTimestamp": "new Date().toISOString()",
        "$randomInt": "42",
        "$randomBoolean": "true",
        "$randomEmail": js_string("test.user@example.com"),
        "$randomExampleEmail": js_string("test.user@example.com"),
        "$randomUserName": js_string("testuser"),
        "$randomFirstName": js_string("John"),
        "$randomLastName": js_string("Doe"),
        "$randomFullName": js_string("John Doe"),
        "$randomCity": js_string("Springfield"),
        "$randomCountry": js_string("United States"),
        "$randomCountryCode": js_string("US"),
        "$randomStreetAddress": js_string("123 Main Street"),
        "$randomPhoneNumber": js_string("555-0100"),
        "$randomCompanyName": js_string("Example Corp"),
        "$randomJobTitle": js_string("Engineer"),
        "$randomWord": js_string("sample"),
        "$randomWords": js_string("sample words"),
        "$randomLoremWord": js_string("lorem"),
        "$randomLoremSentence": js_string("Lorem ipsum dolor sit amet."),
        "$randomAlphaNumeric": js_string("a"),
        "$randomColor": js_string("blue"),
        "$randomUrl": js_string("https://example.com"),
        "$randomIP": js_string("192.0.2.1"),
        "$randomPassword": js_string("P@ssw0rd123"),
        "$randomPrice": js_string("9.99"),
        "$randomDateFuture": js_string("2030-01-01T00:00:00.000Z"),
        "$randomDatePast": js_string("2020-01-01T00:00:00.000Z"),
    }
)


@dataclass
class Resolver:
    """Resolves placeholders for the generator and collects warnings.

    Attributes:
        classification: Variable classification, or None when disabled.
        declared: Declared variable values.
        runtime_names: Correlated and script-set names, used for run-time
            references when classification is disabled.
    """

    classification: VariableClassification | None
    declared: Mapping[str, Any] = field(default_factory=dict)
    runtime_names: frozenset[str] = frozenset()
    warnings: list[ConversionWarning] = field(default_factory=list)
    _warned: set[tuple[str, str, str | None]] = field(default_factory=set, init=False, repr=False)

    def _warn(self, category: str, name: str, message: str, request: str | None) -> None:
        key = (category, name, request)
        if key in self._warned:
            return
        self._warned.add(key)
        self.warnings.append(ConversionWarning(category=category, message=message, request=request))
        LOG.debug("placeholder_left_for_review", category=category, name=name, request=request)

    def reference(self, name: str, *, request: str | None = None) -> JsExpr | str | None:
        """Resolve one name.

        Returns:
            A ``JsExpr`` for run-time references and built-ins, a ``str`` for
            inlined declared values, or None when the name cannot be resolved
            (a warning is recorded).
        """
        if self.classification is not None:
            kind = self.classification.kind_of(name)
            if kind == VariableKind.DYNAMIC:
                return JsExpr(property_access("load.global", name))
            if kind == VariableKind.PARAMETERIZED:
                return JsExpr(property_access("load.params", name))

        if is_builtin(name):
            if name in BUILTIN_VALUES:
                return JsExpr(BUILTIN_VALUES[name])
            self._warn(
                "builtin_variable",
                name,
                f"Built-in variable {{{{{name}}}}} has no fixed substitute; replace TODO_REPLACE manually",
                request,
            )
            return JsExpr(js_string(f"TODO_REPLACE_{name}"))

        if self.classification is None:
            if name in self.declared:
                value = self.declared[name]
                return "" if value is None else str(value)
            if name in self.runtime_names:
                return JsExpr(property_access("load.global", name))

        self._warn(
            "unresolved_variable",
            name,
            f"Variable {{{{{name}}}}} is not declared, correlated or set by a script; left for manual review",
            request,
        )
        return None

    def render_text(self, text: str, *, request: str | None = None) -> str | JsExpr:
        """Resolve every ``{{name}}`` in text.

        Returns the text unchanged (a plain ``str``) when nothing resolves to
        an expression, otherwise a ``JsExpr`` (a bare reference or a
        template literal).
        """
        if not isinstance(text, str) or "{{" not in text:
            return text
        parts: list[str | JsExpr] = []
        position = 0
        for match in TEMPLATE_VAR_REGEX.finditer(text):
            parts.append(text[position : match.start()])
            resolved = self.reference(match.group(1).strip(), request=request)
            parts.append(match.group(0) if resolved is None else resolved)
            position = match.end()
        parts.append(text[position:])

        if not any(isinstance(part, JsExpr) for part in parts):
            return "".join(parts)
        return template_literal(parts)

    def render_value(self, value: Any, *, request: str | None = None) -> Any:
        """Resolve placeholders throughout a JSON-like value."""
        if isinstance(value, str):
            return self.render_text(value, request=request)
        if isinstance(value, dict):
            return {key: self.render_value(item, request=request) for key, item in value.items()}
        if isinstance(value, list):
            return [self.render_value(item, request=request) for item in value]
        return value

    def expression(self, value: Any, *, request: str | None = None) -> str:
        """Render a single value as JavaScript source (quoted unless it is an expression)."""
        if value is None:
            return '""'
        rendered = self.render_text(str(value), request=request)
        return rendered.code if isinstance(rendered, JsExpr) else js_string(rendered)


def resolver_for(
    classification: VariableClassification | None,
    declared: Mapping[str, Any],
    runtime_names: Iterable[str] = (),
) -> Resolver:
    return Resolver(classification=classification, declared=dict(declared), runtime_names=frozenset(runtime_names))
