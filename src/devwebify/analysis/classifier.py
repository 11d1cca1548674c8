"""Variable classification: dynamic (run-time state) vs parameterized (external data).

Rules, first match wins, each name classified exactly once:

1. named by a correlation rule -> dynamic
2. set by any script anywhere in the collection -> dynamic
3. declared with an empty value and named with the runtime prefix -> dynamic
4. starts with the built-in sigil (``$guid``, ``$timestamp``) -> built-in
5. everything else -> parameterized

The universe is every declared name, correlation name, and script-written
name. Names that are only referenced (never declared, produced, or written)
stay unclassified; the generator keeps their placeholder text and warns.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from devwebify.analysis.parameters import detect_parameter_type
from devwebify.analysis.patterns import find_placeholders, is_builtin
from devwebify.collection.models import Request
from devwebify.logging import get_logger

LOG = get_logger(__name__)

USERNAME_PATTERN = re.compile(r"username|user|email|login|account", re.IGNORECASE)
PASSWORD_PATTERN = re.compile(r"password|passwd|pwd", re.IGNORECASE)

DEFAULT_DATA_FILE = "collection_data.csv"


class VariableKind(StrEnum):
    """Resolution class of a variable name."""

    DYNAMIC = "dynamic"
    PARAMETERIZED = "parameterized"
    BUILTIN = "builtin"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class ParameterSpec:
    """One external-data parameter, as written to the parameters file.

    Attributes:
        name: Parameter name (also the CSV column).
        value: Declared value, used for the single data row.
        detected_type: Data type guessed from the value.
        next_value: When a new value is taken (``once`` per run).
        next_row: Row selection; ``same as <name>`` keeps this parameter in
            lockstep with another.
        linked_to: The parameter this one moves in lockstep with, if any.
    """

    name: str
    value: str = ""
    detected_type: str = "string"
    type: str = "csv"
    file_name: str = DEFAULT_DATA_FILE
    next_value: str = "once"
    next_row: str = "sequential"
    on_end: str = "loop"
    linked_to: str | None = None

    @property
    def column_name(self) -> str:
        return self.name


@dataclass(frozen=True)
class VariableClassification:
    """Immutable result of classification.

    Attributes:
        dynamic: Names read from run-time global state.
        parameterized: Names read from per-iteration external data.
        builtin: Built-in sigil names replaced by fixed literals.
        reasons: Name -> the rule that classified it.
        parameters: Parameter specs for parameterized names, in declaration order.
        linked_key: Username-like parameter that password-like parameters follow.
    """

    dynamic: frozenset[str] = frozenset()
    parameterized: frozenset[str] = frozenset()
    builtin: frozenset[str] = frozenset()
    reasons: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    parameters: tuple[ParameterSpec, ...] = ()
    linked_key: str | None = None

    def kind_of(self, name: str) -> VariableKind:
        if name in self.dynamic:
            return VariableKind.DYNAMIC
        if name in self.parameterized:
            return VariableKind.PARAMETERIZED
        if name in self.builtin or is_builtin(name):
            return VariableKind.BUILTIN
        return VariableKind.UNCLASSIFIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "dynamic": sorted(self.dynamic),
            "parameterized": [spec.name for spec in self.parameters],
            "builtin": sorted(self.builtin),
            "linked_key": self.linked_key,
        }


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def link_credentials(names: Iterable[str]) -> tuple[str | None, dict[str, str]]:
    """Pick the linked username-like key and the password-like names that follow it.

    The first username-like name in declaration order wins; later
    username-like names cycle independently.

    Returns:
        Tuple of (linked key or None, password name -> linked key).
    """
    names = list(names)
    linked: str | None = None
    for name in names:
        if not PASSWORD_PATTERN.search(name) and USERNAME_PATTERN.search(name):
            linked = name
            break
    if linked is None:
        return None, {}
    return linked, {name: linked for name in names if PASSWORD_PATTERN.search(name)}


def classify_variables(
    declared: Mapping[str, Any],
    correlation_names: Iterable[str] = (),
    script_writes: Iterable[str] = (),
    *,
    referenced: Iterable[str] = (),
    runtime_prefix: str = "_",
) -> VariableClassification:
    """Partition known variable names into dynamic, parameterized and built-in.

    Args:
        declared: Declared variables (collection, then environment) in order.
        correlation_names: Names of correlation rules.
        script_writes: Names set by any script in the collection.
        referenced: Names referenced anywhere; only built-in sigils are taken
            from here.
        runtime_prefix: Prefix marking declared-but-empty runtime variables.

    Returns:
        The classification.
    """
    correlated = list(dict.fromkeys(correlation_names))
    written = list(dict.fromkeys(script_writes))
    universe = list(dict.fromkeys([*declared, *correlated, *written]))
    universe.extend(name for name in dict.fromkeys(referenced) if is_builtin(name) and name not in universe)

    correlated_set = set(correlated)
    written_set = set(written)
    dynamic: set[str] = set()
    parameterized: list[str] = []
    builtin: set[str] = set()
    reasons: dict[str, str] = {}

    for name in universe:
        if name in correlated_set:
            dynamic.add(name)
            reasons[name] = "correlation"
        elif name in written_set:
            dynamic.add(name)
            reasons[name] = "script_set"
        elif name in declared and _is_empty(declared[name]) and runtime_prefix and name.startswith(runtime_prefix):
            dynamic.add(name)
            reasons[name] = "runtime_prefix"
        elif is_builtin(name):
            builtin.add(name)
            reasons[name] = "builtin"
        else:
            parameterized.append(name)
            reasons[name] = "declared"

    linked_key, followers = link_credentials(parameterized)
    specs = tuple(
        ParameterSpec(
            name=name,
            value=_as_text(declared.get(name)),
            detected_type=detect_parameter_type(declared.get(name)),
            next_row=f"same as {followers[name]}" if name in followers else "sequential",
            linked_to=followers.get(name),
        )
        for name in parameterized
    )

    LOG.info(
        "variables_classified",
        dynamic=len(dynamic),
        parameterized=len(parameterized),
        builtin=len(builtin),
        linked_key=linked_key,
    )
    return VariableClassification(
        dynamic=frozenset(dynamic),
        parameterized=frozenset(parameterized),
        builtin=frozenset(builtin),
        reasons=MappingProxyType(reasons),
        parameters=specs,
        linked_key=linked_key,
    )


def referenced_names(requests: Iterable[Request]) -> list[str]:
    """Return every ``{{name}}``/``${name}`` referenced by request URLs, headers, bodies and auth."""
    names: dict[str, None] = {}

    def scan(value: Any) -> None:
        if isinstance(value, str):
            for name in find_placeholders(value):
                names.setdefault(name, None)
        elif isinstance(value, dict):
            for item in value.values():
                scan(item)
        elif isinstance(value, list | tuple):
            for item in value:
                scan(item)

    for request in requests:
        scan(request.url)
        for header in request.active_headers:
            scan(header.value)
        if request.body is not None:
            scan(request.body.raw)
            for field_ in request.body.active_fields:
                scan(field_.value)
        if request.auth:
            scan(request.auth)
    return list(names)
