"""DevWeb script generation from an analyzed collection.

``analyze`` runs every analysis pass once and returns an immutable
``Analysis``; ``generate`` walks the requests in sequence order and renders
``main.js`` plus the side files and the machine-readable report.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from functools import partial
from types import MappingProxyType
from typing import Any

from devwebify.analysis.auth import (
    AuthConfig,
    auth_for_request,
    auth_summary,
    extract_authentication,
    header_injection,
    initialization_configs,
    query_injection,
    render_auth_init,
    signing_options,
)
from devwebify.analysis.classifier import (
    ParameterSpec,
    VariableClassification,
    classify_variables,
    referenced_names,
)
from devwebify.analysis.conversion import ConvertedScript, convert_script
from devwebify.analysis.correlation import CorrelationResult, correlation_summary, detect_correlations
from devwebify.analysis.parameters import ExtractedParameter, extract_parameters, parameter_report
from devwebify.analysis.patterns import CRITICAL_NAME_MARKERS, CRITICAL_URL_MARKERS, contains_any, property_access
from devwebify.analysis.scripts import collect_script_writes, find_writes
from devwebify.collection.models import BodyMode, Collection, ConversionWarning, Request
from devwebify.config import DevwebifySettings, get_settings
from devwebify.generator.extractors import Extractor, extracted_value, render_extractor
from devwebify.generator.jscode import (
    INDENT,
    JsExpr,
    comment_lines,
    indent_lines,
    js_string,
    render_value,
    sanitize_identifier,
    unique_name,
)
from devwebify.generator.payloads import PayloadStore, SideFile
from devwebify.generator.resolver import Resolver
from devwebify.logging import get_logger

LOG = get_logger(__name__)

SUCCESS_STATUSES = (200, 201)
ENCODED_QUERY_MARKERS = ("%", "+")
DEFAULT_TRANSACTION = "default"


@dataclass(frozen=True)
class GeneratorOptions:
    """Switches and defaults for analysis and generation."""

    use_correlation: bool = True
    use_classification: bool = True
    use_authentication: bool = True
    use_custom_scripts: bool = True
    use_transactions: bool = True
    add_comments: bool = True
    think_time: float = 1.0
    log_level: str = "info"
    payload_min_length: int = 1000
    runtime_prefix: str = "_"

    @classmethod
    def from_settings(cls, settings: DevwebifySettings | None = None, **overrides: Any) -> GeneratorOptions:
        """Build options from settings; non-None keyword overrides win."""
        settings = settings or get_settings()
        values: dict[str, Any] = {
            "think_time": settings.think_time,
            "log_level": settings.script_log_level,
            "payload_min_length": settings.payload_min_length,
            "runtime_prefix": settings.runtime_prefix,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RequestScripts:
    """Converted scripts of one request."""

    pre_request: ConvertedScript | None = None
    test: ConvertedScript | None = None

    @property
    def has_any(self) -> bool:
        return bool((self.pre_request and not self.pre_request.is_empty) or (self.test and not self.test.is_empty))


@dataclass(frozen=True)
class Analysis:
    """Results of every analysis pass, read-only during generation."""

    collection: Collection
    options: GeneratorOptions
    correlation: CorrelationResult
    classification: VariableClassification | None
    script_writes: tuple[str, ...] = ()
    auth_configs: tuple[AuthConfig, ...] = ()
    scripts: Mapping[int, RequestScripts] = field(default_factory=lambda: MappingProxyType({}))
    extracted_parameters: Mapping[str, ExtractedParameter] = field(default_factory=lambda: MappingProxyType({}))
    warnings: tuple[ConversionWarning, ...] = ()

    @property
    def requests(self) -> list[Request]:
        return sorted(self.collection.requests, key=lambda r: r.index)

    @property
    def parameters(self) -> tuple[ParameterSpec, ...]:
        """Parameters destined for the data files."""
        if self.classification is not None:
            return self.classification.parameters
        return tuple(
            ParameterSpec(name=p.key, value="" if p.value is None else str(p.value), detected_type=p.type)
            for p in self.extracted_parameters.values()
        )

    def scripts_for(self, request: Request) -> RequestScripts:
        return self.scripts.get(request.index, RequestScripts())


@dataclass(frozen=True)
class GenerationResult:
    """Generated script text plus everything written beside it."""

    script: str
    side_files: tuple[SideFile, ...]
    parameters: tuple[ParameterSpec, ...]
    report: dict[str, Any]
    warnings: tuple[ConversionWarning, ...]


def analyze(collection: Collection, options: GeneratorOptions | None = None) -> Analysis:
    """Run correlation, classification, auth and script analysis over a collection."""
    options = options or GeneratorOptions()
    requests = sorted(collection.requests, key=lambda r: r.index)

    correlation = detect_correlations(requests) if options.use_correlation else CorrelationResult()
    script_writes = tuple(collect_script_writes(requests))

    classification: VariableClassification | None = None
    extracted: dict[str, ExtractedParameter] = {}
    if options.use_classification:
        classification = classify_variables(
            collection.variables,
            correlation.names,
            script_writes,
            referenced=referenced_names(requests),
            runtime_prefix=options.runtime_prefix,
        )
    else:
        extracted = extract_parameters(collection)

    auth_configs = tuple(extract_authentication(collection)) if options.use_authentication else ()

    warnings = list(correlation.warnings)
    scripts: dict[int, RequestScripts] = {}
    if options.use_custom_scripts:
        for request in requests:
            converted = RequestScripts(
                pre_request=convert_script(request.pre_request_script, "pre-request"),
                test=convert_script(request.test_script, "test"),
            )
            if not converted.has_any:
                continue
            scripts[request.index] = converted
            for script in (converted.pre_request, converted.test):
                warnings.extend(
                    ConversionWarning(category="script", message=message, request=request.name)
                    for message in script.warnings
                )

    LOG.info(
        "collection_analyzed",
        requests=len(requests),
        correlations=len(correlation.rules),
        custom_scripts=len(scripts),
        auth_configs=len(auth_configs),
    )
    return Analysis(
        collection=collection,
        options=options,
        correlation=correlation,
        classification=classification,
        script_writes=script_writes,
        auth_configs=auth_configs,
        scripts=MappingProxyType(scripts),
        extracted_parameters=MappingProxyType(extracted),
        warnings=tuple(warnings),
    )


def is_critical(request: Request) -> bool:
    """Whether a request is authentication-related and must be guarded."""
    url, name = request.url or "", request.name or ""
    return contains_any(url, CRITICAL_URL_MARKERS) or contains_any(name, CRITICAL_NAME_MARKERS)


def _split_url(url: str) -> tuple[str, list[tuple[str, str]]]:
    """Split ``url`` into the URL text and undecoded ``queryString`` pairs.

    A query with repeated keys, bare keys or encoded characters cannot be
    expressed as a ``queryString`` object and stays in the URL text.
    """
    base, _, query = url.partition("?")
    query = query.partition("#")[0]
    if not query:
        return base, []
    pairs: list[tuple[str, str]] = []
    for part in filter(None, query.split("&")):
        key, sep, value = part.partition("=")
        if not sep or any(key == seen for seen, _ in pairs):
            return f"{base}?{query}", []
        pairs.append((key, value))
    if any(marker in query for marker in ENCODED_QUERY_MARKERS):
        return f"{base}?{query}", []
    return base, pairs


@dataclass
class _Transaction:
    var: str
    name: str
    folder: str


class ScriptGenerator:
    """Renders one analysis into a DevWeb script.

    Not reusable: each instance renders exactly once.
    """

    def __init__(self, analysis: Analysis, generated_at: datetime | None = None) -> None:
        self.analysis = analysis
        self.options = analysis.options
        self.generated_at = generated_at or datetime.now(UTC)
        runtime_names = (
            frozenset()
            if analysis.classification is not None
            else frozenset([*analysis.correlation.names, *analysis.script_writes])
        )
        self.resolver = Resolver(
            classification=analysis.classification,
            declared=dict(analysis.collection.variables),
            runtime_names=runtime_names,
        )
        self.payloads = PayloadStore(self.options.payload_min_length)
        self._request_ids = 0
        self._seen_vars: set[str] = set()
        self._transactions: dict[str, _Transaction] = {}

    # -- request block ------------------------------------------------------

    def _extractors(self, request: Request, scripts: RequestScripts) -> list[Extractor]:
        extractors: dict[str, Extractor] = {}
        for rule in self.analysis.correlation.produced_by(request.index):
            extractors.setdefault(rule.name, Extractor.from_rule(rule))

        test = scripts.test
        if test is not None:
            for written in find_writes(request.test_script):
                if written.name in test.captured and written.name not in extractors:
                    extractors[written.name] = Extractor(
                        name=written.name,
                        type=written.extractor_type,
                        path=written.extract_path,
                        value_type="script",
                    )
            seen_checks: set[str] = set(extractors)
            for text in test.validations:
                name = unique_name("validationCheck", seen_checks)
                extractors[name] = Extractor.text_check(name, text)
        return list(extractors.values())

    def _headers(self, request: Request, auth: AuthConfig | None) -> dict[str, Any]:
        headers: dict[str, Any] = {}
        for header in request.active_headers:
            if header.value:
                headers[header.key] = self.resolver.render_text(header.value, request=request.name)
        injection = header_injection(auth)
        if injection and injection.key.lower() not in {key.lower() for key in headers}:
            headers[injection.key] = JsExpr(injection.expression)
        return headers

    def _query(self, request: Request, pairs: list[tuple[str, str]], auth: AuthConfig | None) -> dict[str, Any]:
        query = {key: self.resolver.render_text(value, request=request.name) for key, value in pairs}
        injection = query_injection(auth)
        if injection and injection.key not in query:
            query[injection.key] = JsExpr(injection.expression)
        return query

    def _field_value(self, value: str, request: Request) -> Any:
        hoisted = self.payloads.hoist(value, request=request.name)
        return hoisted if hoisted is not None else self.resolver.render_text(value, request=request.name)

    def _multipart(self, request: Request) -> JsExpr:
        entries = []
        for field_ in request.body.active_fields:
            if field_.kind == "file":
                entries.append(
                    f"new load.MultipartBody.FileEntry({js_string(field_.key)}, {js_string(field_.value)})"
                )
            else:
                value = render_value(self._field_value(field_.value, request))
                entries.append(f"new load.MultipartBody.StringEntry({js_string(field_.key)}, {value})")
        inner = ",\n".join(f"{INDENT * 2}{entry}" for entry in entries)
        return JsExpr(f"new load.MultipartBody([\n{inner}\n{INDENT}])" if entries else "new load.MultipartBody([])")

    def _body(self, request: Request) -> Any:
        body = request.body
        if body is None or body.mode == BodyMode.NONE:
            return None
        if body.mode == BodyMode.FORMDATA:
            return self._multipart(request)
        if body.mode == BodyMode.URLENCODED:
            return {f.key: self._field_value(f.value, request) for f in body.active_fields}
        parsed = body.parsed_json()
        if isinstance(parsed, dict | list):
            hoisted = self.payloads.hoist_all(parsed, request=request.name)
            return self.resolver.render_value(hoisted, request=request.name)
        if not body.raw:
            return None
        return self._field_value(body.raw, request)

    def _request_options(
        self, request: Request, extractors: list[Extractor], auth: AuthConfig | None
    ) -> dict[str, Any]:
        self._request_ids += 1
        base, pairs = _split_url(request.url or "")
        options: dict[str, Any] = {
            "id": self._request_ids,
            "url": self.resolver.render_text(base, request=request.name),
            "method": request.method,
        }
        headers = self._headers(request, auth)
        if headers:
            options["headers"] = headers
        query = self._query(request, pairs, auth)
        if query:
            options["queryString"] = query
        body = self._body(request)
        if body is not None:
            options["body"] = body
        if extractors:
            options["extractors"] = [render_extractor(e) for e in extractors]
        signing = signing_options(auth)
        if signing:
            options["awsSigning"] = {
                key: JsExpr(property_access("load.global", f"aws{key.title()}")) for key in signing
            }
        options["returnBody"] = True
        return options

    def _guard(
        self,
        request: Request,
        response: str,
        scripts: RequestScripts,
        extractors: list[Extractor],
        transaction: str | None,
    ) -> list[str]:
        validations = [e for e in extractors if e.is_validation]
        if not (is_critical(request) or validations):
            return []
        statuses = list(SUCCESS_STATUSES)
        if scripts.test is not None:
            statuses.extend(s for s in scripts.test.expected_statuses if s not in statuses)
        failure = [f"{INDENT}{transaction}.stop(load.TransactionStatus.Failed);"] if transaction else []
        failure.append(f"{INDENT}load.exit(load.ExitType.stop, {js_string(f'{request.name} failed')});")

        label = js_string(request.name)
        lines = [
            "// Critical request: stop on failure",
            f"if (![{', '.join(str(s) for s in sorted(statuses))}].includes({response}.status)) {{",
            f"{INDENT}load.log({label} + \" failed with status \" + {response}.status, load.LogLevel.error);",
            *failure,
            "}",
        ]
        for extractor in validations:
            lines.extend(
                [
                    f"if (!{extracted_value(response, extractor.name)}) {{",
                    f"{INDENT}load.log({label} + \" validation failed\", load.LogLevel.error);",
                    *failure,
                    "}",
                ]
            )
        return lines

    def _script_lines(self, converted: ConvertedScript | None, title: str) -> list[str]:
        if converted is None or converted.is_empty:
            return []
        lines = [f"// {title}"]
        if converted.has_unsupported:
            lines.append("// WARNING: Some code requires manual conversion")
        lines.extend(converted.lines)
        return lines

    def request_block(self, request: Request, transaction: str | None = None) -> list[str]:
        """Render the statements for one request."""
        scripts = self.analysis.scripts_for(request)
        auth = auth_for_request(request) if self.options.use_authentication else None
        response = f"{unique_name(sanitize_identifier(request.name), self._seen_vars)}_response"

        lines: list[str] = []
        if self.options.add_comments:
            lines.append(f"// {request.name}")
            lines.extend(comment_lines(request.description))
            consumed = self.analysis.correlation.consumed_by(request.index)
            depends = list(dict.fromkeys(rule.producer_request for rule in consumed))
            if depends:
                lines.append(f"// Depends on: {', '.join(depends)}")
        lines.extend(self._script_lines(scripts.pre_request, "Pre-request script"))

        extractors = self._extractors(request, scripts)
        options = self._request_options(request, extractors, auth)
        lines.append(f"const {response} = new load.WebRequest({render_value(options)}).sendSync();")
        lines.append(
            f"load.log({js_string(request.name)} + \" - Status: \" + {response}.status, "
            f"load.LogLevel.{self.options.log_level});"
        )

        for extractor in extractors:
            if extractor.is_validation:
                continue
            target = property_access("load.global", extractor.name)
            assignment = f"{target} = {extracted_value(response, extractor.name)};"
            if self.options.add_comments:
                assignment += f" // Extracted {extractor.value_type}"
            lines.append(assignment)

        lines.extend(self._script_lines(scripts.test, "Post-response script"))
        lines.extend(self._guard(request, response, scripts, extractors, transaction))
        return lines

    # -- sections -----------------------------------------------------------

    def _transaction_for(self, folder: str, seen_names: set[str]) -> _Transaction:
        transaction = self._transactions.get(folder)
        if transaction is None:
            leaf = folder.rstrip("/").split("/")[-1].strip() if folder else DEFAULT_TRANSACTION
            transaction = _Transaction(
                var=f"TS{len(self._transactions) + 1:02d}",
                name=unique_name(leaf or DEFAULT_TRANSACTION, seen_names),
                folder=folder,
            )
            self._transactions[folder] = transaction
        return transaction

    def _runs(self) -> list[tuple[str, list[Request]]]:
        """Group requests into consecutive runs sharing a folder, preserving order."""
        runs: list[tuple[str, list[Request]]] = []
        for request in self.analysis.requests:
            if runs and runs[-1][0] == request.folder:
                runs[-1][1].append(request)
            else:
                runs.append((request.folder, [request]))
        return runs

    def _think_time(self) -> list[str]:
        if self.options.think_time > 0:
            return [f"load.sleep({self.options.think_time:g});"]
        return []

    def action_section(self) -> list[str]:
        body: list[str] = ["load.WebRequest.defaults.returnBody = false;", ""]
        if not self.options.use_transactions:
            requests = self.analysis.requests
            for position, request in enumerate(requests):
                body.extend(self.request_block(request))
                if position < len(requests) - 1:
                    body.extend(self._think_time())
                body.append("")
        else:
            runs = self._runs()
            seen_names: set[str] = set()
            transactions = [self._transaction_for(folder, seen_names) for folder, _ in runs]
            declared: list[str] = []
            for transaction in transactions:
                declaration = f"const {transaction.var} = new load.Transaction({js_string(transaction.name)});"
                if declaration not in declared:
                    declared.append(declaration)
            if self.options.add_comments:
                body.append("// Transactions")
            body.extend(declared)
            body.append("")
            for transaction, (_, requests) in zip(transactions, runs, strict=True):
                if self.options.add_comments:
                    body.append(f"// {transaction.var} - {transaction.folder or DEFAULT_TRANSACTION}")
                body.append(f"{transaction.var}.start();")
                for position, request in enumerate(requests):
                    body.extend(self.request_block(request, transaction.var))
                    if position < len(requests) - 1:
                        body.extend(self._think_time())
                body.append(f"{transaction.var}.stop(load.TransactionStatus.Passed);")
                body.append("")

        return [
            'load.action("Action", async function () {',
            *indent_lines([*body, 'load.log("Action complete", load.LogLevel.info);']),
            "});",
        ]

    def _global_init_lines(self) -> list[str]:
        classification = self.analysis.classification
        names = list(dict.fromkeys(rule.name for rule in self.analysis.correlation.rules))
        if classification is not None:
            names.extend(sorted(n for n in classification.dynamic if n not in names))
        declared = self.analysis.collection.variables
        lines = []
        for name in names:
            value = declared.get(name)
            initial = "null" if value in (None, "") else render_value(value)
            lines.append(f"{property_access('load.global', name)} = {initial};")
        return lines

    def initialize_section(self) -> list[str]:
        body = [f'load.log("Initializing Vuser " + load.config.user.userId, load.LogLevel.{self.options.log_level});']
        globals_ = self._global_init_lines()
        if globals_:
            body.extend(["", "// Run-time values", *globals_])
        if self.payloads.files:
            body.extend(["", "// Large payloads", *(f.load_statement() for f in self.payloads.files)])
        if self.options.use_authentication:
            used = initialization_configs(auth_for_request(r) for r in self.analysis.requests)
            for config in used:
                render = partial(self.resolver.expression, request=config.name)
                body.extend(["", *render_auth_init(config, render)])
        body.extend(["", 'load.log("Initialization complete", load.LogLevel.info);'])
        return ['load.initialize("Initialize", async function () {', *indent_lines(body), "});"]

    def finalize_section(self) -> list[str]:
        return [
            'load.finalize("Finalize", async function () {',
            f'{INDENT}load.log("Finalizing Vuser " + load.config.user.userId, load.LogLevel.info);',
            "});",
        ]

    def header(self) -> list[str]:
        analysis = self.analysis
        return [
            "/**",
            " * DevWeb performance test script",
            f" * Generated from: {analysis.collection.name}",
            f" * Generated on: {self.generated_at.isoformat()}",
            " *",
            f" * Requests: {len(analysis.collection.requests)}",
            f" * Correlations: {len(analysis.correlation.rules)}",
            f" * Parameters: {len(analysis.parameters)}",
            f" * Think time: {self.options.think_time:g}s",
            " */",
        ]

    def generate(self) -> GenerationResult:
        action = self.action_section()
        initialize = self.initialize_section()
        script = "\n".join([*self.header(), "", *initialize, "", *action, "", *self.finalize_section()]) + "\n"
        warnings = (*self.analysis.warnings, *self.resolver.warnings)
        report = build_report(self.analysis, warnings, self.payloads.files)
        LOG.info(
            "script_generated",
            collection=self.analysis.collection.name,
            lines=script.count("\n"),
            side_files=len(self.payloads),
            warnings=len(warnings),
        )
        return GenerationResult(
            script=script,
            side_files=tuple(self.payloads.files),
            parameters=self.analysis.parameters,
            report=report,
            warnings=warnings,
        )


def build_report(
    analysis: Analysis, warnings: tuple[ConversionWarning, ...] | list[ConversionWarning], side_files: list[SideFile]
) -> dict[str, Any]:
    """Build the machine-readable analysis report."""
    requests = analysis.requests
    by_method: dict[str, int] = {}
    for request in requests:
        by_method[request.method] = by_method.get(request.method, 0) + 1

    if analysis.classification is not None:
        params = {
            spec.name: ExtractedParameter(
                key=spec.name,
                value=spec.value,
                source="collection",
                type=spec.detected_type,
                description=f"Collection variable: {spec.name}",
            )
            for spec in analysis.classification.parameters
        }
    else:
        params = dict(analysis.extracted_parameters)

    return {
        "collection": {"name": analysis.collection.name, "format": analysis.collection.source_format},
        "requests": {
            "total": len(requests),
            "by_method": by_method,
            "folders": len({r.folder for r in requests}),
            "with_custom_scripts": len(analysis.scripts),
        },
        "correlations": correlation_summary(analysis.correlation.rules),
        "classification": analysis.classification.to_dict() if analysis.classification is not None else None,
        "parameters": parameter_report(params),
        "authentication": auth_summary(analysis.auth_configs),
        "warnings": [w.to_dict() for w in warnings],
        "side_files": [f.path for f in side_files],
        "options": analysis.options.to_dict(),
    }


def generate(
    analysis: Analysis,
    generated_at: datetime | None = None,
) -> GenerationResult:
    """Render an analysis into a DevWeb script and its companion outputs."""
    return ScriptGenerator(analysis, generated_at=generated_at).generate()
