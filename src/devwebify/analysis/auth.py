"""Authentication resolution and DevWeb auth snippets.

Auth blocks come in two shapes, both normalized by the reader to
``{"type": t, t: <payload>}``; the payload is either a list of
``{key, value}`` pairs (Postman) or a plain object (Bruno). Both flatten to
the same ``AuthConfig.config`` map.

Snippet rendering dispatches on ``AuthType`` through ``AUTH_RENDERERS``,
one function per type.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from devwebify.collection.models import Collection, Request
from devwebify.logging import get_logger

LOG = get_logger(__name__)

SENSITIVE_KEY_MARKERS = ("secret", "password", "key", "token", "credential")

# Renders a raw config value (possibly containing {{name}}) as a JS expression
ValueRenderer = Callable[[Any], str]


class AuthType(StrEnum):
    """Supported authentication schemes."""

    OAUTH2 = "oauth2"
    BASIC = "basic"
    BEARER = "bearer"
    APIKEY = "apikey"
    AWSV4 = "awsv4"
    DIGEST = "digest"
    HAWK = "hawk"
    NTLM = "ntlm"


@dataclass(frozen=True)
class AuthConfig:
    """One resolved authentication block.

    Attributes:
        name: Owner of the block (``collection``, a folder, or a request name).
        folder: Folder path of the owner, empty at collection level.
        type: Authentication scheme.
        config: Flattened key -> value settings.
    """

    name: str
    type: AuthType
    folder: str = ""
    config: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def get(self, *keys: str, default: Any = None) -> Any:
        """Return the first non-empty value among ``keys``."""
        for key in keys:
            value = self.config.get(key)
            if value not in (None, ""):
                return value
        return default

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "type": str(self.type), "folder": self.folder}


@dataclass(frozen=True)
class AuthInjection:
    """A header or query entry added to every request using an auth config."""

    key: str
    expression: str


def flatten_auth_config(block: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten the type-specific payload of an auth block into a plain map."""
    payload = block.get(block.get("type", ""))
    flat: dict[str, Any] = {}
    if isinstance(payload, list):
        for item in payload:
            if isinstance(item, dict) and "key" in item:
                flat[str(item["key"])] = item.get("value")
    elif isinstance(payload, dict):
        flat.update(payload)
    return flat


def resolve_auth(name: str, block: Mapping[str, Any] | None, folder: str = "") -> AuthConfig | None:
    """Resolve an auth block to an ``AuthConfig``.

    Returns None for missing blocks, ``noauth``/``inherit`` and unsupported
    types (the latter is logged).
    """
    if not block or not block.get("type"):
        return None
    raw_type = str(block["type"]).lower()
    if raw_type in ("noauth", "none", "inherit"):
        return None
    try:
        auth_type = AuthType(raw_type)
    except ValueError:
        LOG.warning("auth_type_unsupported", owner=name, auth_type=raw_type)
        return None
    return AuthConfig(
        name=name,
        type=auth_type,
        folder=folder,
        config=MappingProxyType(flatten_auth_config(block)),
    )


def extract_authentication(collection: Collection) -> list[AuthConfig]:
    """Resolve every auth block declared in a collection, in traversal order.

    A later block declared by the same owner replaces the earlier one.
    """
    configs: dict[str, AuthConfig] = {}
    for source in collection.auth_sources:
        config = resolve_auth(source.owner, source.block, source.folder)
        if config is not None:
            configs[source.owner] = config
    return list(configs.values())


def auth_for_request(request: Request) -> AuthConfig | None:
    """Resolve the effective (already inherited) auth block of a request."""
    return resolve_auth(request.name, request.auth, request.folder)


def needs_signing(config: AuthConfig | None) -> bool:
    """Whether requests using this config must be signed per request."""
    return config is not None and config.type == AuthType.AWSV4


def signing_options(config: AuthConfig | None) -> dict[str, Any] | None:
    """Per-request signing parameters, or None when no signing applies."""
    if not needs_signing(config):
        return None
    return {
        "region": config.get("region", default="us-east-1"),
        "service": config.get("service", default="s3"),
    }


def _apikey_placement(config: AuthConfig) -> str:
    placement = str(config.get("in", "placement", default="header")).lower()
    return "query" if placement in ("query", "queryparams", "queryparam") else "header"


def header_injection(config: AuthConfig | None) -> AuthInjection | None:
    """The header each authenticated request carries, if any."""
    if config is None:
        return None
    if config.type in (AuthType.OAUTH2, AuthType.BEARER):
        return AuthInjection(
            "Authorization",
            "`${load.global.oauth2TokenType || \"Bearer\"} "
            "${load.global.oauth2AccessToken || load.global.bearerToken}`",
        )
    if config.type == AuthType.BASIC:
        return AuthInjection("Authorization", "load.global.basicAuthHeader")
    if config.type == AuthType.APIKEY and _apikey_placement(config) == "header":
        return AuthInjection(str(config.get("key", default="X-API-Key")), "load.global.apiKey")
    return None


def query_injection(config: AuthConfig | None) -> AuthInjection | None:
    """The query parameter each authenticated request carries, if any."""
    if config is None or config.type != AuthType.APIKEY or _apikey_placement(config) != "query":
        return None
    return AuthInjection(str(config.get("key", default="api_key")), "load.global.apiKey")


# -- snippet rendering ------------------------------------------------------


def _oauth2_token_request(
    config: AuthConfig, render: ValueRenderer, grant: str, body: list[tuple[str, Any]], extracts: list[str]
) -> list[str]:
    fields = [f'        "grant_type": "{grant}",']
    fields.extend(f'        "{key}": {render(value)},' for key, value in body)
    scope = config.get("scope")
    if scope:
        fields.append(f'        "scope": {render(scope)},')
    extractors = {
        "accessToken": "$.access_token",
        "refreshToken": "$.refresh_token",
        "tokenType": "$.token_type",
        "expiresIn": "$.expires_in",
    }
    lines = [
        f"// OAuth 2.0 - {grant.replace('_', ' ').title()} Grant",
        "const oauth2Token_response = new load.WebRequest({",
        f"    url: {render(config.get('accessTokenUrl', 'tokenUrl', 'access_token_url', default=''))},",
        '    method: "POST",',
        '    headers: {"Content-Type": "application/x-www-form-urlencoded"},',
        "    body: {",
        *fields,
        "    },",
        "    extractors: [",
        *(f'        new load.JsonPathExtractor("{name}", "{extractors[name]}"),' for name in extracts),
        "    ],",
        "    returnBody: true,",
        "}).sendSync();",
        "load.global.oauth2AccessToken = oauth2Token_response.extractors.accessToken;",
    ]
    if "refreshToken" in extracts:
        lines.append("load.global.oauth2RefreshToken = oauth2Token_response.extractors.refreshToken;")
    lines.append('load.global.oauth2TokenType = oauth2Token_response.extractors.tokenType || "Bearer";')
    lines.append('load.log("OAuth2 token acquired", load.LogLevel.info);')
    return lines


def render_oauth2(config: AuthConfig, render: ValueRenderer) -> list[str]:
    grant = str(config.get("grant_type", "grantType", default="authorization_code")).lower()
    client = [
        ("client_id", config.get("clientId", "client_id", default="")),
        ("client_secret", config.get("clientSecret", "client_secret", default="")),
    ]
    if grant == "client_credentials":
        return _oauth2_token_request(
            config, render, "client_credentials", client, ["accessToken", "tokenType", "expiresIn"]
        )
    if grant in ("password", "password_credentials"):
        credentials = [
            ("username", config.get("username", default="")),
            ("password", config.get("password", default="")),
        ]
        return _oauth2_token_request(
            config, render, "password", credentials + client, ["accessToken", "refreshToken", "tokenType"]
        )
    token = config.get("accessToken", "access_token", default="YOUR_ACCESS_TOKEN")
    return [
        "// OAuth 2.0 - Authorization Code Flow",
        "// Requires a manual authorization step or a pre-configured token",
        f"load.global.oauth2AccessToken = {render(token)};",
        'load.global.oauth2TokenType = "Bearer";',
    ]


def render_basic(config: AuthConfig, render: ValueRenderer) -> list[str]:
    return [
        "// Basic Authentication",
        f"const basicAuthUsername = {render(config.get('username', default=''))};",
        f"const basicAuthPassword = {render(config.get('password', default=''))};",
        "load.global.basicAuthHeader = "
        "`Basic ${load.utils.base64Encode(`${basicAuthUsername}:${basicAuthPassword}`)}`;",
        'load.log("Basic Auth configured", load.LogLevel.info);',
    ]


def render_bearer(config: AuthConfig, render: ValueRenderer) -> list[str]:
    return [
        "// Bearer Token Authentication",
        f"load.global.bearerToken = {render(config.get('token', default=''))};",
        "load.global.authorizationHeader = `Bearer ${load.global.bearerToken}`;",
        'load.log("Bearer Token configured", load.LogLevel.info);',
    ]


def render_apikey(config: AuthConfig, render: ValueRenderer) -> list[str]:
    placement = _apikey_placement(config)
    key = config.get("key", default="X-API-Key" if placement == "header" else "api_key")
    target = "apiKeyHeader" if placement == "header" else "apiKeyParam"
    label = "Header" if placement == "header" else "Query Parameter"
    return [
        f"// API Key Authentication ({label})",
        f"load.global.apiKey = {render(config.get('value', default=''))};",
        f"load.global.{target} = {render(key)};",
        f'load.log("API Key configured in {placement}", load.LogLevel.info);',
    ]


def render_awsv4(config: AuthConfig, render: ValueRenderer) -> list[str]:
    lines = [
        "// AWS Signature Version 4 Authentication",
        "load.setUserCredentials(new load.AWSAuthentication(load.AWSProviderType.Static, {",
        f"    accessKeyID: {render(config.get('accessKey', 'accessKeyId', default=''))},",
        f"    secretAccessKey: {render(config.get('secretKey', 'secretAccessKey', default=''))},",
    ]
    session_token = config.get("sessionToken")
    if session_token:
        lines.append(f"    sessionToken: {render(session_token)},")
    options = signing_options(config) or {}
    lines.extend(
        [
            "}));",
            f"load.global.awsRegion = {render(options.get('region'))};",
            f"load.global.awsService = {render(options.get('service'))};",
            'load.log("AWS Signature v4 configured", load.LogLevel.info);',
        ]
    )
    return lines


def render_digest(config: AuthConfig, render: ValueRenderer) -> list[str]:
    lines = [
        "// Digest Authentication (negotiated by DevWeb from the user credentials)",
        "load.setUserCredentials({",
        f"    username: {render(config.get('username', default=''))},",
        f"    password: {render(config.get('password', default=''))},",
    ]
    realm = config.get("realm")
    if realm:
        lines.append(f"    realm: {render(realm)},")
    lines.extend(['    host: "*",', "});", 'load.log("Digest Auth configured", load.LogLevel.info);'])
    return lines


def render_generic(config: AuthConfig, render: ValueRenderer) -> list[str]:
    lines = [f"// {config.type.upper()} Authentication", "// Custom authentication - configure as needed"]
    for key, value in config.config.items():
        if any(marker in key.lower() for marker in SENSITIVE_KEY_MARKERS):
            value = "<redacted>"
        lines.append(f"// {key}: {value}")
    return lines


AUTH_RENDERERS: dict[AuthType, Callable[[AuthConfig, ValueRenderer], list[str]]] = {
    AuthType.OAUTH2: render_oauth2,
    AuthType.BASIC: render_basic,
    AuthType.BEARER: render_bearer,
    AuthType.APIKEY: render_apikey,
    AuthType.AWSV4: render_awsv4,
    AuthType.DIGEST: render_digest,
    AuthType.HAWK: render_generic,
    AuthType.NTLM: render_generic,
}


def render_auth_init(config: AuthConfig, render: ValueRenderer) -> list[str]:
    """Render the initialization statements for one auth config."""
    return AUTH_RENDERERS[config.type](config, render)


def initialization_configs(configs: Iterable[AuthConfig | None]) -> list[AuthConfig]:
    """Pick the configs to initialize: the first config of each auth type, in order of use.

    Injected headers read per-type globals (``bearerToken``,
    ``basicAuthHeader``, ...), so one initialization per type is enough.
    """
    chosen: dict[AuthType, AuthConfig] = {}
    for config in configs:
        if config is not None:
            chosen.setdefault(config.type, config)
    return list(chosen.values())


def auth_summary(configs: Iterable[AuthConfig]) -> dict[str, Any]:
    configs = list(configs)
    by_type: dict[str, int] = {}
    for config in configs:
        by_type[str(config.type)] = by_type.get(str(config.type), 0) + 1
    return {"total": len(configs), "by_type": by_type, "configs": [c.to_dict() for c in configs]}
