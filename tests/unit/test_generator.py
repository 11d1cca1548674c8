"""Tests for DevWeb script generation."""

import hashlib
import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from devwebify.collection.models import BodyMode, Collection, KeyValue, Request, RequestBody
from devwebify.collection.reader import parse_collection_file
from devwebify.generator.script import GeneratorOptions, analyze, generate, is_critical

GENERATED_AT = datetime(2024, 1, 1, tzinfo=UTC)
PAYLOAD = ("QUJD" * 500)[:2000]


@pytest.fixture
def shop(fixtures_dir: Path) -> Collection:
    return parse_collection_file(fixtures_dir / "shop.postman_collection.json").collection


@pytest.fixture
def notes(fixtures_dir: Path) -> Collection:
    return parse_collection_file(fixtures_dir / "notes.bruno.json").collection


def render(collection: Collection, **options) -> str:
    return generate(analyze(collection, GeneratorOptions(**options)), generated_at=GENERATED_AT).script


def upload(index: int, name: str) -> Request:
    return Request(
        index=index,
        name=name,
        method="POST",
        url="https://api.test/upload",
        body=RequestBody(mode=BodyMode.JSON, raw='{"payload": {"data": "%s", "name": "doc"}}' % PAYLOAD),
    )


class TestScriptLayout:
    """Tests for the overall script structure."""

    def test_sections_in_order(self, shop):
        script = render(shop)

        header = script.index("/**")
        initialize = script.index('load.initialize("Initialize"')
        action = script.index('load.action("Action"')
        finalize = script.index('load.finalize("Finalize"')
        assert header < initialize < action < finalize
        assert script.endswith("});\n")

    def test_header(self, shop):
        script = render(shop)

        assert " * Generated from: Shop API" in script
        assert " * Generated on: 2024-01-01T00:00:00+00:00" in script
        assert " * Requests: 3" in script
        assert " * Correlations: 3" in script
        assert " * Parameters: 4" in script

    def test_output_is_deterministic(self, shop):
        analysis = analyze(shop)

        first = generate(analysis, generated_at=GENERATED_AT).script
        second = generate(analysis, generated_at=GENERATED_AT).script

        assert first == second

    def test_return_body_default_disabled(self, shop):
        assert "load.WebRequest.defaults.returnBody = false;" in render(shop)


class TestCorrelationOutput:
    """Correlated values are extracted once and read from global state."""

    def test_producer_declares_extractor(self, shop):
        script = render(shop)

        assert 'new load.JsonPathExtractor("authToken", "$.token")' in script
        assert 'new load.JsonPathExtractor("userId", "$.data.id")' in script
        assert "load.global.authToken = Login_response.extractors.authToken;" in script
        assert "load.global.userId = Get_Profile_response.extractors.userId;" in script

    def test_consumer_reads_global(self, shop):
        script = render(shop)

        assert "Authorization: `Bearer ${load.global.authToken}`" in script
        assert "url: `${load.params.baseUrl}/users/${load.global.userId}/orders`" in script

    def test_dependency_comment(self, shop):
        assert "// Depends on: Login, Get Profile" in render(shop)

    def test_runtime_globals_initialized(self, shop):
        script = render(shop)

        assert "load.global.authToken = null;" in script
        assert "load.global.userId = null;" in script
        assert "load.global._traceId = null;" in script

    def test_captured_script_write_becomes_extractor(self, notes):
        script = render(notes)

        assert 'new load.JsonPathExtractor("noteId", "$.note.id")' in script
        assert "url: `${load.params.host}/notes/${load.global.noteId}`" in script


class TestParameterOutput:
    """Declared values are read per iteration from load.params."""

    def test_declared_api_key_is_external_lookup(self):
        collection = Collection(
            name="Search",
            source_format="postman",
            variables={"apiKey": "abc123"},
            requests=[Request(index=0, name="Search", method="GET", url="https://api.test/search?key={{apiKey}}")],
        )

        analysis = analyze(collection)
        script = generate(analysis, generated_at=GENERATED_AT).script

        assert analysis.correlation.rules == ()
        assert "key: load.params.apiKey" in script
        assert "abc123" not in script
        assert "load.global.apiKey" not in script

    def test_json_body_fields(self, shop):
        script = render(shop)

        assert "username: load.params.username," in script
        assert "password: load.params.password" in script

    def test_query_string(self, shop):
        assert "limit: load.params.pageSize" in render(shop)

    @pytest.mark.parametrize(
        "url",
        [
            "https://api.test/items?tag=a&tag=b&q=x+y",
            "https://api.test/items?q=a%20b&page=2",
            "https://api.test/items?debug&page=2",
        ],
    )
    def test_query_kept_in_url_when_not_representable(self, url):
        collection = Collection(
            name="Items",
            source_format="postman",
            requests=[Request(index=0, name="Items", method="GET", url=url)],
        )

        script = render(collection)

        assert f"url: {json.dumps(url)}" in script
        assert "queryString" not in script

    def test_query_pairs_kept_undecoded_in_order(self):
        collection = Collection(
            name="Items",
            source_format="postman",
            requests=[Request(index=0, name="Items", method="GET", url="https://api.test/items?tag=a&sort=name:asc")],
        )

        script = render(collection)

        assert 'url: "https://api.test/items"' in script
        assert script.index('tag: "a"') < script.index('sort: "name:asc"')

    def test_disabled_headers_skipped(self, shop):
        assert "X-Trace" not in render(shop)


class TestWithoutClassification:
    """Generation with classification switched off."""

    def test_declared_values_inlined(self, shop):
        script = render(shop, use_classification=False)

        assert 'url: "https://api.example.com/users/me"' in script
        assert "Authorization: `Bearer ${load.global.authToken}`" in script
        assert "load.params" not in script

    def test_parameters_come_from_extraction(self, shop):
        analysis = analyze(shop, GeneratorOptions(use_classification=False))

        assert analysis.classification is None
        assert "baseUrl" in [spec.name for spec in analysis.parameters]


class TestTransactions:
    """Tests for folder transactions and think time."""

    def test_one_transaction_per_folder(self, shop):
        script = render(shop)

        assert 'const TS01 = new load.Transaction("Auth");' in script
        assert 'const TS02 = new load.Transaction("Users");' in script
        assert script.count("TS02.start();") == 1
        assert script.count("TS02.stop(load.TransactionStatus.Passed);") == 1

    def test_root_requests_use_default_transaction(self, notes):
        script = render(notes)

        assert 'const TS01 = new load.Transaction("default");' in script
        assert 'const TS02 = new load.Transaction("Reads");' in script

    def test_think_time_between_requests_of_a_run(self, shop):
        script = render(shop)

        assert script.count("load.sleep(1);") == 1

    def test_custom_think_time(self, shop):
        assert "load.sleep(2.5);" in render(shop, think_time=2.5)

    def test_zero_think_time(self, shop):
        assert "load.sleep" not in render(shop, think_time=0)

    def test_without_transactions(self, shop):
        script = render(shop, use_transactions=False)

        assert "load.Transaction" not in script
        assert script.count("load.sleep(1);") == 2


class TestGuards:
    """Critical and validated requests stop the iteration on failure."""

    def test_login_is_critical(self, shop):
        script = render(shop)

        assert "if (![200, 201].includes(Login_response.status)) {" in script
        assert "TS01.stop(load.TransactionStatus.Failed);" in script
        assert 'load.exit(load.ExitType.stop, "Login failed");' in script

    def test_ordinary_request_not_guarded(self, shop):
        assert "Get_Orders_response.status)) {" not in render(shop)

    def test_text_validation(self):
        request = Request(
            index=0,
            name="Home",
            method="GET",
            url="https://api.test/",
            test_script='pm.expect(pm.response.text()).to.include("Welcome");',
        )
        collection = Collection(name="c", source_format="postman", requests=[request])

        script = render(collection)

        assert 'new load.TextCheckExtractor("validationCheck"' in script
        assert "if (!Home_response.extractors.validationCheck) {" in script

    @pytest.mark.parametrize(
        ("name", "url", "expected"),
        [
            ("Sign in", "https://api.test/auth/token", True),
            ("Session start", "https://api.test/start", True),
            ("List items", "https://api.test/items", False),
        ],
    )
    def test_is_critical(self, name, url, expected):
        assert is_critical(Request(index=0, name=name, method="GET", url=url)) == expected


class TestScripts:
    """Converted custom scripts in request blocks."""

    def test_post_response_script_included(self, shop):
        script = render(shop)

        assert "// Post-response script" in script
        assert "// Assertion: Status is 200" in script

    def test_custom_scripts_disabled(self, shop):
        script = render(shop, use_custom_scripts=False)

        assert "// Post-response script" not in script
        assert 'new load.JsonPathExtractor("authToken", "$.token")' in script

    def test_unsupported_lines_reported(self):
        request = Request(
            index=0,
            name="Hash",
            method="GET",
            url="https://api.test/x",
            pre_request_script="CryptoJS.MD5('x');",
        )
        collection = Collection(name="c", source_format="postman", requests=[request])

        result = generate(analyze(collection), generated_at=GENERATED_AT)

        assert "// WARNING: Some code requires manual conversion" in result.script
        assert [w.category for w in result.warnings] == ["script"]
        assert result.warnings[0].request == "Hash"

    def test_script_block_keeps_braces_balanced(self):
        request = Request(
            index=0,
            name="Stamp",
            method="GET",
            url="https://api.test/x",
            pre_request_script='if (Date.now() > 0) {\n    pm.environment.set("ts", Date.now());\n}',
        )
        collection = Collection(name="c", source_format="postman", requests=[request])

        script = render(collection)

        assert "if (Date.now() > 0) {" in script
        assert script.count("{") == script.count("}")

    def test_comments_disabled(self, shop):
        script = render(shop, add_comments=False)

        assert "// Extracted" not in script
        assert "// Depends on" not in script
        assert "// Transactions" not in script


class TestAuthentication:
    """Auth initialization and per-request injection."""

    def test_bearer_from_request_auth(self, notes):
        script = render(notes)

        assert "load.global.bearerToken = load.params.apiToken;" in script
        assert 'Authorization: `${load.global.oauth2TokenType || "Bearer"}' in script

    def test_authentication_disabled(self, notes):
        script = render(notes, use_authentication=False)

        assert "bearerToken" not in script

    def test_explicit_header_not_overridden(self):
        request = Request(
            index=0,
            name="Me",
            method="GET",
            url="https://api.test/me",
            headers=(KeyValue("authorization", "Token fixed"),),
            auth={"type": "basic", "basic": {"username": "u", "password": "p"}},
        )
        collection = Collection(name="c", source_format="postman", requests=[request])

        script = render(collection)

        assert 'authorization: "Token fixed"' in script
        assert "Authorization: load.global.basicAuthHeader" not in script
        assert "// Basic Authentication" in script

    def test_aws_signing(self):
        request = Request(
            index=0,
            name="Bucket",
            method="GET",
            url="https://s3.test/bucket",
            auth={"type": "awsv4", "awsv4": {"accessKey": "AK", "secretKey": "SK", "region": "eu-west-1"}},
        )
        collection = Collection(name="c", source_format="postman", requests=[request])

        script = render(collection)

        assert "region: load.global.awsRegion" in script
        assert "service: load.global.awsService" in script
        assert 'load.global.awsRegion = "eu-west-1";' in script


class TestPayloads:
    """Large base64 values move to side files."""

    def test_payload_hoisted(self):
        collection = Collection(name="c", source_format="postman", requests=[upload(0, "Upload")])
        digest = hashlib.sha256(PAYLOAD.encode()).hexdigest()[:12]

        result = generate(analyze(collection), generated_at=GENERATED_AT)

        (side_file,) = result.side_files
        assert side_file.content == PAYLOAD
        assert PAYLOAD not in result.script
        assert f"data: load.global.payload_{digest}" in result.script
        assert side_file.load_statement() in result.script
        assert result.report["side_files"] == [side_file.path]

    def test_identical_payloads_written_once(self):
        collection = Collection(
            name="c",
            source_format="postman",
            requests=[upload(0, "First"), upload(1, "Second")],
        )
        digest = hashlib.sha256(PAYLOAD.encode()).hexdigest()[:12]

        result = generate(analyze(collection), generated_at=GENERATED_AT)

        assert len(result.side_files) == 1
        assert result.script.count(f"data: load.global.payload_{digest}") == 2

    def test_threshold_from_options(self):
        collection = Collection(name="c", source_format="postman", requests=[upload(0, "Upload")])

        result = generate(analyze(collection, GeneratorOptions(payload_min_length=5000)), generated_at=GENERATED_AT)

        assert result.side_files == ()
        assert PAYLOAD in result.script


class TestReport:
    """Tests for the machine-readable report."""

    def test_counts(self, shop):
        report = generate(analyze(shop), generated_at=GENERATED_AT).report

        assert report["collection"] == {"name": "Shop API", "format": "postman"}
        assert report["requests"] == {
            "total": 3,
            "by_method": {"POST": 1, "GET": 2},
            "folders": 2,
            "with_custom_scripts": 2,
        }
        assert report["correlations"]["total"] == 3
        assert report["classification"]["linked_key"] == "username"
        assert report["parameters"]["total"] == 4
        assert report["authentication"]["total"] == 0
        assert report["side_files"] == []
        assert report["options"]["think_time"] == 1.0

    def test_clean_collection_has_no_warnings(self, shop):
        assert generate(analyze(shop), generated_at=GENERATED_AT).warnings == ()

    def test_unresolved_variable_warning(self):
        request = Request(index=0, name="r", method="GET", url="https://api.test/{{missing}}")
        collection = Collection(name="c", source_format="postman", requests=[request])

        result = generate(analyze(collection), generated_at=GENERATED_AT)

        assert [w["category"] for w in result.report["warnings"]] == ["unresolved_variable"]
        assert "url: \"https://api.test/{{missing}}\"" in result.script


class TestGeneratorOptions:
    """Tests for GeneratorOptions."""

    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("DEVWEBIFY_THINK_TIME", "3")
        monkeypatch.setenv("DEVWEBIFY_SCRIPT_LOG_LEVEL", "DEBUG")

        options = GeneratorOptions.from_settings()

        assert options.think_time == 3.0
        assert options.log_level == "debug"

    def test_overrides_win_unless_none(self):
        options = GeneratorOptions.from_settings(think_time=0.5, use_transactions=None)

        assert options.think_time == 0.5
        assert options.use_transactions is True
