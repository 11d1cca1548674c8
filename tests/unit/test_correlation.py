"""Tests for correlation detection."""

from pathlib import Path

from devwebify.analysis.correlation import (
    CorrelationRule,
    ExtractorType,
    build_registry,
    correlation_summary,
    detect_consumed_values,
    detect_correlations,
    detect_produced_values,
    infer_type,
)
from devwebify.collection.models import BodyMode, KeyValue, Request, RequestBody
from devwebify.collection.reader import parse_collection_file


def make_request(index: int, name: str, url: str = "https://api.test/x", **kwargs) -> Request:
    kwargs.setdefault("method", "GET")
    return Request(index=index, name=name, url=url, **kwargs)


def producer(index: int, name: str, variable: str, path: str = "id") -> Request:
    return make_request(index, name, test_script=f'pm.environment.set("{variable}", jsonData.{path});')


def consumer(index: int, name: str, variable: str) -> Request:
    return make_request(index, name, url=f"https://api.test/items/{{{{{variable}}}}}")


class TestInferType:
    """Tests for infer_type."""

    def test_token_in_expression_wins(self):
        assert infer_type("value", "jsonData.token") == "token"

    def test_name_rules_in_order(self):
        assert infer_type("accessToken") == "token"
        assert infer_type("sessionKey") == "sessionId"
        assert infer_type("authCode") == "auth"
        assert infer_type("orderId") == "id"
        assert infer_type("xsrf_csrf") == "csrf"
        assert infer_type("nonce") == "nonce"
        assert infer_type("timestamp") == "timestamp"
        assert infer_type("color") == "dynamic"


class TestScenarios:
    """End-to-end detection scenarios."""

    def test_bearer_token_from_login(self):
        requests = [
            make_request(0, "Login", test_script='pm.environment.set("token", jsonData.access_token);'),
            make_request(1, "GetProfile", headers=(KeyValue("Authorization", "Bearer {{token}}"),)),
        ]

        (rule,) = detect_correlations(requests).rules

        assert rule.name == "token"
        assert rule.producer_request == "Login"
        assert rule.consumer_request == "GetProfile"
        assert rule.extractor_type == ExtractorType.JSON
        assert rule.extract_path == "$.access_token"
        assert rule.usage_location == "headers"

    def test_created_id_heuristic(self):
        requests = [
            make_request(0, "CreateOrder", url="https://api.test/orders/create", method="POST"),
            consumer(1, "GetOrder", "createdId"),
        ]

        (rule,) = detect_correlations(requests).rules

        assert rule.name == "createdId"
        assert rule.producer_index == 0
        assert rule.extract_path == "$.id"
        assert rule.usage_location == "url"

    def test_created_id_requires_post(self):
        produced = detect_produced_values(make_request(0, "CreateOrder", url="https://api.test/create"))

        assert "createdId" not in [p.name for p in produced]

    def test_no_producer_means_no_rule(self):
        requests = [make_request(0, "Search", url="https://api.test/search?key={{apiKey}}")]

        assert detect_correlations(requests).rules == ()


class TestOrdering:
    """Producer/consumer ordering invariants."""

    def test_producer_must_precede_consumer(self):
        requests = [consumer(0, "Reader", "itemId"), producer(1, "Writer", "itemId")]

        assert detect_correlations(requests).rules == ()

    def test_same_request_is_not_its_own_producer(self):
        request = make_request(
            0,
            "Both",
            url="https://api.test/items/{{itemId}}",
            test_script='pm.environment.set("itemId", jsonData.id);',
        )

        assert detect_correlations([request]).rules == ()

    def test_latest_earlier_producer_wins(self):
        requests = [
            producer(0, "First", "itemId", "first"),
            producer(1, "Second", "itemId", "second"),
            consumer(2, "Reader", "itemId"),
            producer(3, "Third", "itemId", "third"),
        ]

        (rule,) = detect_correlations(requests).rules

        assert rule.producer_request == "Second"
        assert rule.extract_path == "$.second"

    def test_producers_at_one_and_three_consumer_at_four(self):
        requests = [
            make_request(0, "Start"),
            producer(1, "P1", "x"),
            make_request(2, "Middle"),
            producer(3, "P3", "x"),
            consumer(4, "C", "x"),
        ]

        (rule,) = detect_correlations(requests).rules

        assert rule.producer_index == 3

    def test_requests_sorted_by_index_not_list_position(self):
        requests = [consumer(1, "Reader", "itemId"), producer(0, "Writer", "itemId")]

        (rule,) = detect_correlations(requests).rules

        assert rule.producer_request == "Writer"

    def test_every_rule_points_backwards(self, fixtures_dir: Path):
        requests = parse_collection_file(fixtures_dir / "shop.postman_collection.json").requests

        rules = detect_correlations(requests).rules

        assert rules
        assert all(rule.producer_index < rule.consumer_index for rule in rules)


class TestUniqueness:
    """One rule per (name, consumer request name)."""

    def test_name_consumed_twice_in_one_request(self):
        request = make_request(
            1,
            "Reader",
            url="https://api.test/items/{{itemId}}?again={{itemId}}",
            headers=(KeyValue("X-Item", "{{itemId}}"),),
        )

        rules = detect_correlations([producer(0, "Writer", "itemId"), request]).rules

        assert len(rules) == 1
        assert rules[0].usage_location == "headers"

    def test_duplicate_consumer_names_collapse(self):
        requests = [producer(0, "Writer", "itemId"), consumer(1, "Reader", "itemId"), consumer(2, "Reader", "itemId")]

        rules = detect_correlations(requests).rules

        assert [r.consumer_index for r in rules] == [1]

    def test_distinct_consumers_each_get_a_rule(self):
        requests = [producer(0, "Writer", "itemId"), consumer(1, "A", "itemId"), consumer(2, "B", "itemId")]

        assert [r.consumer_request for r in detect_correlations(requests).rules] == ["A", "B"]


class TestProducedValues:
    """Tests for the produce pass."""

    def test_script_write_beats_heuristic(self):
        request = make_request(
            0,
            "Login",
            url="https://api.test/auth/login",
            test_script='pm.environment.set("userId", jsonData.user.id);',
        )

        produced = {p.name: p for p in detect_produced_values(request)}

        assert produced["userId"].extract_path == "$.user.id"
        assert produced["userId"].source == "script"
        assert produced["authToken"].source == "heuristic"

    def test_login_token_heuristic_skipped_when_script_sets_token(self):
        request = make_request(0, "Login", test_script='pm.environment.set("jwt", jsonData.token);')

        names = [p.name for p in detect_produced_values(request)]

        assert "jwt" in names
        assert "authToken" not in names

    def test_session_and_oauth_heuristics(self):
        session = detect_produced_values(make_request(0, "Start", url="https://api.test/session/new"))
        oauth = detect_produced_values(make_request(0, "Authorize", url="https://api.test/oauth/authorize"))

        assert [p.name for p in session] == ["sessionId"]
        code = next(p for p in oauth if p.name == "authCode")
        assert code.extractor_type == ExtractorType.BOUNDARY
        assert (code.left_bound, code.right_bound) == ("code=", "&")

    def test_response_header_candidates(self):
        request = make_request(
            0,
            "Fetch",
            response_headers=(KeyValue("X-Auth-Token", "abc"), KeyValue("Content-Type", "json")),
        )

        (value,) = detect_produced_values(request)

        assert value.name == "X-Auth-Token"
        assert value.extractor_type == ExtractorType.HEADER
        assert value.source == "response_header"

    def test_registry_keeps_all_producers_in_order(self):
        registry, warnings = build_registry([producer(0, "A", "x"), producer(1, "B", "x")])

        assert [p.producer_request for p in registry.producers("x")] == ["A", "B"]
        assert registry.latest_before("x", 1).producer_request == "A"
        assert registry.latest_before("x", 0) is None
        assert warnings == []


class TestConsumedValues:
    """Tests for the consume pass."""

    def test_locations(self):
        request = make_request(
            0,
            "Mixed",
            url="https://{{host}}/users/{{userId}}?page={{page}}",
            method="POST",
            headers=(KeyValue("X-Trace", "{{traceId}}"),),
            body=RequestBody(mode=BodyMode.JSON, raw='{"order": {"items": [{"sku": "{{sku}}"}]}}'),
            pre_request_script='const n = pm.environment.get("nonce");',
        )

        consumed = {c.name: (c.location, c.path) for c in detect_consumed_values(request)}

        assert consumed == {
            "nonce": ("script", "pre-request"),
            "traceId": ("headers", "X-Trace"),
            "host": ("url", "path"),
            "userId": ("url", "path"),
            "page": ("queryString", "page"),
            "sku": ("body", "$.order.items[0].sku"),
        }

    def test_form_fields(self):
        request = make_request(
            0,
            "Form",
            body=RequestBody(
                mode=BodyMode.URLENCODED,
                fields=(KeyValue("token", "{{csrfToken}}"), KeyValue("off", "{{skip}}", disabled=True)),
            ),
        )

        consumed = detect_consumed_values(request)

        assert [(c.name, c.path) for c in consumed] == [("csrfToken", "token")]

    def test_unparseable_json_body_scanned_literally(self):
        request = make_request(0, "Raw", body=RequestBody(mode=BodyMode.JSON, raw='{"id": {{orderId}}}'))

        (value,) = detect_consumed_values(request)

        assert (value.name, value.path) == ("orderId", "$")

    def test_authorization_loose_placeholder(self):
        request = make_request(0, "Auth", headers=(KeyValue("Authorization", "Bearer <token>"),))

        (value,) = detect_consumed_values(request)

        assert value.name == "token"
        assert value.path == "Authorization"

    def test_dollar_brace_placeholder(self):
        request = make_request(0, "Tmpl", headers=(KeyValue("X-Id", "${requestId}"),))

        assert [c.name for c in detect_consumed_values(request)] == ["requestId"]


class TestCollectionCorrelations:
    """Correlation over a real collection file."""

    def test_shop_collection(self, fixtures_dir: Path):
        requests = parse_collection_file(fixtures_dir / "shop.postman_collection.json").requests

        result = detect_correlations(requests)
        pairs = [(r.name, r.producer_request, r.consumer_request) for r in result.rules]

        assert pairs == [
            ("authToken", "Login", "Get Profile"),
            ("authToken", "Login", "Get Orders"),
            ("userId", "Get Profile", "Get Orders"),
        ]
        assert result.names == {"authToken", "userId"}
        assert [r.name for r in result.produced_by(0)] == ["authToken"]
        assert [r.name for r in result.consumed_by(2)] == ["authToken", "userId"]

    def test_malformed_request_becomes_warning(self):
        bad = make_request(1, "Bad", headers=(KeyValue("X", "{{a}}"),))
        object.__setattr__(bad, "headers", 42)

        result = detect_correlations([producer(0, "Writer", "a"), bad])

        assert result.rules == ()
        assert [w.category for w in result.warnings] == ["malformed_request"]
        assert result.warnings[0].request == "Bad"


class TestSummary:
    """Tests for correlation_summary."""

    def test_summary_counts_and_recommendations(self):
        rule = CorrelationRule(
            name="token",
            type="token",
            producer_request="Login",
            producer_index=0,
            consumer_request="Me",
            consumer_index=1,
            extractor_type=ExtractorType.JSON,
            extract_path="$.token",
            usage_location="headers",
            usage_path="Authorization",
        )

        summary = correlation_summary([rule])

        assert summary["total"] == 1
        assert summary["by_type"] == {"token": 1}
        assert summary["recommendations"][0].startswith("Authentication tokens detected")
        assert summary["rules"][0]["extractor_type"] == "json"
        assert "left_bound" not in summary["rules"][0]

    def test_empty_summary_recommends_review(self):
        assert correlation_summary([])["recommendations"] == [
            "No automatic correlations detected. Manual review recommended."
        ]
