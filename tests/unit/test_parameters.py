"""Tests for fallback parameter extraction."""

import pytest

from devwebify.analysis.parameters import (
    detect_parameter_type,
    extract_parameters,
    parameter_report,
    should_parameterize,
)
from devwebify.collection.models import BodyMode, Collection, KeyValue, Request, RequestBody


class TestDetectParameterType:
    """Tests for detect_parameter_type."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "string"),
            (True, "boolean"),
            (3.5, "number"),
            ("42", "number"),
            ("false", "boolean"),
            ("ops@example.com", "email"),
            ("https://example.com/x", "url"),
            ("2024-02-29", "date"),
            ("2024-13-45", "string"),
            ("123e4567-e89b-12d3-a456-426614174000", "uuid"),
            ("hello", "string"),
        ],
    )
    def test_types(self, value, expected):
        assert detect_parameter_type(value) == expected


class TestShouldParameterize:
    """Tests for should_parameterize."""

    def test_placeholders_always(self):
        assert should_parameterize("{{x}}", "header")

    def test_static_values_never(self):
        assert not should_parameterize("true", "query")
        assert not should_parameterize("", "query")

    def test_header_length_threshold(self):
        assert not should_parameterize("short", "header")
        assert should_parameterize("x" * 21, "header")

    def test_field_length_threshold(self):
        assert not should_parameterize("abcde", "form_data")
        assert should_parameterize("abcdef", "json_body")

    def test_query_and_host_always(self):
        assert should_parameterize("a", "query")
        assert should_parameterize("api.test", "host")


class TestExtractParameters:
    """Tests for extract_parameters."""

    def test_extracts_from_every_source(self):
        collection = Collection(
            name="c",
            source_format="postman",
            variables={"env": "prod"},
            requests=[
                Request(
                    index=0,
                    name="Search",
                    method="POST",
                    url="https://api.test/search?q=shoes&flag=true",
                    headers=(
                        KeyValue("Content-Type", "application/json; charset=utf-8-long-value"),
                        KeyValue("X-Client", "a-very-long-client-identifier"),
                    ),
                    body=RequestBody(mode=BodyMode.JSON, raw='{"filter": {"brand": "acme-co"}, "n": 1}'),
                ),
                Request(
                    index=1,
                    name="Submit",
                    method="POST",
                    url="https://api.test/form",
                    body=RequestBody(mode=BodyMode.URLENCODED, fields=(KeyValue("comment", "great shoes"),)),
                ),
            ],
        )

        params = extract_parameters(collection)

        assert list(params) == ["env", "baseUrl", "query_q", "header_X-Client", "filter_brand", "form_comment"]
        assert params["baseUrl"].value == "https://api.test"
        assert params["baseUrl"].used_in == ["Search", "Submit"]
        assert params["env"].source == "collection"

    def test_templated_host_skipped(self):
        collection = Collection(
            name="c",
            source_format="postman",
            requests=[Request(index=0, name="r", method="GET", url="https://{{host}}/x")],
        )

        assert "baseUrl" not in extract_parameters(collection)

    def test_raw_body_placeholders(self):
        collection = Collection(
            name="c",
            source_format="postman",
            requests=[
                Request(
                    index=0,
                    name="r",
                    method="POST",
                    url="/x",
                    body=RequestBody(mode=BodyMode.RAW, raw="id={{orderId}}"),
                )
            ],
        )

        assert extract_parameters(collection)["orderId"].source == "body"


class TestParameterReport:
    """Tests for parameter_report."""

    def test_report_counts(self):
        collection = Collection(name="c", source_format="postman", variables={"a": "1", "b": "x@y.io"})

        report = parameter_report(extract_parameters(collection))

        assert report["total"] == 2
        assert report["by_source"] == {"collection": 2}
        assert report["by_type"] == {"number": 1, "email": 1}
        assert report["parameters"][0]["key"] == "a"
