"""Tests for extractor rendering."""

from devwebify.analysis.correlation import CorrelationRule
from devwebify.analysis.scripts import ExtractorType
from devwebify.generator.extractors import (
    EXTRACTOR_RENDERERS,
    Extractor,
    extracted_value,
    render_extractor,
)


class TestRenderExtractor:
    """One renderer per extractor type."""

    def test_every_type_has_a_renderer(self):
        assert set(EXTRACTOR_RENDERERS) == set(ExtractorType)

    def test_json(self):
        extractor = Extractor(name="token", type=ExtractorType.JSON, path="$.access_token")

        assert render_extractor(extractor).code == 'new load.JsonPathExtractor("token", "$.access_token")'

    def test_json_default_path(self):
        extractor = Extractor(name="id", type=ExtractorType.JSON)

        assert render_extractor(extractor).code == 'new load.JsonPathExtractor("id", "$.id")'

    def test_boundary(self):
        extractor = Extractor(name="authCode", type=ExtractorType.BOUNDARY, left_bound="code=", right_bound="&")

        assert render_extractor(extractor).code == 'new load.BoundaryExtractor("authCode", "code=", "&")'

    def test_header(self):
        extractor = Extractor(name="X-Auth-Token", type=ExtractorType.HEADER, path="X-Auth-Token")

        assert render_extractor(extractor).code == (
            'new load.BoundaryExtractor("X-Auth-Token", "X-Auth-Token: ", "\\r\\n")'
        )

    def test_cookie(self):
        extractor = Extractor(name="sid", type=ExtractorType.COOKIE, path="SESSIONID")

        assert render_extractor(extractor).code == 'new load.CookieExtractor("sid", "SESSIONID")'

    def test_regex_default(self):
        assert render_extractor(Extractor(name="r", type=ExtractorType.REGEX)).code == (
            'new load.RegexpExtractor("r", "(.+)")'
        )

    def test_text_check(self):
        extractor = Extractor.text_check("validationCheck", "Welcome")

        assert extractor.is_validation
        assert render_extractor(extractor).code == (
            'new load.TextCheckExtractor("validationCheck", '
            '{text: "Welcome", scope: load.ExtractorScope.Body, failOn: false})'
        )


class TestFromRule:
    """Tests for building extractors from correlation rules."""

    def test_copies_rule_fields(self):
        rule = CorrelationRule(
            name="authCode",
            type="auth",
            producer_request="Authorize",
            producer_index=0,
            consumer_request="Token",
            consumer_index=1,
            extractor_type=ExtractorType.BOUNDARY,
            extract_path="",
            usage_location="body",
            usage_path="code",
            left_bound="code=",
            right_bound="&",
        )

        extractor = Extractor.from_rule(rule)

        assert extractor.type == ExtractorType.BOUNDARY
        assert (extractor.left_bound, extractor.right_bound) == ("code=", "&")
        assert extractor.value_type == "auth"
        assert not extractor.is_validation


class TestExtractedValue:
    """Tests for extracted_value."""

    def test_identifier(self):
        assert extracted_value("Login_response", "token") == "Login_response.extractors.token"

    def test_non_identifier(self):
        assert extracted_value("r", "X-Auth-Token") == 'r.extractors["X-Auth-Token"]'
