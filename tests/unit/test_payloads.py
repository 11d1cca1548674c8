"""Tests for large payload hoisting."""

import hashlib

from devwebify.generator.jscode import JsExpr
from devwebify.generator.payloads import PAYLOAD_DIR, PayloadStore, looks_like_base64

PAYLOAD = ("QUJD" * 500)[:2000]


class TestLooksLikeBase64:
    """Tests for looks_like_base64."""

    def test_long_base64(self):
        assert looks_like_base64(PAYLOAD, 1000)

    def test_too_short(self):
        assert not looks_like_base64("QUJD", 1000)

    def test_wrong_alphabet(self):
        assert not looks_like_base64("QUJD " * 400, 1000)

    def test_padding_and_url_safe(self):
        assert looks_like_base64("ab-_" * 5 + "==", 16)

    def test_non_string(self):
        assert not looks_like_base64(12345, 1)


class TestPayloadStore:
    """Tests for PayloadStore."""

    def test_hoisted_value_becomes_global_reference(self):
        store = PayloadStore(min_length=1000)
        digest = hashlib.sha256(PAYLOAD.encode()).hexdigest()[:12]

        body = store.hoist_all({"payload": {"data": PAYLOAD, "name": "doc.pdf"}})

        assert body == {"payload": {"data": JsExpr(f"load.global.payload_{digest}"), "name": "doc.pdf"}}
        (side_file,) = store.files
        assert side_file.path == f"{PAYLOAD_DIR}/payload_{digest}.txt"
        assert side_file.content == PAYLOAD

    def test_identical_payloads_stored_once(self):
        store = PayloadStore(min_length=1000)

        first = store.hoist(PAYLOAD, request="a")
        second = store.hoist(PAYLOAD, request="b")

        assert first == second
        assert len(store) == 1

    def test_distinct_payloads_stored_separately(self):
        store = PayloadStore(min_length=1000)

        store.hoist_all([PAYLOAD, PAYLOAD[::-1]])

        assert len(store) == 2

    def test_small_values_untouched(self):
        store = PayloadStore(min_length=1000)

        assert store.hoist_all({"a": ["x", 1, None]}) == {"a": ["x", 1, None]}
        assert store.files == []

    def test_load_statement(self):
        store = PayloadStore(min_length=16)
        store.hoist("A" * 20)
        (side_file,) = store.files

        assert side_file.load_statement() == (
            f'load.global.{side_file.global_name} = require("fs").readFileSync("{side_file.path}", "utf8");'
        )
