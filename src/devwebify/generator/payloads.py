"""Hoisting of large base64 payloads out of generated request bodies.

Each distinct payload (by SHA-256 of its text) is stored once as
``payloads/payload_<hash>.txt`` and loaded into ``load.global`` during
initialization; request bodies reference the global instead of inlining
megabytes of text.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Any

from devwebify.generator.jscode import JsExpr, js_string
from devwebify.logging import get_logger

LOG = get_logger(__name__)

PAYLOAD_DIR = "payloads"
HASH_LENGTH = 12

# Standard and URL-safe alphabets, optional padding
BASE64_REGEX = re.compile(r"^[A-Za-z0-9+/_-]+={0,2}$")


def looks_like_base64(value: Any, min_length: int) -> bool:
    """Check whether value is a base64-looking string of at least ``min_length`` characters."""
    return isinstance(value, str) and len(value) >= min_length and BASE64_REGEX.match(value) is not None


@dataclass(frozen=True)
class SideFile:
    """A payload written next to the generated script."""

    path: str
    content: str
    global_name: str

    @property
    def reference(self) -> JsExpr:
        return JsExpr(f"load.global.{self.global_name}")

    def load_statement(self) -> str:
        return f'load.global.{self.global_name} = require("fs").readFileSync({js_string(self.path)}, "utf8");'


class PayloadStore:
    """Collects hoisted payloads, deduplicated by content hash."""

    def __init__(self, min_length: int) -> None:
        self.min_length = min_length
        self._files: dict[str, SideFile] = {}

    def __len__(self) -> int:
        return len(self._files)

    @property
    def files(self) -> list[SideFile]:
        """Side files in first-seen order."""
        return list(self._files.values())

    def hoist(self, value: Any, *, request: str | None = None) -> JsExpr | None:
        """Store value if it qualifies, returning the expression that replaces it."""
        if not looks_like_base64(value, self.min_length):
            return None
        digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:HASH_LENGTH]
        side_file = self._files.get(digest)
        if side_file is None:
            side_file = self._files[digest] = SideFile(
                path=f"{PAYLOAD_DIR}/payload_{digest}.txt",
                content=value,
                global_name=f"payload_{digest}",
            )
            LOG.debug("payload_hoisted", request=request, file=side_file.path, length=len(value))
        return side_file.reference

    def hoist_all(self, value: Any, *, request: str | None = None) -> Any:
        """Replace every qualifying string inside a JSON-like value."""
        if isinstance(value, dict):
            return {key: self.hoist_all(item, request=request) for key, item in value.items()}
        if isinstance(value, list):
            return [self.hoist_all(item, request=request) for item in value]
        hoisted = self.hoist(value, request=request)
        return value if hoisted is None else hoisted
