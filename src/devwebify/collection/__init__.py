"""Postman and Bruno collection reading.

Produces the normalized, sequence-indexed request model every analysis
stage consumes.
"""

from devwebify.collection.models import (
    AuthSource,
    BodyMode,
    Collection,
    ConversionWarning,
    KeyValue,
    Request,
    RequestBody,
)
from devwebify.collection.reader import (
    CollectionParseResult,
    ParseError,
    parse_collection_file,
    parse_collection_string,
    parse_environment_file,
)

__all__ = [
    "AuthSource",
    "BodyMode",
    "Collection",
    "CollectionParseResult",
    "ConversionWarning",
    "KeyValue",
    "ParseError",
    "Request",
    "RequestBody",
    "parse_collection_file",
    "parse_collection_string",
    "parse_environment_file",
]
