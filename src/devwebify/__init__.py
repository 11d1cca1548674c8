"""devwebify - turn API collections into DevWeb load test scripts.

Reads Postman and Bruno collection exports, detects values that flow from
one response into later requests, classifies every variable, and renders
a LoadRunner DevWeb script directory.

Example:
    >>> from devwebify import convert_collection
    >>> result = convert_collection("api.postman_collection.json", "./script")
    >>> result.report["correlations"]["total"]
    3
"""

from devwebify.collection import Collection, Request, parse_collection_file
from devwebify.config import DevwebifySettings, get_settings
from devwebify.exceptions import (
    CollectionParseError,
    ConfigurationError,
    DevwebifyError,
    OutputWriteError,
)
from devwebify.generator import GenerationResult, GeneratorOptions, analyze, generate
from devwebify.pipeline import ConversionResult, analyze_collection, convert_collection

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "Collection",
    "CollectionParseError",
    "ConfigurationError",
    "ConversionResult",
    "DevwebifyError",
    "DevwebifySettings",
    "GenerationResult",
    "GeneratorOptions",
    "OutputWriteError",
    "Request",
    "analyze",
    "analyze_collection",
    "convert_collection",
    "generate",
    "get_settings",
    "parse_collection_file",
]
