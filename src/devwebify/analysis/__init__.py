"""Collection analysis: script mining, correlation, classification, auth."""

from devwebify.analysis.auth import AuthConfig, AuthType, extract_authentication, needs_signing, signing_options
from devwebify.analysis.classifier import ParameterSpec, VariableClassification, VariableKind, classify_variables
from devwebify.analysis.conversion import ConvertedScript, convert_script
from devwebify.analysis.correlation import (
    CorrelationResult,
    CorrelationRule,
    ProducedValue,
    detect_consumed_values,
    detect_correlations,
    detect_produced_values,
)
from devwebify.analysis.parameters import ExtractedParameter, extract_parameters
from devwebify.analysis.scripts import ExtractorType, ScriptVariables, mine_script

__all__ = [
    "AuthConfig",
    "AuthType",
    "ConvertedScript",
    "CorrelationResult",
    "CorrelationRule",
    "ExtractedParameter",
    "ExtractorType",
    "ParameterSpec",
    "ProducedValue",
    "ScriptVariables",
    "VariableClassification",
    "VariableKind",
    "classify_variables",
    "convert_script",
    "detect_consumed_values",
    "detect_correlations",
    "detect_produced_values",
    "extract_authentication",
    "extract_parameters",
    "mine_script",
    "needs_signing",
    "signing_options",
]
