"""DevWeb script generation."""

from devwebify.generator.script import (
    Analysis,
    GenerationResult,
    GeneratorOptions,
    ScriptGenerator,
    analyze,
    generate,
)

__all__ = [
    "Analysis",
    "GenerationResult",
    "GeneratorOptions",
    "ScriptGenerator",
    "analyze",
    "generate",
]
