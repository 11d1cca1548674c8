"""Conversion orchestration: read, analyze, generate, write."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from devwebify.collection.reader import CollectionParseResult, parse_collection_file, parse_environment_file
from devwebify.exceptions import OutputWriteError
from devwebify.generator.params_file import parameter_files
from devwebify.generator.script import Analysis, GenerationResult, GeneratorOptions, analyze, generate
from devwebify.logging import get_logger

LOG = get_logger(__name__)

SCRIPT_FILE = "main.js"
REPORT_FILE = "analysis.json"


@dataclass
class ConversionResult:
    """Outcome of a full conversion.

    Attributes:
        output_dir: Directory the files were written to.
        generation: Generated script, side files, parameters and report.
        files: Paths of every file written, relative to ``output_dir``.
        parse_errors: Number of collection items that could not be read.
    """

    output_dir: Path
    generation: GenerationResult
    files: list[str] = field(default_factory=list)
    parse_errors: int = 0

    @property
    def report(self) -> dict[str, Any]:
        return self.generation.report


def _read(input_path: Path | str, environment_path: Path | str | None) -> CollectionParseResult:
    environment = parse_environment_file(environment_path) if environment_path else None
    result = parse_collection_file(input_path, environment)
    for error in result.errors:
        LOG.warning("collection_item_skipped", index=error.index, name=error.name, error=error.error)
    return result


def analyze_collection(
    input_path: Path | str,
    *,
    environment_path: Path | str | None = None,
    options: GeneratorOptions | None = None,
) -> Analysis:
    """Read and analyze a collection without generating code.

    Raises:
        CollectionParseError: If the collection or environment cannot be read.
    """
    return analyze(_read(input_path, environment_path).collection, options or GeneratorOptions.from_settings())


def _write(output_dir: Path, relative: str, content: str) -> None:
    target = output_dir / relative
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise OutputWriteError(f"Cannot write {target}: {exc}", path=str(target)) from exc
    LOG.debug("output_file_written", path=str(target), size=len(content))


def write_outputs(output_dir: Path | str, generation: GenerationResult, report: dict[str, Any]) -> list[str]:
    """Write the script, side files, parameter files and report.

    Returns:
        Written paths relative to ``output_dir``, in write order.

    Raises:
        OutputWriteError: If any file cannot be written.
    """
    output_dir = Path(output_dir)
    outputs: dict[str, str] = {SCRIPT_FILE: generation.script}
    outputs.update({side_file.path: side_file.content for side_file in generation.side_files})
    outputs.update(parameter_files(generation.parameters))
    outputs[REPORT_FILE] = json.dumps(report, indent=2, ensure_ascii=False) + "\n"

    for relative, content in outputs.items():
        _write(output_dir, relative, content)
    return list(outputs)


def convert_collection(
    input_path: Path | str,
    output_dir: Path | str,
    *,
    environment_path: Path | str | None = None,
    options: GeneratorOptions | None = None,
    generated_at: datetime | None = None,
) -> ConversionResult:
    """Convert a collection file into a DevWeb script directory.

    Args:
        input_path: Postman or Bruno collection export.
        output_dir: Directory to write into (created if missing).
        environment_path: Optional Postman environment export.
        options: Generation options; defaults come from settings.
        generated_at: Pins the header timestamp for reproducible output.

    Raises:
        CollectionParseError: If the input cannot be read.
        OutputWriteError: If the output cannot be written.
    """
    options = options or GeneratorOptions.from_settings()
    parsed = _read(input_path, environment_path)
    generation = generate(analyze(parsed.collection, options), generated_at=generated_at)

    report = dict(generation.report)
    report["parse_errors"] = [
        {"index": error.index, "name": error.name, "error": error.error} for error in parsed.errors
    ]
    output_dir = Path(output_dir)
    files = write_outputs(output_dir, generation, report)

    LOG.info(
        "collection_converted",
        input=str(input_path),
        output_dir=str(output_dir),
        files=len(files),
        warnings=len(generation.warnings),
    )
    return ConversionResult(
        output_dir=output_dir,
        generation=generation,
        files=files,
        parse_errors=len(parsed.errors),
    )
