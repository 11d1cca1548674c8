"""parameters.yml and collection_data.csv rendering."""

from __future__ import annotations

import csv
import io
from collections.abc import Sequence

import yaml

from devwebify.analysis.classifier import DEFAULT_DATA_FILE, ParameterSpec

PARAMETERS_FILE = "parameters.yml"

_HEADER = """\
# Parameters Configuration
# Auto-generated from collection/environment variables
# nextValue: once = read once per test run
"""


def render_parameters_yaml(parameters: Sequence[ParameterSpec]) -> str:
    """Render the DevWeb parameters file for the given parameters."""
    entries = [
        {
            "name": spec.name,
            "type": spec.type,
            "fileName": spec.file_name,
            "columnName": spec.column_name,
            "nextValue": spec.next_value,
            "nextRow": spec.next_row,
            "onEnd": spec.on_end,
        }
        for spec in parameters
    ]
    body = yaml.safe_dump({"parameters": entries}, sort_keys=False, default_flow_style=False, allow_unicode=True)
    return _HEADER + body


def render_data_csv(parameters: Sequence[ParameterSpec]) -> str:
    """Render the data file: one header row and one row of declared values."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([spec.column_name for spec in parameters])
    writer.writerow([spec.value for spec in parameters])
    return buffer.getvalue()


def parameter_files(parameters: Sequence[ParameterSpec]) -> dict[str, str]:
    """Return ``{file name: content}`` for the parameter files, empty when there are no parameters."""
    if not parameters:
        return {}
    files = {PARAMETERS_FILE: render_parameters_yaml(parameters)}
    for file_name in dict.fromkeys(spec.file_name for spec in parameters):
        in_file = [spec for spec in parameters if spec.file_name == file_name]
        files[file_name or DEFAULT_DATA_FILE] = render_data_csv(in_file)
    return files
