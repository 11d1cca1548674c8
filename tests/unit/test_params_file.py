"""Tests for parameter data file rendering."""

import yaml

from devwebify.analysis.classifier import DEFAULT_DATA_FILE, ParameterSpec
from devwebify.generator.params_file import (
    PARAMETERS_FILE,
    parameter_files,
    render_data_csv,
    render_parameters_yaml,
)


class TestParametersYaml:
    """Tests for render_parameters_yaml."""

    def test_entries(self):
        specs = [
            ParameterSpec(name="username", value="alice"),
            ParameterSpec(name="password", value="s3cret", next_row="same as username", linked_to="username"),
        ]

        text = render_parameters_yaml(specs)

        assert text.startswith("# Parameters Configuration")
        data = yaml.safe_load(text)
        assert data["parameters"][0] == {
            "name": "username",
            "type": "csv",
            "fileName": DEFAULT_DATA_FILE,
            "columnName": "username",
            "nextValue": "once",
            "nextRow": "sequential",
            "onEnd": "loop",
        }
        assert data["parameters"][1]["nextRow"] == "same as username"

    def test_values_not_in_yaml(self):
        text = render_parameters_yaml([ParameterSpec(name="apiKey", value="abc123")])

        assert "abc123" not in text


class TestDataCsv:
    """Tests for render_data_csv."""

    def test_header_and_row(self):
        specs = [ParameterSpec(name="a", value="1"), ParameterSpec(name="b", value="x,y")]

        assert render_data_csv(specs) == 'a,b\n1,"x,y"\n'


class TestParameterFiles:
    """Tests for parameter_files."""

    def test_no_parameters_no_files(self):
        assert parameter_files([]) == {}

    def test_files(self):
        files = parameter_files([ParameterSpec(name="a", value="1")])

        assert list(files) == [PARAMETERS_FILE, DEFAULT_DATA_FILE]
        assert files[DEFAULT_DATA_FILE] == "a\n1\n"
