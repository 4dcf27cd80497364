"""Tests for CLI option validation."""

from pathlib import Path

import pytest

from promptprep import (
    ConfigBuilder,
    Defaults,
    ErrorKind,
    PackError,
    create_parser,
    is_valid_extension,
    is_valid_path,
    parse_comma_separated,
)


def build(*argv):
    return ConfigBuilder.from_args(create_parser().parse_args(list(argv)))


def validation_error(*argv):
    with pytest.raises(PackError) as excinfo:
        build(*argv)
    assert excinfo.value.kind == ErrorKind.CONFIG_VALIDATION
    assert excinfo.value.fatal
    return str(excinfo.value)


class TestHelpers:

    def test_parse_comma_separated(self):
        assert parse_comma_separated(" a.js, ,b.js ,") == ["a.js", "b.js"]
        assert parse_comma_separated("") == []
        assert parse_comma_separated(None) == []

    @pytest.mark.parametrize("value, valid", [
        ("src/app.js", True),
        ("src\\app.js", True),
        ("../outside.js", False),
        ("a|b.js", False),
        ("bad\x01name", False),
        ("what?.js", False),
    ])
    def test_is_valid_path(self, value, valid):
        assert is_valid_path(value) is valid

    @pytest.mark.parametrize("value, valid", [
        (".js", True),
        (".tsx", True),
        ("js", False),
        (".min.js", False),
        (".", False),
    ])
    def test_is_valid_extension(self, value, valid):
        assert is_valid_extension(value) is valid


class TestConfigBuilder:

    def test_defaults(self):
        config = build()
        assert config.project_path == Path(".").resolve()
        assert config.output_folder_name == Defaults.OUTPUT_FOLDER
        assert config.include.is_empty and config.exclude.is_empty
        assert config.concurrency == Defaults.CONCURRENCY

    def test_all_options(self, tmp_path):
        config = build(
            "-p", str(tmp_path),
            "-o", "ctx",
            "-if", "main.py, app.py",
            "-ie", ".py",
            "-id", "src/",
            "-xf", "src/secret.py",
            "-xe", ".pyc,.txt",
            "-xd", "tests",
            "-c", "16",
        )
        assert config.project_path == tmp_path.resolve()
        assert config.output_dir == tmp_path.resolve() / "ctx"
        assert config.include.files == frozenset({"main.py", "app.py"})
        assert config.include.extensions == frozenset({".py"})
        assert config.include.folders == frozenset({"src"})
        assert config.exclude.files == frozenset({"src/secret.py"})
        assert config.exclude.extensions == frozenset({".pyc", ".txt"})
        assert config.exclude.folders == frozenset({"tests"})
        assert config.concurrency == 16

    @pytest.mark.parametrize("value", ["0", "101", "-3", "four"])
    def test_concurrency_out_of_range(self, value):
        assert "concurrency" in validation_error("-c", value)

    @pytest.mark.parametrize("value", ["1", "100"])
    def test_concurrency_bounds(self, value):
        assert build("-c", value).concurrency == int(value)

    def test_bad_extension(self):
        assert "include.extensions" in validation_error("-ie", "py")

    @pytest.mark.parametrize("folder", ["a/b", "a\\b", ".", "x|y"])
    def test_bad_output_folder(self, folder):
        assert "outputFolder" in validation_error("-o", folder)

    def test_bad_paths(self):
        message = validation_error("-xf", "../etc/passwd", "-id", "a<b")
        assert "exclude.files" in message
        assert "include.folders" in message

    def test_all_issues_reported_together(self):
        message = validation_error("-c", "500", "-xe", "txt", "-o", "a/b")
        assert message.startswith("Invalid options:")
        assert len(message.splitlines()) == 4
