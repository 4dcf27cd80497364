"""Tests for ignore-pattern compilation, loading and .gitignore bookkeeping."""

import logging

import pytest

from promptprep import (
    DEFAULT_IGNORE_PATTERNS,
    ErrorKind,
    PackError,
    add_to_gitignore,
    compile_matcher,
    load_ignore_source,
    load_matcher,
    normalize_relative,
)


class TestNormalizeRelative:

    @pytest.mark.parametrize("raw, expected", [
        ("src\\app\\main.js", "src/app/main.js"),
        ("./src/app.js", "src/app.js"),
        ("src/", "src"),
        ("/src/a.js", "src/a.js"),
        (".", ""),
        ("", ""),
    ])
    def test_normalizes(self, raw, expected):
        assert normalize_relative(raw) == expected


class TestIgnoreMatcher:

    def test_default_directory_patterns(self, project):
        matcher = compile_matcher(project)
        assert matcher.matches("node_modules/")
        assert matcher.matches("node_modules/react/index.js")
        assert matcher.matches("packages/web/dist/")
        assert not matcher.matches("src/")

    def test_default_file_patterns(self, project):
        matcher = compile_matcher(project)
        assert matcher.matches("README.md")
        assert matcher.matches("docs/guide.md")
        assert matcher.matches(".gitignore")
        assert matcher.matches(".env.local")
        assert matcher.matches("assets/logo.png")
        assert not matcher.matches("src/index.js")

    def test_windows_separators(self, project):
        matcher = compile_matcher(project)
        assert matcher.matches("node_modules\\lib\\a.js")
        assert matcher.matches("docs\\guide.md")
        assert not matcher.matches("src\\index.js")

    def test_local_patterns_are_added(self, project):
        matcher = compile_matcher(project, local_source="# generated\n*.log\n/secret/\n")
        assert matcher.matches("server.log")
        assert matcher.matches("secret/")
        assert matcher.matches("secret/key.js")
        assert not matcher.matches("nested/secret.js")
        assert matcher.matches("node_modules/")

    @pytest.mark.parametrize("name", ["build", "bin", "out", "dist", "target", "obj"])
    def test_directory_patterns_skip_plain_files(self, project, name):
        matcher = compile_matcher(project)
        assert not matcher.matches(name)
        assert not matcher.matches(f"src/{name}")
        assert matcher.matches(f"{name}/")
        assert matcher.matches(f"{name}/x.js")
        assert matcher.matches(f"src/{name}/deep/x.js")

    def test_local_directory_pattern_skips_plain_file(self, project):
        matcher = compile_matcher(project, default_patterns=(), local_source="generated/\n")
        assert not matcher.matches("generated")
        assert not matcher.matches("lib\\generated")
        assert matcher.matches("generated/")
        assert matcher.matches("lib/generated/api.js")

    def test_no_patterns_matches_nothing(self, empty_matcher):
        assert not empty_matcher.matches("anything.md")
        assert not empty_matcher.matches("")

    def test_patterns_are_immutable(self, project):
        matcher = compile_matcher(project, local_source="*.log")
        assert isinstance(matcher.patterns, tuple)
        assert matcher.patterns[:len(DEFAULT_IGNORE_PATTERNS)] == DEFAULT_IGNORE_PATTERNS
        assert matcher.patterns[-1] == "*.log"


class TestLoadIgnoreSource:

    def test_missing_file(self, project):
        assert load_ignore_source(project) is None

    def test_reads_file(self, project):
        (project / ".gitignore").write_text("*.log\n", encoding="utf-8")
        assert load_ignore_source(project) == "*.log\n"

    def test_unreadable_file_falls_back_to_defaults(self, project, caplog):
        # A directory named .gitignore cannot be read as text
        (project / ".gitignore").mkdir()
        with caplog.at_level(logging.WARNING):
            assert load_ignore_source(project) is None
        assert "default patterns only" in caplog.text

        matcher = load_matcher(project)
        assert matcher.matches("node_modules/")
        assert not matcher.matches("app.log")

    def test_undecodable_file_falls_back(self, project, caplog):
        (project / ".gitignore").write_bytes(b"\xff\xfe*.log\n")
        with caplog.at_level(logging.WARNING):
            assert load_ignore_source(project) is None
        assert ".gitignore" in caplog.text

    def test_load_matcher_extra_patterns(self, project):
        (project / ".gitignore").write_text("*.log\n", encoding="utf-8")
        matcher = load_matcher(project, extra_patterns=["/_ai_output/"])
        assert matcher.matches("_ai_output/")
        assert matcher.matches("_ai_output/20240101_000000.txt")
        assert matcher.matches("debug.log")


class TestAddToGitignore:

    def test_creates_file(self, project):
        assert add_to_gitignore(project, "_ai_output") is True
        assert (project / ".gitignore").read_text(encoding="utf-8") == "/_ai_output/\n"

    def test_idempotent(self, project):
        (project / ".gitignore").write_text("node_modules/\n/_ai_output/\n", encoding="utf-8")
        assert add_to_gitignore(project, "_ai_output") is False
        assert add_to_gitignore(project, "_ai_output") is False
        content = (project / ".gitignore").read_text(encoding="utf-8")
        assert content.count("/_ai_output/") == 1

    def test_adds_missing_newline(self, project):
        (project / ".gitignore").write_text("*.log", encoding="utf-8")
        add_to_gitignore(project, "out_ai")
        assert (project / ".gitignore").read_text(encoding="utf-8") == "*.log\n/out_ai/\n"

    def test_failure_is_tagged(self, project):
        (project / ".gitignore").mkdir()
        with pytest.raises(PackError) as excinfo:
            add_to_gitignore(project, "_ai_output")
        assert excinfo.value.kind == ErrorKind.IGNORE_FILE_UPDATE
        assert not excinfo.value.fatal
