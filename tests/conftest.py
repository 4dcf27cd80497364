from pathlib import Path
from typing import Dict, Union

import pytest

from promptprep import CandidateFile, compile_matcher


def write_tree(root: Path, files: Dict[str, Union[str, bytes]]) -> None:
    """Create files (with parent folders) under root."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")


def candidates(root: Path, *rels: str):
    return [CandidateFile(absolute_path=root / rel, relative_path=rel) for rel in rels]


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def make_tree(project):
    def _make(files):
        write_tree(project, files)
        return project
    return _make


@pytest.fixture
def empty_matcher(project):
    return compile_matcher(project, default_patterns=())
