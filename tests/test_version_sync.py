"""Test that the package version matches the packaging metadata."""

import re
from pathlib import Path

import deskrelay


def test_versions_match():
    """Verify that __version__ matches the version in pyproject.toml."""
    repo_root = Path(__file__).parent.parent
    pyproject_path = repo_root / "pyproject.toml"
    assert pyproject_path.exists(), "Could not find pyproject.toml"

    match = re.search(r'^version\s*=\s*"([^"]+)"', pyproject_path.read_text(), re.M)
    assert match, "Could not find version in pyproject.toml"
    assert deskrelay.__version__ == match.group(1)
