"""Shared test fixtures for Valence."""

from __future__ import annotations

import json
import textwrap
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


@pytest.fixture()
def tmp_project(tmp_path: Path) -> Path:
    """Create an empty project with ``validators/``, ``profiles/`` and ``plugins/``."""
    for name in ("validators", "profiles", "plugins"):
        (tmp_path / name).mkdir()
    return tmp_path


@pytest.fixture()
def write_validator(tmp_project: Path) -> Callable[[str, dict[str, Any]], Path]:
    """Return a helper writing ``validators/<name>.json``."""

    def _write(name: str, data: dict[str, Any]) -> Path:
        path = tmp_project / "validators" / f"{name}.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def write_profile(tmp_project: Path) -> Callable[[str, dict[str, Any]], Path]:
    """Return a helper writing ``profiles/<name>.json``."""

    def _write(name: str, data: dict[str, Any]) -> Path:
        path = tmp_project / "profiles" / f"{name}.json"
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def write_plugin(tmp_project: Path) -> Callable[[str, str], Path]:
    """Return a helper writing ``plugins/<name>.py`` from dedented source."""

    def _write(name: str, source: str) -> Path:
        path = tmp_project / "plugins" / f"{name}.py"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def write_file(tmp_project: Path) -> Callable[[str, str], Path]:
    """Return a helper writing a project source file (parents created)."""

    def _write(rel_path: str, content: str = "") -> Path:
        path = tmp_project / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    return _write


SEQUENCE_VALIDATOR: dict[str, Any] = {
    "name": "sequence-required-fields",
    "description": "Sequences must declare a name",
    "type": "content",
    "filePattern": r"sequences/.*\.js$",
    "rules": [
        {
            "operator": "mustContain",
            "value": r"name\s*:",
            "message": "Sequence must define a name",
        }
    ],
}


@pytest.fixture()
def sequence_project(
    tmp_project: Path,
    write_validator: Callable[[str, dict[str, Any]], Path],
    write_file: Callable[[str, str], Path],
) -> Path:
    """Project with one content validator and one good and one bad sequence.

    Layout:
    - validators/sequence-required-fields.json (mustContain ``name:``)
    - sequences/good.js  (has a name)
    - sequences/bad.js   (missing name)
    - README.md          (not matched by the validator)
    """
    write_validator("sequence-required-fields", SEQUENCE_VALIDATOR)
    write_file("sequences/good.js", "export default {\n  Name: 'checkout',\n};\n")
    write_file("sequences/bad.js", "export default {\n  steps: [],\n};\n")
    write_file("README.md", "# demo\n")
    return tmp_project
