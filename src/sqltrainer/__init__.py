"""sqltrainer package."""

from __future__ import annotations

import tomllib
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

__all__ = ["__version__"]


def _version_from_pyproject() -> str | None:
    """Return [project].version from a pyproject.toml above this file, if any."""
    for base in Path(__file__).resolve().parents:
        pyproject = base / "pyproject.toml"
        if not pyproject.is_file():
            continue
        try:
            data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError:
            return None
        project = data.get("project")
        if isinstance(project, dict) and project.get("name") == "sqltrainer":
            value = project.get("version")
            return str(value) if value else None
        return None
    return None


_source_version = _version_from_pyproject()
if _source_version is not None:
    __version__ = _source_version
else:
    try:
        __version__ = version("sqltrainer")
    except PackageNotFoundError:
        __version__ = "0+unknown"
