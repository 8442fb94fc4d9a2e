"""
Service identity stamped on log records and the OpenAPI document.

The installed distribution is asked first; a source checkout falls back to
the nearest pyproject.toml.
"""

import tomllib
from functools import lru_cache
from importlib import metadata as importlib_metadata
from pathlib import Path

DEFAULT_SERVICE_NAME = "pawpal-messenger"
UNKNOWN_VERSION = "unknown"


def find_pyproject(start: Path, max_up: int = 5) -> Path | None:
    for directory in [start, *start.parents][: max_up + 1]:
        candidate = directory / "pyproject.toml"
        if candidate.is_file():
            return candidate
    return None


@lru_cache()
def _project_table() -> dict:
    pyproject = find_pyproject(Path(__file__).resolve().parent)
    if pyproject is None:
        return {}
    try:
        with pyproject.open("rb") as fh:
            return tomllib.load(fh).get("project", {})
    except (OSError, tomllib.TOMLDecodeError):
        return {}


def get_project_name() -> str:
    return _project_table().get("name") or DEFAULT_SERVICE_NAME


@lru_cache()
def get_project_version() -> str:
    try:
        return importlib_metadata.version(get_project_name())
    except importlib_metadata.PackageNotFoundError:
        return _project_table().get("version") or UNKNOWN_VERSION


__all__ = ["find_pyproject", "get_project_name", "get_project_version"]
