"""
Version utility for the Vocalize client.

Provides a single source of truth for version information,
reading from installed package metadata or pyproject.toml.
"""

import tomllib
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

DISTRIBUTION_NAME = "vocalize-client"


def _version_from_pyproject() -> str | None:
    """Version from the nearest pyproject.toml that belongs to this project."""
    for parent in Path(__file__).resolve().parents:
        pyproject_path = parent / "pyproject.toml"
        if not pyproject_path.exists():
            continue
        try:
            with open(pyproject_path, "rb") as f:
                project = tomllib.load(f).get("project", {})
        except (OSError, tomllib.TOMLDecodeError):
            continue
        if project.get("name") == DISTRIBUTION_NAME:
            return project.get("version")
    return None


def get_version() -> str:
    """
    Get the client version.

    Priority:
    1. importlib.metadata.version() - when installed as a package
    2. pyproject.toml - when running from a source checkout

    Returns:
        Version string (e.g., "0.1.0") or "dev" if unavailable
    """
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        pass
    return _version_from_pyproject() or "dev"


# Module-level constant for easy import
__version__ = get_version()
