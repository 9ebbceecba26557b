"""Project name and version, read from pyproject.toml"""
from importlib import metadata
from pathlib import Path
import tomllib

PROJECT_NAME = "focusminder"

_version_cache: str | None = None


def get_version() -> str:
    """Version from pyproject.toml next to the package, else from the installed metadata. Cached."""
    global _version_cache
    if _version_cache is not None:
        return _version_cache

    pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
    try:
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
            _version_cache = data.get("project", {}).get("version", "unknown")
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        try:
            _version_cache = metadata.version(PROJECT_NAME)
        except metadata.PackageNotFoundError:
            _version_cache = "unknown"

    return _version_cache
