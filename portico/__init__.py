# =============================================================================
# Portico Main Package - Dynamic Version Loading
# =============================================================================
"""
Portico - application server bootstrap and lifecycle layer

Version is loaded from the installed distribution metadata, falling back
to pyproject.toml when running from a source checkout.
"""

from __future__ import annotations

import tomllib
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path


def _get_version() -> str:
    """
    Get package version from installed metadata.

    Returns:
        Version string (e.g., "0.3.0")
    """
    try:
        return version("portico")
    except PackageNotFoundError:
        pass  # Running from a source checkout

    pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
    if pyproject_path.exists():
        with open(pyproject_path, "rb") as f:
            data = tomllib.load(f)
            return data["project"]["version"]

    return "0.0.0-unknown"


__version__: str = _get_version()
__description__: str = "Portico - application server bootstrap, content delivery and lifecycle"
__author__: str = "Portico Team"

# =============================================================================
# EXPORTS
# =============================================================================
__all__ = [
    "__version__",
    "__description__",
    "__author__",
]
