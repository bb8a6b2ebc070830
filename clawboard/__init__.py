"""Operator console for a multi-session agent gateway."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("clawboard")
except PackageNotFoundError:
    # Source checkout without an installed distribution.
    __version__ = "0.0.0"

__all__ = ["__version__"]
