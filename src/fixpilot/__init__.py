"""FixPilot: detect, explain and patch code errors."""

from fixpilot._version import __version__

__all__ = ["__version__"]
