"""Connectivity-based fixel enhancement with permutation testing."""

from fixelcfe.core.version import __version__

__all__ = ["__version__"]
