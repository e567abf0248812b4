"""Core pipeline orchestration for fixelcfe."""

from fixelcfe.core.version import __version__
from fixelcfe.core.pipeline import run_fixelcfe_pipeline

__all__ = [
    "__version__",
    "run_fixelcfe_pipeline",
]
