"""Utility functions for fixelcfe."""

from fixelcfe.utils.logging import ProgressCounter, setup_logging, timer
from fixelcfe.utils.exceptions import (
    FixelCFEError,
    ConfigurationError,
    FixelDataError,
    ConnectivityError,
    StatisticalError,
)

__all__ = [
    # Logging
    "ProgressCounter",
    "setup_logging",
    "timer",
    # Exceptions
    "FixelCFEError",
    "ConfigurationError",
    "FixelDataError",
    "ConnectivityError",
    "StatisticalError",
]
