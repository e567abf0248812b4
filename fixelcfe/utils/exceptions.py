"""Custom exceptions for fixelcfe."""


class FixelCFEError(Exception):
    """Base exception for fixelcfe."""
    pass


class ConfigurationError(FixelCFEError):
    """Error in configuration."""
    pass


class FixelDataError(FixelCFEError):
    """Error related to fixel images or other input files."""
    pass


class ConnectivityError(FixelCFEError):
    """Error during fixel-fixel connectivity computation."""
    pass


class StatisticalError(FixelCFEError):
    """Error during statistical analysis."""
    pass
