"""Configuration parameter validation."""

from typing import Any, List
from pathlib import Path

from fixelcfe.utils.exceptions import ConfigurationError


class ConfigValidator:
    """Validate configuration parameters.

    Accumulates validation errors and can raise them all at once.

    Attributes:
        errors: List of validation error messages
    """

    def __init__(self):
        """Initialize validator with empty error list."""
        self.errors: List[str] = []

    def validate_positive(self, value: float, name: str) -> bool:
        """Validate value is positive.

        Args:
            value: Value to validate
            name: Parameter name for error message

        Returns:
            True if valid, False otherwise
        """
        if not self._is_number(value, name):
            return False

        if value <= 0:
            self.errors.append(f"{name} must be positive, got {value}")
            return False

        return True

    def validate_non_negative(self, value: float, name: str) -> bool:
        """Validate value is non-negative.

        Args:
            value: Value to validate
            name: Parameter name for error message

        Returns:
            True if valid, False otherwise
        """
        if not self._is_number(value, name):
            return False

        if value < 0:
            self.errors.append(f"{name} must be non-negative, got {value}")
            return False

        return True

    def validate_range(self, value: float, low: float, high: float, name: str) -> bool:
        """Validate value lies in the closed interval [low, high].

        Args:
            value: Value to validate
            low: Smallest accepted value
            high: Largest accepted value
            name: Parameter name for error message

        Returns:
            True if valid, False otherwise
        """
        if not self._is_number(value, name):
            return False

        if not low <= value <= high:
            self.errors.append(f"{name} must be between {low} and {high}, got {value}")
            return False

        return True

    def validate_integer(self, value: Any, name: str, minimum: int = 1) -> bool:
        """Validate value is an integer no smaller than ``minimum``.

        Args:
            value: Value to validate
            name: Parameter name for error message
            minimum: Smallest accepted value

        Returns:
            True if valid, False otherwise
        """
        if isinstance(value, bool) or not isinstance(value, int):
            self.errors.append(f"{name} must be an integer, got {type(value).__name__}")
            return False

        if value < minimum:
            self.errors.append(f"{name} must be at least {minimum}, got {value}")
            return False

        return True

    def validate_file_exists(self, path: Path, name: str) -> bool:
        """Validate file exists.

        Args:
            path: Path to validate
            name: Parameter name for error message

        Returns:
            True if valid, False otherwise
        """
        if not isinstance(path, Path):
            path = Path(path)

        if not path.exists():
            self.errors.append(f"{name} file not found: {path}")
            return False

        if not path.is_file():
            self.errors.append(f"{name} is not a file: {path}")
            return False

        return True

    def _is_number(self, value: Any, name: str) -> bool:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self.errors.append(f"{name} must be a number, got {type(value).__name__}")
            return False
        return True

    def raise_if_errors(self) -> None:
        """Raise ConfigurationError if any validation errors occurred.

        Raises:
            ConfigurationError: If there are any validation errors
        """
        if self.errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(
                f"  - {err}" for err in self.errors
            )
            raise ConfigurationError(error_msg)
