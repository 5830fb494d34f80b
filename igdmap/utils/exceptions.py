"""Exception hierarchy for igdmap.

Every error raised by the package derives from :class:`IGDMapError`, which
carries a human readable message and an optional ``details`` mapping.
"""

from __future__ import annotations

from typing import Any


class IGDMapError(Exception):
    """Base exception for all igdmap errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize igdmap error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ValidationError(IGDMapError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""
