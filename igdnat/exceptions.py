"""Exception hierarchy for igdnat.

Every error raised by the package derives from :class:`IGDNatError`, which
carries a human readable message plus an optional ``details`` mapping.
"""

from __future__ import annotations

from typing import Any


class IGDNatError(Exception):
    """Base exception for all igdnat errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ValidationError(IGDNatError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""
