"""Custom exception types for the GA region report generator."""

from typing import Iterable, Optional


class ReportGeneratorError(Exception):
    """Base exception for all recoverable report generator errors."""


class ConfigurationError(ReportGeneratorError):
    """Raised when runtime configuration values are missing or invalid."""


class AuthenticationError(ReportGeneratorError):
    """Raised when the analytics provider credential is unavailable or invalid."""


class ApiError(ReportGeneratorError):
    """Raised when a Google Analytics API request fails or returns an unexpected response."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DataValidationError(ReportGeneratorError):
    """Raised when provider payloads do not meet expected constraints."""


class RequestValidationError(ReportGeneratorError):
    """Raised when an inbound report request is rejected before any provider call.

    All individual problems are collected so the caller sees them in one error.
    """

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = list(errors)
        super().__init__("Invalid report request: " + "; ".join(self.errors))
