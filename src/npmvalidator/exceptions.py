"""
Exceptions raised by npm-validator.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from npmvalidator.adapters.base import FetchError


class NpmValidatorError(Exception):
    """Base exception for all npm-validator errors."""

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class InvalidPackageNameError(NpmValidatorError):
    """Raised when user input is not a valid npm package name."""

    def __init__(self, value: str, reason: str):
        super().__init__(reason)
        self.value = value
        self.reason = reason


class PackageNotFoundError(NpmValidatorError):
    """Raised when a package does not exist on the npm registry."""

    def __init__(self, package_name: str):
        super().__init__(
            f'Package "{package_name}" not found on npm registry',
            details="Check the spelling or search https://www.npmjs.com.",
        )
        self.package_name = package_name


class UpstreamUnavailableError(NpmValidatorError):
    """Raised when a mandatory upstream source fails for a reason other than not-found."""

    def __init__(self, error: FetchError):
        super().__init__(f"Failed to fetch {error.source} data", details=error.message)
        self.error = error


class EnrichmentUnavailableError(NpmValidatorError):
    """Raised when no AI provider could produce a verdict."""

    def __init__(self, message: str, kind: str = "unavailable"):
        super().__init__(message)
        self.kind = kind
