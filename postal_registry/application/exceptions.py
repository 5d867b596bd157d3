"""
Core business exceptions for the postal registry.

This module defines a hierarchy of custom exceptions to allow for granular
error handling and clear separation of failure domains. Every error carries a
``retryable`` flag that the backoff executor consults when classifying it.
"""

from typing import Optional


class PostalRegistryError(Exception):
    """Base exception for all component-specific errors."""

    retryable = False


# --- Configuration Errors ---

class ConfigurationError(PostalRegistryError):
    """Raised for errors related to application configuration."""
    pass


# --- Infrastructure Errors ---

class InfrastructureError(PostalRegistryError):
    """Base class for errors related to external systems (network, disk)."""
    pass


class TransientError(InfrastructureError):
    """
    An infrastructure failure that may succeed when repeated.

    When the failure came from an HTTP response, only server-side (5xx)
    statuses stay retryable; a client-side status means the request itself
    is wrong and repeating it cannot help.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        if retryable is None:
            retryable = status_code is None or status_code >= 500
        self.retryable = retryable


class NetworkError(TransientError):
    """Raised when the source page cannot be fetched."""
    pass


class DownloadError(TransientError):
    """Raised when streaming an archive to storage fails."""
    pass


# --- Domain/Business Logic Errors ---

class DomainError(PostalRegistryError):
    """Base class for errors related to business logic failures."""
    pass


class ParseError(DomainError):
    """Raised when the source page no longer has the expected form structure."""
    pass


class FormatError(DomainError):
    """Raised when an archive does not hold the expected payload file."""
    pass


class ProcessingError(DomainError):
    """Raised when an extract cannot be decoded or its dataset written."""
    pass


class LedgerError(DomainError):
    """Raised when a ledger or pointer document is malformed."""
    pass


class VersionConflict(DomainError):
    """Raised when appending a version that the ledger already holds."""

    def __init__(self, version: str):
        super().__init__(f"Version {version} already exists in the ledger")
        self.version = version


class DataUnavailable(DomainError):
    """Raised when a lookup is served while no dataset is loaded."""
    pass
