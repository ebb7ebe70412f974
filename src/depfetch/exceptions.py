"""
Custom exceptions for depfetch.

This module defines the error taxonomy of the package acquisition core. Every
failure raised by a repository backend or one of its collaborators is a
subclass of DepfetchError so callers can branch on the error kind instead of
comparing message strings.
"""

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from depfetch.repos.interfaces import NoMatchedVersion


class DepfetchError(Exception):
    """
    Base exception for all depfetch errors.

    All custom exceptions in depfetch inherit from this class to allow for
    easy catching of all application-specific errors.
    """

    def __init__(self, message: str, details: str | None = None) -> None:
        """
        Initialize the exception.

        Args:
            message: The primary error message.
            details: Optional additional context about the error.
        """
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(DepfetchError):
    """Exception raised when the configuration file cannot be read or is invalid."""

    pass


# =============================================================================
# Source Errors
# =============================================================================


class UnknownSourceError(DepfetchError):
    """
    Exception raised when a repository has no resolvable url or path.

    Attributes:
        repo_type: The origin type of the repository that failed.
    """

    def __init__(
        self,
        message: str,
        repo_type: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.repo_type = repo_type


class NoMatchedVersionError(DepfetchError):
    """
    Exception raised when version selection finds no candidate.

    Attributes:
        reason: Human-readable reason listing the requested spec and candidates.
        requested: The requested version or tag, if any.
        candidate_versions: All known version strings.
        candidate_tags: All known tag strings.
    """

    def __init__(
        self,
        reason: str,
        requested: str | None = None,
        candidate_versions: Optional[List[str]] = None,
        candidate_tags: Optional[List[str]] = None,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.requested = requested
        self.candidate_versions = list(candidate_versions or [])
        self.candidate_tags = list(candidate_tags or [])

    @classmethod
    def from_outcome(cls, error: "NoMatchedVersion") -> "NoMatchedVersionError":
        """Build the exception from a failed selection outcome."""
        return cls(
            error.reason,
            requested=error.requested,
            candidate_versions=error.candidate_versions,
            candidate_tags=error.candidate_tags,
        )


class UnsupportedOperationError(DepfetchError):
    """
    Exception raised when a backend does not implement an operation.

    Attributes:
        operation: Name of the unsupported operation.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.operation = operation


class CacheMissError(DepfetchError):
    """Exception raised when no usable cache entry exists for a repository."""

    pass


# =============================================================================
# Download Errors
# =============================================================================


class DownloadError(DepfetchError):
    """
    Base exception for download-related errors.

    Attributes:
        url: The URL that was being downloaded when the error occurred.
        retry_count: Number of retry attempts made before failure.
        is_retryable: Whether the error could be retried.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        retry_count: int = 0,
        is_retryable: bool = False,
        details: str | None = None,
    ) -> None:
        """
        Initialize the download exception.

        Args:
            message: The primary error message.
            url: The URL that was being downloaded.
            retry_count: Number of retry attempts made.
            is_retryable: Whether this error could be retried.
            details: Optional additional context.
        """
        super().__init__(message, details)
        self.url = url
        self.retry_count = retry_count
        self.is_retryable = is_retryable


class NetworkError(DownloadError):
    """
    Exception raised for network-related download failures.

    This includes connection timeouts, DNS resolution failures and refused
    connections.
    """

    pass


class HTTPError(DownloadError):
    """
    Exception raised for HTTP-related download failures.

    Attributes:
        status_code: The HTTP status code returned by the server.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        retry_count: int = 0,
        is_retryable: bool = False,
        details: str | None = None,
    ) -> None:
        super().__init__(message, url, retry_count, is_retryable, details)
        self.status_code = status_code


class ChecksumError(DownloadError):
    """
    Exception raised when a downloaded file does not match its expected digest.

    Attributes:
        expected: The expected hex digest.
        actual: The digest computed from the downloaded bytes.
    """

    def __init__(
        self,
        message: str,
        expected: str | None = None,
        actual: str | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(
            message,
            url=url,
            is_retryable=False,
            details=f"expected {expected}, got {actual}",
        )
        self.expected = expected
        self.actual = actual


# =============================================================================
# File System Errors
# =============================================================================


class DepfetchFileSystemError(DepfetchError):
    """
    Exception raised for file system errors such as a missing source path.

    Attributes:
        path: The file path that caused the error.
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.path = path


# =============================================================================
# Archive Errors
# =============================================================================


class ArchiveError(DepfetchError):
    """
    Exception raised for archive-related errors.

    Attributes:
        archive_path: Path to the problematic archive.
    """

    def __init__(
        self,
        message: str,
        archive_path: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.archive_path = archive_path


class DecompressError(ArchiveError):
    """Exception raised when a downloaded file cannot be expanded."""

    pass
