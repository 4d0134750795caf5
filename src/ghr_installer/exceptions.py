"""
Custom exceptions for the ghr-installer application.

This module defines domain-specific exceptions that provide better error
categorization and more informative error messages for users and developers.
"""


class GhrInstallerError(Exception):
    """
    Base exception for all ghr-installer errors.

    All custom exceptions in ghr-installer should inherit from this class
    to allow for easy catching of all application-specific errors.
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


class ConfigurationError(GhrInstallerError):
    """
    Exception raised when configuration is invalid or missing.

    This includes:
    - Invalid configuration values
    - Configuration file parsing errors
    - Unreadable repository list files
    """

    pass


class ConfigFileError(ConfigurationError):
    """Exception raised when configuration file cannot be read or written."""

    pass


class ConfigValidationError(ConfigurationError):
    """Exception raised when configuration validation fails."""

    pass


# =============================================================================
# Download Errors
# =============================================================================


class DownloadError(GhrInstallerError):
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
        super().__init__(message, details)
        self.url = url
        self.retry_count = retry_count
        self.is_retryable = is_retryable


class NetworkError(DownloadError):
    """
    Exception raised for network-related failures.

    This includes:
    - Connection timeouts
    - DNS resolution failures
    - Connection refused errors
    - SSL/TLS errors
    """

    pass


class HTTPError(DownloadError):
    """
    Exception raised for HTTP-related failures.

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


class RateLimitError(HTTPError):
    """
    Exception raised when GitHub API rate limit is exceeded.

    Attributes:
        reset_time: When the rate limit will reset (Unix timestamp).
        remaining: Number of requests remaining.
    """

    def __init__(
        self,
        message: str = "GitHub API rate limit exceeded",
        reset_time: int | None = None,
        remaining: int = 0,
        url: str | None = None,
        status_code: int = 403,
    ) -> None:
        super().__init__(
            message,
            status_code=status_code,
            url=url,
            is_retryable=True,
            details=f"Resets at: {reset_time}, Remaining: {remaining}",
        )
        self.reset_time = reset_time
        self.remaining = remaining


# =============================================================================
# File System Errors
# =============================================================================


class FileSystemError(GhrInstallerError):
    """
    Exception raised for file system-related errors.

    This includes:
    - Permission denied errors
    - Failed copies into the install directory
    - Failed downloads
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
# Validation Errors
# =============================================================================


class ValidationError(GhrInstallerError):
    """
    Exception raised when validation fails.

    Attributes:
        field: The name of the field that failed validation.
        value: The value that failed validation.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.field = field
        self.value = value


class UnsupportedArchitectureError(ValidationError):
    """Exception raised when the host architecture has no asset patterns."""

    def __init__(self, arch: str) -> None:
        super().__init__(
            f"Unsupported architecture: {arch}", field="arch", value=arch
        )


# =============================================================================
# Archive Errors
# =============================================================================


class ArchiveError(GhrInstallerError):
    """
    Exception raised for archive-related errors.

    This includes:
    - Unsupported archive formats
    - Corrupted archives
    - Extraction failures
    """

    def __init__(
        self,
        message: str,
        archive_path: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.archive_path = archive_path


class UnsupportedArchiveError(ArchiveError):
    """Exception raised when an archive extension is not understood."""

    pass


class ExtractionError(ArchiveError):
    """Exception raised when archive extraction fails."""

    pass


# =============================================================================
# API Errors
# =============================================================================


class APIError(GhrInstallerError):
    """
    Exception raised for API-related errors.

    This includes:
    - Invalid API responses
    - Resource not found errors
    """

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        status_code: int | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code


class ResourceNotFoundError(APIError):
    """Exception raised when an API resource is not found."""

    pass


class MalformedResponseError(APIError):
    """Exception raised when the API returns something that is not a release."""

    pass


# =============================================================================
# Package Database Errors
# =============================================================================


class DatabaseError(GhrInstallerError):
    """
    Exception raised when the package database cannot be read or written.

    Attributes:
        path: Path of the database or lock file involved.
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.path = path


class LockBusyError(DatabaseError):
    """
    Exception raised when another live process holds the database lock.

    Attributes:
        holder_pid: Process identifier recorded in the lock file, or None when
            the holder has not written it yet.
    """

    def __init__(self, holder_pid: int | None, path: str | None = None) -> None:
        shown = holder_pid if holder_pid is not None else "unknown"
        super().__init__(f"Another instance is running (PID: {shown})", path=path)
        self.holder_pid = holder_pid


class LockNotHeldError(DatabaseError):
    """Exception raised when a mutation is attempted without holding the lock."""

    pass
