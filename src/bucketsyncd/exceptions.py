"""
bucketsyncd exception hierarchy.

All domain-specific exceptions inherit from BucketSyncError, making it easy
to catch any service error with a single base class while still allowing
fine-grained handling when needed.

Hierarchy::

    BucketSyncError
    ├── ConfigurationError        - config loading, parsing, validation
    ├── WatchError                - filesystem watch cannot be established
    ├── StorageError              - object store / WebDAV operation failed
    ├── CredentialsNotFoundError  - no remote matches a name or endpoint
    ├── NotificationDecodeError   - malformed broker notification payload
    ├── BrokerError               - channel, bind or consume failures
    └── RetryError                - retry exhaustion
        └── RetryExhaustedError

Errors are grouped by blast radius as well: ConfigurationError and WatchError
stop the process, BrokerError and RetryExhaustedError stop a single workflow,
everything else drops a single event or record.
"""

from __future__ import annotations


class BucketSyncError(Exception):
    """Base exception for all bucketsyncd errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- Configuration -----------------------------------------------------------


class ConfigurationError(BucketSyncError):
    """Raised when configuration loading, parsing, or validation fails."""

    def __init__(self, message: str, *, problems: list[str] | None = None) -> None:
        super().__init__(message, details={"problems": problems or []})
        self.problems = problems or []


# --- Filesystem --------------------------------------------------------------


class WatchError(BucketSyncError):
    """Raised when a filesystem watch cannot be established."""

    def __init__(self, workflow: str, directory: str, message: str) -> None:
        super().__init__(
            f"Workflow '{workflow}': cannot watch '{directory}': {message}",
            details={"workflow": workflow, "directory": directory},
        )
        self.workflow = workflow
        self.directory = directory


# --- Storage -----------------------------------------------------------------


class StorageError(BucketSyncError):
    """Raised when a storage backend operation fails."""

    def __init__(self, operation: str, location: str, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(
            f"{operation} '{location}' failed: {message}",
            details={"operation": operation, "location": location},
        )
        self.operation = operation
        self.location = location
        if cause is not None:
            self.__cause__ = cause


class CredentialsNotFoundError(BucketSyncError):
    """Raised when no configured remote matches a name or endpoint."""

    def __init__(self, *, name: str | None = None, endpoint: str | None = None) -> None:
        if name is not None:
            message = f"No remote named '{name}'"
        else:
            message = f"No remote with endpoint '{endpoint}'"
        super().__init__(message, details={"name": name, "endpoint": endpoint})
        self.name = name
        self.endpoint = endpoint


# --- Broker ------------------------------------------------------------------


class NotificationDecodeError(BucketSyncError):
    """Raised when a notification payload does not match the expected schema."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        full = f"{field}: {message}" if field else message
        super().__init__(full, details={"field": field})
        self.field = field


class BrokerError(BucketSyncError):
    """Raised when a broker channel cannot be opened, bound or consumed."""


# --- Retry -------------------------------------------------------------------


class RetryError(BucketSyncError):
    """Raised when all retry attempts are exhausted."""


class RetryExhaustedError(RetryError):
    """Raised by the backoff retrier after the final failed attempt."""

    def __init__(self, operation: str, attempts: int, last_error: Exception) -> None:
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}",
            details={"operation": operation, "attempts": attempts},
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
