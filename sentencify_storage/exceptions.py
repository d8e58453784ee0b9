"""
Custom exceptions for the persistence engine.

Only a few of these ever reach callers: QuotaExceededError is surfaced to the
user, MalformedSnapshotError rejects an import. StoreUnavailableError and
StorageIOError are raised internally and converted into empty reads or
logged no-ops at each durable-store call site.
"""


class SentencifyStorageError(Exception):
    """Base exception for all persistence engine errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class QuotaExceededError(SentencifyStorageError):
    """Raised when a document does not fit the quota-limited session slot."""

    def __init__(self, key: str, size_bytes: int, max_bytes: int):
        details = {"key": key, "size_bytes": size_bytes, "max_bytes": max_bytes}
        super().__init__(
            f"Session slot {key} quota exceeded: {size_bytes} > {max_bytes} bytes",
            details,
        )
        self.key = key
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes


class StoreUnavailableError(SentencifyStorageError):
    """Raised when the durable store could not be opened."""

    def __init__(self, path: str, cause: Exception | None = None):
        details = {"path": path}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Durable store unavailable: {path}", details)
        self.path = path
        self.cause = cause


class MalformedSnapshotError(SentencifyStorageError):
    """Raised when an imported project document cannot be accepted."""

    def __init__(self, reason: str):
        super().__init__(f"Malformed project snapshot: {reason}", {"reason": reason})
        self.reason = reason


class StorageIOError(SentencifyStorageError):
    """Raised when a storage I/O operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class ValidationError(SentencifyStorageError):
    """Raised when data validation fails."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value
