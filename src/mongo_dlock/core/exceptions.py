"""Custom exceptions for mongo-dlock.

All exception classes carry enough context to tell which lock or which
store operation failed and why.
"""


class MongoLockError(Exception):
    """Base exception for all mongo-dlock errors."""

    def __init__(self, message: str, details: str | None = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(MongoLockError):
    """Exception raised for missing or invalid options.

    Examples:
        - Missing connection URI or database name
        - Heartbeat interval not shorter than the inactive timeout
        - Non-positive server time sample count
    """

    def __init__(self, message: str, field: str | None = None, details: str | None = None):
        self.field = field
        super().__init__(message, details)

    def __str__(self) -> str:
        base = super().__str__()
        if self.field:
            return f"{base} (field: {self.field})"
        return base


class StoreTransportError(MongoLockError):
    """Exception raised when the lock store cannot be reached or times out.

    Wraps driver errors with the store operation that was in flight. These
    errors are always propagated to the caller.
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        details: str | None = None,
        original_error: Exception | None = None,
    ):
        self.operation = operation
        self.original_error = original_error
        super().__init__(message, details)

    def __str__(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"during {self.operation}")
        if self.details:
            parts.append(self.details)
        return " - ".join(parts)


class LockOwnershipLostError(MongoLockError):
    """Raised when a held lock was lost (heartbeat miss or reclamation).

    Attributes:
        lock_name: Name of the lock that is no longer held
        reason: What caused the loss, if known
    """

    def __init__(self, lock_name: str, reason: str | None = None):
        self.lock_name = lock_name
        self.reason = reason
        super().__init__(f"Lock '{lock_name}' is no longer held", reason)


class LockUnavailableError(MongoLockError):
    """Raised when entering a lock context while another holder owns the lock.

    Attributes:
        lock_name: Name of the contended lock
        attempt_count: Failed attempts recorded on the lock document, if known
    """

    def __init__(self, lock_name: str, attempt_count: int | None = None):
        self.lock_name = lock_name
        self.attempt_count = attempt_count
        details = f"{attempt_count} failed attempts recorded" if attempt_count is not None else None
        super().__init__(f"Lock '{lock_name}' is held by another owner", details)
