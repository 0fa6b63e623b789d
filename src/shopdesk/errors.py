from abc import ABC


class UserError(ABC, Exception):
    """Base class for user-related errors.

    All errors that inherit from UserError will have their messages
    displayed to the user. These errors should not contain any
    sensitive information.
    """


class NotFoundError(UserError):
    """Raised when a requested resource is not found."""

    def __init__(self, message: str = "Document not found") -> None:
        super().__init__(message)


class ValidationError(UserError):
    """Raised when user input fails validation."""


class CounterError(Exception):
    """Base class for sequence counter failures."""


class CounterInitializationError(CounterError):
    """Raised when a counter cannot be created or verified. Never retried."""


class TransactionConflictError(CounterError):
    """Raised when a conditional counter write loses a race with another writer."""


class StoreUnavailableError(CounterError):
    """Raised on transport or permission failures while talking to the store."""


class CorruptCounterError(CounterInitializationError):
    """Raised when a stored counter document cannot be parsed."""


class AllocationExhaustedError(CounterError):
    """Raised when every allocation attempt failed."""

    def __init__(self, key: str, attempts: int) -> None:
        super().__init__(f"Failed to allocate a number for '{key}' after {attempts} attempts")
        self.key = key
        self.attempts = attempts
