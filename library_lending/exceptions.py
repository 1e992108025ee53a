"""
exceptions.py

Error types raised by the lending engine.
"""


class LendingError(Exception):
    """Base exception for lending engine errors."""


class ValidationError(LendingError, ValueError):
    """A required argument is missing or malformed."""


class EligibilityError(LendingError):
    """The operation was refused by a borrowing rule."""


class ReconciliationError(LendingError):
    """A fine payment does not reconcile with the member's balance."""


class NotInitializedError(LendingError, RuntimeError):
    """The shared BorrowManager was accessed before init()."""


class StoreError(LendingError):
    """Loading or saving persisted state failed."""
