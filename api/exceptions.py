"""
Error taxonomy for book store operations.
"""

from typing import List, Optional

from api.models import Violation


class BookStoreError(Exception):
    """Base class for book store failures."""


class BookValidationError(BookStoreError):
    """A book payload violates the record schema."""

    def __init__(self, violations: List[Violation]):
        self.violations = violations
        details = "; ".join(f"{v.field}: {v.message}" for v in violations)
        super().__init__(f"Book validation failed: {details}")


class BookNotFoundError(BookStoreError):
    """No book matches the requested id."""

    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(f"Book with ID '{book_id}' not found")


class StoreError(BookStoreError):
    """The document store is unreachable or failed unexpectedly."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)
