from typing import Dict, Optional


class LibraryError(Exception):
    """Base class for every failure raised by the ledger layer."""


class ValidationError(LibraryError, ValueError):
    """Input rejected before any write happened.

    ``errors`` maps a field name to a human readable reason so callers can
    show the message next to the offending input.
    """

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None) -> None:
        self.errors = dict(errors)
        if message is None:
            message = "; ".join(f"{field}: {reason}" for field, reason in self.errors.items())
        super().__init__(message)


class NotFoundError(LibraryError, LookupError):
    def __init__(self, kind: str, entity_id: str) -> None:
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind.capitalize()} with ID {entity_id} not found.")


class UnavailableError(LibraryError):
    """Borrow attempted against a book with no copies left."""

    def __init__(self, book_id: str) -> None:
        self.book_id = book_id
        super().__init__(f"Book with ID {book_id} is currently out of stock.")


class StorageError(LibraryError):
    """The underlying key-value store failed to read or write."""
