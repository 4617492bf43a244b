"""Campus Library Ledger - core package

Books, students and borrow records kept in one flat key-value store:
- Storage backends (database.py)
- Key namespacing and classification (records.py)
- Entity CRUD (repository.py)
- Borrow transactions (ledger.py)
- Dashboard aggregation and search (scanner.py)
- Facade used by the CLI and the HTTP API (library.py)
"""

from .book import Book, BorrowRecord, Student
from .errors import LibraryError, NotFoundError, StorageError, UnavailableError, ValidationError
from .library import Library
from .records import EntityKind

__all__ = [
    "Book",
    "BorrowRecord",
    "EntityKind",
    "Library",
    "LibraryError",
    "NotFoundError",
    "StorageError",
    "Student",
    "UnavailableError",
    "ValidationError",
]
