import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .book import Book, BorrowRecord, Student
from .database import KeyValueStore, SQLiteStore
from .errors import StorageError, ValidationError
from .events import ChangeEvent, ChangeFeed
from .ledger import BorrowLedger
from .records import EntityKind
from .repository import ENTITY_KINDS, EntityRepository
from .scanner import DashboardCounts, DashboardMonitor, InventoryScanner

logger = logging.getLogger(__name__)

KindLike = Union[EntityKind, str]


class Library:
    """Books, students and loans stored in one key-value store.

    This is the surface the CLI and the HTTP API talk to. Payloads use the
    stored field names (``bookName``, ``studentName``, ...).
    """

    def __init__(self, db_file: Optional[str] = None, store: Optional[KeyValueStore] = None) -> None:
        self.store = store if store is not None else SQLiteStore(db_file)
        self.feed = ChangeFeed()
        self.repository = EntityRepository(self.store, self.feed)
        self.ledger = BorrowLedger(self.repository)
        self.scanner = InventoryScanner(self.store)

    # ------------------------- Entities ------------------------- #
    def create_entity(self, kind: KindLike, entity_id: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return self.repository.create(self._kind(kind), entity_id, payload)

    def read_entity(self, kind: KindLike, entity_id: str) -> Dict[str, Any]:
        return self.repository.read(self._kind(kind), entity_id)

    def update_entity(self, kind: KindLike, entity_id: str, partial: Mapping[str, Any]) -> Dict[str, Any]:
        return self.repository.update(self._kind(kind), entity_id, partial)

    def delete_entity(self, kind: KindLike, entity_id: str) -> None:
        self.repository.delete(self._kind(kind), entity_id)

    def list_books(self) -> List[Book]:
        return [Book.from_dict(item["id"], item) for item in self.repository.list(EntityKind.BOOK)]

    def list_students(self) -> List[Student]:
        return [Student.from_dict(item["id"], item) for item in self.repository.list(EntityKind.STUDENT)]

    def get_book(self, book_id: str) -> Book:
        return self._build(Book, book_id, self.read_entity(EntityKind.BOOK, book_id))

    def get_student(self, student_id: str) -> Student:
        return self._build(Student, student_id, self.read_entity(EntityKind.STUDENT, student_id))

    # ------------------------- Loans ------------------------- #
    def borrow(self, book_id: str, student_id: str, date_borrow: Any, date_return: Any) -> BorrowRecord:
        return self.ledger.borrow(book_id, student_id, date_borrow, date_return)

    def list_borrow_records(self, filter_substring: Optional[str] = None) -> List[BorrowRecord]:
        return self.scanner.borrow_records(filter_substring)

    # ------------------------- Dashboard ------------------------- #
    def dashboard_counts(self) -> DashboardCounts:
        return self.scanner.dashboard_counts()

    def subscribe(self, listener: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        return self.feed.subscribe(listener)

    def monitor(self, interval: Optional[float] = None,
                on_update: Optional[Callable[[DashboardCounts], None]] = None) -> DashboardMonitor:
        """Dashboard monitor already wired to this library's change feed."""
        monitor = DashboardMonitor(self.scanner, interval=interval, on_update=on_update)
        monitor.attach(self.feed)
        monitor.refresh()
        return monitor

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _build(model: Any, entity_id: str, payload: Dict[str, Any]) -> Any:
        try:
            return model.from_dict(entity_id, payload)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise StorageError(f"Stored {model.__name__.lower()} {entity_id} is malformed: {e!r}") from e

    @staticmethod
    def _kind(kind: KindLike) -> EntityKind:
        if isinstance(kind, EntityKind) and kind in ENTITY_KINDS:
            return kind
        value = str(kind).strip().lower()
        for candidate in ENTITY_KINDS:
            if value == candidate.value:
                return candidate
        raise ValidationError({"kind": f"Unknown entity kind {kind!r}. Use 'book' or 'student'."})

    def close(self) -> None:
        self.store.close()
