import logging
import time
from typing import Any, Callable, Optional

from .book import BorrowRecord
from .errors import StorageError, UnavailableError, ValidationError
from .events import ChangeEvent, ChangeFeed
from .records import EntityKind, encode, make_key
from .repository import EntityRepository
from .scanner import InventoryScanner
from .validators import DateValidator, QuantityValidator

logger = logging.getLogger(__name__)


def _now_millis() -> int:
    return int(time.time() * 1000)


class BorrowLedger:
    """Executes borrow transactions.

    A borrow writes two facts: the book's decremented quantity and a new
    borrow record. Both go through a single ``multi_set`` so the store never
    holds one without the other.
    """

    def __init__(self, repository: EntityRepository, clock: Optional[Callable[[], int]] = None) -> None:
        self.repository = repository
        self.store = repository.store
        self.feed: ChangeFeed = repository.feed
        self.clock = clock or _now_millis

    def borrow(self, book_id: str, student_id: str, date_borrow: Any, date_return: Any) -> BorrowRecord:
        # Lookup: two independent reads, book first
        book = self.repository.read(EntityKind.BOOK, book_id)
        self.repository.read(EntityKind.STUDENT, student_id)

        # Validate
        start, end = DateValidator.validate_loan_period(date_borrow, date_return)
        quantity = QuantityValidator.parse(book.get("quantity"))
        if quantity is None:
            raise StorageError(f"Book {book_id} has a corrupt quantity: {book.get('quantity')!r}")
        if quantity <= 0:
            logger.warning(f"Borrow refused: book {book_id} is out of stock (student {student_id})")
            raise UnavailableError(book_id)

        # Decrement + append as one write
        book_key = self.repository.resolve_key(EntityKind.BOOK, book_id)
        if book_key is None:
            raise StorageError(f"Book {book_id} disappeared during the borrow")
        record = BorrowRecord(
            composite_key=self._free_composite_key(book_id, student_id),
            book_id=book_id,
            student_id=student_id,
            date_borrow=DateValidator.to_iso(start),
            date_return=DateValidator.to_iso(end),
        )
        updated_book = dict(book, quantity=str(quantity - 1))
        self.store.multi_set([
            (make_key(EntityKind.BORROW, record.composite_key), encode(EntityKind.BORROW, record.to_dict())),
            (book_key, encode(EntityKind.BOOK, updated_book)),
        ])

        logger.info(
            f"Book {book_id} borrowed by {student_id} until {record.date_return}; "
            f"{quantity - 1} cop{'y' if quantity - 1 == 1 else 'ies'} left"
        )
        self.feed.publish(ChangeEvent(EntityKind.BORROW, record.composite_key, "borrowed"))
        self.feed.publish(ChangeEvent(EntityKind.BOOK, book_id, "updated"))
        return record

    def reconcile(self, book_id: str, stocked: int) -> int:
        """Quantity implied by the borrow log: ``stocked`` minus loans of ``book_id``.

        Compare against the stored quantity to detect drift left by writes
        that bypassed the ledger.
        """
        if stocked < 0:
            raise ValidationError({"stocked": "Stocked copies cannot be negative"})
        scanner = InventoryScanner(self.store)
        loans = sum(1 for record in scanner.borrow_records() if record.book_id == book_id)
        return stocked - loans

    def _free_composite_key(self, book_id: str, student_id: str) -> str:
        """``<book>_<student>_<millis>``; the timestamp is bumped past existing keys."""
        millis = self.clock()
        while True:
            composite = f"{book_id}_{student_id}_{millis}"
            if self.store.get(make_key(EntityKind.BORROW, composite)) is None:
                return composite
            millis += 1
