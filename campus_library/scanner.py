"""Aggregate views rebuilt from the flat key space.

``InventoryScanner`` walks every key, decides whether it is a book, a
student or a borrow record, and produces the dashboard counts and the
borrow-record listing. ``DashboardMonitor`` keeps the latest counts fresh,
either pushed by the change feed or pulled on a fixed interval.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .book import BorrowRecord
from .config import settings
from .database import KeyValueStore
from .events import ChangeEvent, ChangeFeed
from .records import EntityKind, classify, decode, entity_id_from_key

logger = logging.getLogger(__name__)

LEGACY_BORROW_PREFIX = "borrow_"


@dataclass
class DashboardCounts:
    total_books: int = 0
    total_students: int = 0
    borrowed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class InventorySnapshot:
    book_ids: List[str] = field(default_factory=list)
    student_ids: List[str] = field(default_factory=list)
    borrow_records: List[BorrowRecord] = field(default_factory=list)
    active_loans: int = 0
    unknown_keys: List[str] = field(default_factory=list)

    def counts(self) -> DashboardCounts:
        return DashboardCounts(
            total_books=len(self.book_ids),
            total_students=len(self.student_ids),
            borrowed=self.active_loans,
        )


def composite_key_of(key: str) -> str:
    """Composite ``<book>_<student>_<millis>`` part of a borrow-record key."""
    if key.startswith(LEGACY_BORROW_PREFIX):
        return key[len(LEGACY_BORROW_PREFIX):]
    return entity_id_from_key(key)


def is_active_loan(data: Dict[str, Any]) -> bool:
    """A loan is active until something marks it returned.

    Nothing in this system returns books yet, so every ledger record is
    active. Records carrying an explicit ``isBorrowed`` flag follow it.
    """
    if "isBorrowed" in data:
        return bool(data["isBorrowed"])
    return not data.get("returnedAt")


def filter_by_student(records: List[BorrowRecord], text: Optional[str]) -> List[BorrowRecord]:
    """Case-insensitive substring match on the student id; blank text keeps everything."""
    if not text or not text.strip():
        return list(records)
    needle = text.strip().lower()
    return [r for r in records if needle in r.student_id.lower()]


class InventoryScanner:
    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def scan(self) -> InventorySnapshot:
        snapshot = InventorySnapshot()
        for key, raw in self.store.multi_get(self.store.list_keys()):
            data = decode(raw)
            kind = classify(key, data)
            if kind is EntityKind.BOOK:
                snapshot.book_ids.append(entity_id_from_key(key))
            elif kind is EntityKind.STUDENT:
                snapshot.student_ids.append(entity_id_from_key(key))
            elif kind is EntityKind.BORROW:
                if data is None:
                    logger.debug(f"Skipping unparseable borrow record {key!r}")
                    continue
                try:
                    record = BorrowRecord.from_dict(composite_key_of(key), data)
                except (KeyError, ValueError) as e:
                    logger.debug(f"Skipping malformed borrow record {key!r}: {e}")
                    continue
                snapshot.borrow_records.append(record)
                if is_active_loan(data):
                    snapshot.active_loans += 1
            else:
                snapshot.unknown_keys.append(key)
        snapshot.borrow_records.sort(key=lambda r: (r.date_borrow, r.composite_key))
        return snapshot

    def dashboard_counts(self) -> DashboardCounts:
        counts = self.scan().counts()
        logger.debug(
            f"Books: {counts.total_books}, Borrowed: {counts.borrowed}, Students: {counts.total_students}"
        )
        return counts

    def borrow_records(self, filter_substring: Optional[str] = None) -> List[BorrowRecord]:
        return filter_by_student(self.scan().borrow_records, filter_substring)


class DashboardMonitor:
    """Latest dashboard counts with push and poll refresh.

    ``attach`` subscribes to a change feed so every mutation made through the
    library refreshes the counts immediately. ``run`` re-scans every
    ``interval`` seconds for writers that bypass the feed; between polls the
    counts may lag the store by up to one interval.
    """

    def __init__(self, scanner: InventoryScanner, interval: Optional[float] = None,
                 on_update: Optional[Callable[[DashboardCounts], None]] = None) -> None:
        self.scanner = scanner
        self.interval = settings.refresh_interval if interval is None else interval
        self.on_update = on_update
        self.counts: Optional[DashboardCounts] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self, feed: ChangeFeed) -> None:
        self.detach()
        self._unsubscribe = feed.subscribe(self._on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def refresh(self) -> DashboardCounts:
        counts = self.scanner.dashboard_counts()
        changed = counts != self.counts
        self.counts = counts
        if changed and self.on_update is not None:
            self.on_update(counts)
        return counts

    def run(self, iterations: Optional[int] = None, sleep: Callable[[float], None] = time.sleep) -> None:
        """Poll until ``iterations`` refreshes have run (forever when None)."""
        done = 0
        while iterations is None or done < iterations:
            self.refresh()
            done += 1
            if iterations is None or done < iterations:
                sleep(self.interval)

    def _on_change(self, event: ChangeEvent) -> None:
        logger.debug(f"Refreshing dashboard after {event.action} {event.kind.value} {event.entity_id}")
        self.refresh()
