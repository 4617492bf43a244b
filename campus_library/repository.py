import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from .database import KeyValueStore
from .errors import NotFoundError, ValidationError
from .events import ChangeEvent, ChangeFeed
from .records import (
    EntityKind,
    classify,
    decode,
    encode,
    entity_id_from_key,
    make_key,
    split_key,
    strip_tag,
)
from .validators import EntityValidator, QuantityValidator

logger = logging.getLogger(__name__)

Predicate = Callable[[Dict[str, Any]], bool]

ENTITY_KINDS = (EntityKind.BOOK, EntityKind.STUDENT)


def _has_text(data: Mapping[str, Any], *fields: str) -> bool:
    return all(isinstance(data.get(f), str) and data[f].strip() for f in fields)


def is_book_shaped(data: Mapping[str, Any]) -> bool:
    return _has_text(data, "bookName", "authorName") and QuantityValidator.parse(data.get("quantity")) is not None


def is_student_shaped(data: Mapping[str, Any]) -> bool:
    return _has_text(data, "studentName", "year", "program")


_SHAPES: Dict[EntityKind, Predicate] = {
    EntityKind.BOOK: is_book_shaped,
    EntityKind.STUDENT: is_student_shaped,
}


class EntityRepository:
    """Keyed CRUD for books and students on top of a flat key-value store.

    Records are written under ``<kind>:<id>`` and tagged with their kind, so a
    student and a book may share an id without clobbering each other. Records
    left by the older app under bare ids are still found when their key shape
    matches the requested kind.
    """

    def __init__(self, store: KeyValueStore, feed: Optional[ChangeFeed] = None) -> None:
        self.store = store
        self.feed = feed or ChangeFeed()

    # ------------------------- Core operations ------------------------- #
    def create(self, kind: EntityKind, entity_id: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate and write a full payload; an existing record of the same kind is replaced."""
        self._check_kind(kind)
        entity_id = EntityValidator.clean_id(entity_id, label=f"{kind.value.capitalize()} ID")
        cleaned = self._clean(kind, payload, partial=False)

        # Replace a record left under a bare id in place so it is not shadowed
        key = self.resolve_key(kind, entity_id) or make_key(kind, entity_id)
        self.store.set(key, encode(kind, cleaned))
        logger.info(f"{kind.value} {entity_id} saved")
        self.feed.publish(ChangeEvent(kind, entity_id, "created"))
        return cleaned

    def read(self, kind: EntityKind, entity_id: str) -> Dict[str, Any]:
        self._check_kind(kind)
        key = self.resolve_key(kind, entity_id)
        data = decode(self.store.get(key)) if key else None
        if data is None:
            raise NotFoundError(kind.value, entity_id)
        return strip_tag(data)

    def update(self, kind: EntityKind, entity_id: str, partial: Mapping[str, Any]) -> Dict[str, Any]:
        """Shallow-merge ``partial`` into the stored payload and return the result."""
        self._check_kind(kind)
        if not partial:
            raise ValidationError({"payload": "Nothing to update. Provide at least one field."})
        key = self.resolve_key(kind, entity_id)
        if key is None:
            raise NotFoundError(kind.value, entity_id)
        cleaned = self._clean(kind, partial, partial=True)

        self.store.merge(key, json.dumps(cleaned, ensure_ascii=False))
        logger.info(f"{kind.value} {entity_id} updated: {sorted(cleaned)}")
        self.feed.publish(ChangeEvent(kind, entity_id, "updated"))
        return self.read(kind, entity_id)

    def delete(self, kind: EntityKind, entity_id: str) -> None:
        """Remove the record. Deleting a missing id is a no-op.

        Both the namespaced key and a bare legacy key of the same kind are
        removed, so a later read cannot fall back to an older copy.
        """
        self._check_kind(kind)
        removed = []
        key = self.resolve_key(kind, entity_id)
        while key is not None:
            self.store.delete(key)
            removed.append(key)
            key = self.resolve_key(kind, entity_id)
        if not removed:
            logger.debug(f"{kind.value} {entity_id} already absent")
            return
        logger.info(f"{kind.value} {entity_id} deleted ({', '.join(removed)})")
        self.feed.publish(ChangeEvent(kind, entity_id, "deleted"))

    def list(self, kind: EntityKind, predicate: Optional[Predicate] = None) -> List[Dict[str, Any]]:
        """All records of ``kind`` as ``{"id": ..., **payload}`` in store order.

        Values that fail to parse or lack the kind's required fields are
        skipped. Sort the result yourself if order matters.
        """
        self._check_kind(kind)
        shape = _SHAPES[kind]
        items: List[Dict[str, Any]] = []
        for key, raw in self.store.multi_get(self.store.list_keys()):
            data = decode(raw)
            if data is None:
                logger.debug(f"Skipping unparseable value under {key!r}")
                continue
            if classify(key, data) is not kind or not shape(data):
                continue
            payload = strip_tag(data)
            if predicate is not None and not predicate(payload):
                continue
            items.append({"id": entity_id_from_key(key), **payload})
        return items

    # ------------------------- Key helpers ------------------------- #
    def resolve_key(self, kind: EntityKind, entity_id: str) -> Optional[str]:
        """Storage key currently holding ``kind``/``entity_id``, or None."""
        key = make_key(kind, entity_id)
        if self.store.get(key) is not None:
            return key
        # Untagged record from the older app stored under the bare id
        legacy_kind, _ = split_key(entity_id)
        if legacy_kind is None:
            data = decode(self.store.get(entity_id))
            if data is not None and classify(entity_id, data) is kind:
                return entity_id
        return None

    @staticmethod
    def _check_kind(kind: EntityKind) -> None:
        if kind not in ENTITY_KINDS:
            raise ValueError(f"Repository only manages books and students, not {kind!r}")

    @staticmethod
    def _clean(kind: EntityKind, payload: Mapping[str, Any], partial: bool) -> Dict[str, Any]:
        if kind is EntityKind.BOOK:
            return EntityValidator.clean_book(payload, partial=partial)
        return EntityValidator.clean_student(payload, partial=partial)
