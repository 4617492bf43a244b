"""Storage keys and tagged record encoding.

New records are written as ``<kind>:<id>`` with a ``kind`` field inside the
JSON value. Stores filled by the older mobile app hold untagged values under
bare ids (``101``, ``S1``) and ``borrow_<book>_<student>_<millis>`` keys; those
are still classified by the shape of their key.
"""

import json
import re
from enum import Enum
from typing import Any, Dict, Optional, Tuple

KIND_FIELD = "kind"
KEY_SEPARATOR = ":"

_LEGACY_STUDENT_KEY = re.compile(r"^[A-Za-z]\d+$")


class EntityKind(str, Enum):
    BOOK = "book"
    STUDENT = "student"
    BORROW = "borrow"
    UNKNOWN = "unknown"


def make_key(kind: EntityKind, entity_id: str) -> str:
    return f"{kind.value}{KEY_SEPARATOR}{entity_id}"


def split_key(key: str) -> Tuple[Optional[EntityKind], str]:
    """Return (kind, id) for a namespaced key, (None, key) otherwise."""
    prefix, sep, rest = key.partition(KEY_SEPARATOR)
    if sep:
        for kind in (EntityKind.BOOK, EntityKind.STUDENT, EntityKind.BORROW):
            if prefix == kind.value:
                return kind, rest
    return None, key


def encode(kind: EntityKind, payload: Dict[str, Any]) -> str:
    tagged = {KIND_FIELD: kind.value}
    tagged.update({k: v for k, v in payload.items() if k != KIND_FIELD})
    return json.dumps(tagged, ensure_ascii=False)


def decode(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a stored value. Returns None for anything that is not a JSON object."""
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None


def strip_tag(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k != KIND_FIELD}


def classify_key(key: str) -> EntityKind:
    """Infer the entity kind from the key alone.

    - ``borrow_`` prefix: borrow record
    - purely numeric or ``book_`` prefix: book
    - one letter followed by digits or ``student_`` prefix: student
    """
    kind, _ = split_key(key)
    if kind is not None:
        return kind
    if key.startswith("borrow_"):
        return EntityKind.BORROW
    if key.isdigit() or key.startswith("book_"):
        return EntityKind.BOOK
    if _LEGACY_STUDENT_KEY.match(key) or key.startswith("student_"):
        return EntityKind.STUDENT
    return EntityKind.UNKNOWN


def classify(key: str, data: Optional[Dict[str, Any]]) -> EntityKind:
    """Kind of a stored record: the explicit tag wins over the key shape."""
    if data is not None:
        tag = data.get(KIND_FIELD)
        if tag in (EntityKind.BOOK.value, EntityKind.STUDENT.value, EntityKind.BORROW.value):
            return EntityKind(tag)
    return classify_key(key)


def entity_id_from_key(key: str) -> str:
    """Caller-facing id of a record key (namespace prefix removed)."""
    _, entity_id = split_key(key)
    return entity_id
