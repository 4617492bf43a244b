"""In-process change notifications.

Writers publish a ``ChangeEvent`` after every successful mutation so views
can refresh on demand instead of re-reading the whole store on a timer.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List

from .records import EntityKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    kind: EntityKind
    entity_id: str
    action: str  # "created", "updated", "deleted" or "borrowed"


Listener = Callable[[ChangeEvent], None]


class ChangeFeed:
    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        # Listener failures are logged, never raised to the writer
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Change listener {listener!r} failed on {event}: {e}")
