"""
Append-only event channel (the page's ``dataLayer``).
"""

import copy
import logging
from typing import Any, Callable, Dict, Iterator, List, Tuple

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
CLEAR_RECORD: Record = {"ecommerce": None}


class EventChannel:
    """
    Ordered, append-only sequence of plain records consumed by a tag manager.

    Records are copied on the way in and on the way out, so nothing downstream
    can mutate what was published.
    """

    def __init__(self):
        self._records: List[Record] = []
        self._subscribers: List[Callable[[Record], None]] = []

    def push(self, *records: Record) -> None:
        """Append one or more records in a single, uninterrupted step."""
        frozen = [copy.deepcopy(record) for record in records]
        self._records.extend(frozen)
        for record in frozen:
            self._notify(record)

    def subscribe(self, callback: Callable[[Record], None]) -> None:
        self._subscribers.append(callback)

    def _notify(self, record: Record) -> None:
        for callback in self._subscribers:
            try:
                callback(copy.deepcopy(record))
            except Exception as e:
                logger.error(f"dataLayer subscriber failed: {e}", exc_info=True)

    @property
    def records(self) -> Tuple[Record, ...]:
        return tuple(copy.deepcopy(record) for record in self._records)

    def events(self, name: str = None) -> List[Record]:
        """Event records (clearing records excluded), optionally filtered by name."""
        return [
            record for record in self.records
            if "event" in record and (name is None or record["event"] == name)
        ]

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[Record]:
        return iter(self.records)
