from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Set

logger = logging.getLogger("worksheet.tags")

TAG_KINDS = ("visit_type", "reason", "results_needed")

TagListener = Callable[[str, str], None]


class TagVocabulary:
    """
    Growable, union-only sets of free-text values used for autocomplete.

    Values are only ever added (typing a new value into any record); nothing is
    pruned when the last record using a value goes away. Storage is unordered;
    enumeration is sorted.
    """

    def __init__(self) -> None:
        self._sets: Dict[str, Set[str]] = {kind: set() for kind in TAG_KINDS}
        self._listeners: List[TagListener] = []

    def _bucket(self, kind: str) -> Set[str]:
        try:
            return self._sets[kind]
        except KeyError:
            raise ValueError(f"Unknown tag vocabulary: {kind}") from None

    def subscribe(self, listener: TagListener) -> None:
        self._listeners.append(listener)

    def ensure(self, kind: str, value: str) -> bool:
        """Add value to the vocabulary if absent. Returns True when it was added."""
        bucket = self._bucket(kind)
        if not isinstance(value, str) or not value.strip():
            return False
        if value in bucket:
            return False
        bucket.add(value)
        logger.debug("Added %r to %s vocabulary", value, kind)
        for listener in list(self._listeners):
            listener(kind, value)
        return True

    def load(self, kind: str, values: Iterable[str]) -> None:
        """Bulk add on load; does not notify listeners."""
        self._bucket(kind).update(v for v in values if isinstance(v, str) and v)

    def contains(self, kind: str, value: str) -> bool:
        return value in self._bucket(kind)

    def sorted(self, kind: str) -> List[str]:
        return sorted(self._bucket(kind))

    def as_sets(self) -> Dict[str, Set[str]]:
        return {kind: set(values) for kind, values in self._sets.items()}
