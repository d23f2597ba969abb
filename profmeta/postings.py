"""In-memory postings index: label name/value pairs to sets of series IDs."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from typing import Union

from sortedcontainers import SortedSet

_ALL_POSTINGS_NAME = ""
_ALL_POSTINGS_VALUE = ""

# Marker returned in place of an empty postings set.
ERR_POSTINGS_ID = (1 << 64) - 1

Labels = Union[Mapping[str, str], Iterable[tuple[str, str]]]


def all_postings_key() -> tuple[str, str]:
    """The label name and value under which every known ID is recorded."""
    return _ALL_POSTINGS_NAME, _ALL_POSTINGS_VALUE


def _pairs(labels: Labels) -> Iterable[tuple[str, str]]:
    if isinstance(labels, Mapping):
        return labels.items()
    return labels


class MemPostings:
    """Thread-safe map from label name and value to a sorted set of IDs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._m: dict[str, dict[str, SortedSet]] = {
            _ALL_POSTINGS_NAME: {_ALL_POSTINGS_VALUE: SortedSet()}
        }

    def add(self, id: int, labels: Labels) -> None:
        """Record ``id`` under each label and under the all-postings key."""
        with self._lock:
            for name, value in _pairs(labels):
                self._m.setdefault(name, {}).setdefault(value, SortedSet()).add(id)
            self._m[_ALL_POSTINGS_NAME][_ALL_POSTINGS_VALUE].add(id)

    def get(self, name: str, value: str) -> SortedSet:
        """A copy of the IDs for the pair; holds only ERR_POSTINGS_ID when none."""
        with self._lock:
            found = self._m.get(name, {}).get(value)
            result = SortedSet(found) if found is not None else SortedSet()
        if not result:
            result.add(ERR_POSTINGS_ID)
        return result

    def label_names(self) -> list[str]:
        """All label names, without the all-postings key."""
        with self._lock:
            return [name for name in self._m if name != _ALL_POSTINGS_NAME]

    def label_values(self, name: str) -> list[str]:
        """All values seen for the label ``name``."""
        with self._lock:
            return list(self._m.get(name, {}))