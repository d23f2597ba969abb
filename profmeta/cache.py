"""In-process cache of metadata records, keyed by ID and by lookup key."""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass
from typing import Optional

from .models import Function, Line, StoredLocation, Mapping
from .sql_keys import FunctionKey, LocationKey, MappingKey


@dataclass
class CacheMetrics:
    """Hit and miss counters for ID and key lookups, per item type."""

    location_id_hits: int = 0
    location_id_misses: int = 0
    location_key_hits: int = 0
    location_key_misses: int = 0

    mapping_id_hits: int = 0
    mapping_id_misses: int = 0
    mapping_key_hits: int = 0
    mapping_key_misses: int = 0

    function_id_hits: int = 0
    function_id_misses: int = 0
    function_key_hits: int = 0
    function_key_misses: int = 0

    location_lines_id_hits: int = 0
    location_lines_id_misses: int = 0


class MetaStoreCache:
    """Thread-safe cache; getters return copies, ``None`` when absent."""

    def __init__(self, metrics: Optional[CacheMetrics] = None) -> None:
        self.metrics = metrics if metrics is not None else CacheMetrics()

        self._locations_lock = threading.Lock()
        self._locations_by_id: dict[bytes, StoredLocation] = {}
        self._locations_by_key: dict[LocationKey, bytes] = {}

        self._mappings_lock = threading.Lock()
        self._mappings_by_id: dict[bytes, Mapping] = {}
        self._mappings_by_key: dict[MappingKey, bytes] = {}

        self._functions_lock = threading.Lock()
        self._functions_by_id: dict[bytes, Function] = {}
        self._functions_by_key: dict[FunctionKey, bytes] = {}

        self._lines_lock = threading.Lock()
        self._lines_by_id: dict[bytes, list[Line]] = {}

    # --- locations ---

    def get_location_by_key(self, key: LocationKey) -> Optional[StoredLocation]:
        with self._locations_lock:
            location_id = self._locations_by_key.get(key)
            location = None if location_id is None else self._locations_by_id.get(location_id)
            if location is None:
                self.metrics.location_key_misses += 1
                return None
            self.metrics.location_key_hits += 1
            return copy.deepcopy(location)

    def get_location_by_id(self, location_id: bytes) -> Optional[StoredLocation]:
        with self._locations_lock:
            location = self._locations_by_id.get(bytes(location_id))
            # Both outcomes are counted as hits.
            self.metrics.location_id_hits += 1
            return None if location is None else copy.deepcopy(location)

    def set_location_by_key(self, key: LocationKey, location: StoredLocation) -> None:
        with self._locations_lock:
            self._locations_by_id[bytes(location.id)] = location
            self._locations_by_key[key] = bytes(location.id)

    def set_location_by_id(self, location: StoredLocation) -> None:
        with self._locations_lock:
            self._locations_by_id[bytes(location.id)] = location

    # --- mappings ---

    def get_mapping_by_key(self, key: MappingKey) -> Optional[Mapping]:
        with self._mappings_lock:
            mapping_id = self._mappings_by_key.get(key)
            mapping = None if mapping_id is None else self._mappings_by_id.get(mapping_id)
            if mapping is None:
                self.metrics.mapping_key_misses += 1
                return None
            self.metrics.mapping_key_hits += 1
            return copy.deepcopy(mapping)

    def get_mapping_by_id(self, mapping_id: bytes) -> Optional[Mapping]:
        with self._mappings_lock:
            mapping = self._mappings_by_id.get(bytes(mapping_id))
            # Both outcomes are counted as hits.
            self.metrics.mapping_id_hits += 1
            return None if mapping is None else copy.deepcopy(mapping)

    def set_mapping_by_key(self, key: MappingKey, mapping: Mapping) -> None:
        with self._mappings_lock:
            self._mappings_by_id[bytes(mapping.id)] = mapping
            self._mappings_by_key[key] = bytes(mapping.id)

    def set_mapping_by_id(self, mapping: Mapping) -> None:
        with self._mappings_lock:
            self._mappings_by_id[bytes(mapping.id)] = mapping

    # --- functions ---

    def get_function_by_key(self, key: FunctionKey) -> Optional[Function]:
        with self._functions_lock:
            function_id = self._functions_by_key.get(key)
            function = None if function_id is None else self._functions_by_id.get(function_id)
            if function is None:
                self.metrics.function_key_misses += 1
                return None
            self.metrics.function_key_hits += 1
            return copy.deepcopy(function)

    def set_function_by_key(self, key: FunctionKey, function: Function) -> None:
        with self._functions_lock:
            self._functions_by_id[bytes(function.id)] = function
            self._functions_by_key[key] = bytes(function.id)

    def get_function_by_id(self, function_id: bytes) -> Optional[Function]:
        with self._functions_lock:
            function = self._functions_by_id.get(bytes(function_id))
            if function is None:
                self.metrics.function_id_misses += 1
                return None
            self.metrics.function_id_hits += 1
            return copy.deepcopy(function)

    def set_function_by_id(self, function: Function) -> None:
        with self._functions_lock:
            self._functions_by_id[bytes(function.id)] = function

    # --- location lines ---

    def set_location_lines_by_id(self, location_id: bytes, lines: list[Line]) -> None:
        stored = [copy.deepcopy(line) for line in lines]
        with self._lines_lock:
            self._lines_by_id[bytes(location_id)] = stored

    def get_location_lines_by_id(self, location_id: bytes) -> Optional[list[Line]]:
        with self._lines_lock:
            lines = self._lines_by_id.get(bytes(location_id))
            if lines is None:
                self.metrics.location_lines_id_misses += 1
                return None
            self.metrics.location_lines_id_hits += 1
            return [copy.deepcopy(line) for line in lines]