"""SQLite metadata store: the catalog plus locations and their symbolization."""

from __future__ import annotations

import sqlite3
import time
import uuid
from typing import Optional

from .models import (
    NIL_UUID,
    Location,
    LocationNotFoundError,
    StoredLocation,
)
from .sql_keys import make_sql_location_key
from .sqlcatalog import SqlCatalog, build_locations_by_ids_query

_MASK64 = (1 << 64) - 1

# One first attempt plus three retries, ten milliseconds apart.
_INSERT_ATTEMPTS = 4
_RETRY_DELAY = 0.01

_LOCATION_COLUMNS = 'l."id", l."address", l."is_folded", l."mapping_id"'


def _i64(value: int) -> int:
    value &= _MASK64
    return value - (1 << 64) if value >= 1 << 63 else value


def _u64(value: Optional[int]) -> int:
    return (value or 0) & _MASK64


class _MappingIDs:
    """Distinct mapping IDs in order of first appearance."""

    def __init__(self) -> None:
        self.ids: list[bytes] = []
        self._seen: set[bytes] = set()

    def add(self, mapping_id: bytes) -> None:
        if mapping_id not in self._seen:
            self._seen.add(mapping_id)
            self.ids.append(mapping_id)


def _location_from_row(row: tuple, mapping_ids: _MappingIDs) -> StoredLocation:
    loc_id, address, is_folded, mapping_id = row
    loc = StoredLocation(
        id=uuid.UUID(loc_id).bytes,
        address=_u64(address),
        is_folded=bool(is_folded),
    )
    if mapping_id is not None:
        loc.mapping_id = uuid.UUID(mapping_id).bytes
        mapping_ids.add(loc.mapping_id)
    return loc


class SqlMetaStore(SqlCatalog):
    """Profile metadata kept in SQLite, in memory or in a file."""

    @classmethod
    def open_in_memory(cls, name: Optional[str] = None) -> "SqlMetaStore":
        """Open a shared-cache in-memory database, named if ``name`` is given."""
        dsn = "file::memory:?cache=shared"
        if name:
            dsn = f"file:{name}?mode=memory&cache=shared"
        connection = sqlite3.connect(dsn, uri=True, check_same_thread=False)
        return cls._open(connection)

    @classmethod
    def open_on_disk(cls, path: Optional[str] = None) -> "SqlMetaStore":
        """Open a database file at ``path``; without one a temporary database."""
        connection = sqlite3.connect(path or "", check_same_thread=False)
        return cls._open(connection)

    @classmethod
    def _open(cls, connection: sqlite3.Connection) -> "SqlMetaStore":
        try:
            return cls(connection, None)
        except sqlite3.Error:
            connection.close()
            raise

    def __enter__(self) -> "SqlMetaStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # --- locations ---

    def get_location_by_key(self, key: Location) -> StoredLocation:
        """The stored location with the same key as ``key``."""
        k = make_sql_location_key(key)
        cached = self.cache.get_location_by_key(k)
        if cached is not None:
            return cached

        with self._lock:
            if k.mapping_id != NIL_UUID:
                row = self.connection.execute(
                    'SELECT "id", "address" FROM "locations" '
                    "WHERE normalized_address=? AND is_folded=? AND lines=? AND mapping_id=?",
                    (_i64(k.normalized_address), k.is_folded, k.lines, str(k.mapping_id)),
                ).fetchone()
            else:
                row = self.connection.execute(
                    'SELECT "id", "address" FROM "locations" '
                    "WHERE normalized_address=? AND mapping_id IS NULL "
                    "AND is_folded=? AND lines=?",
                    (_i64(k.normalized_address), k.is_folded, k.lines),
                ).fetchone()
        if row is None:
            raise LocationNotFoundError()

        loc_id, address = row
        location = StoredLocation(
            id=uuid.UUID(loc_id).bytes,
            address=_u64(address),
            is_folded=k.is_folded,
            mapping_id=k.mapping_id.bytes,
        )
        self.cache.set_location_by_key(k, location)
        return location

    def get_locations_by_ids(
        self, *args: bytes
    ) -> tuple[dict[bytes, StoredLocation], list[bytes]]:
        """Locations per ID, and the distinct mapping IDs they refer to."""
        locations: dict[bytes, StoredLocation] = {}
        mapping_ids = _MappingIDs()
        remaining: list[uuid.UUID] = []

        for location_id in args:
            cached = self.cache.get_location_by_id(location_id)
            if cached is not None:
                locations[bytes(cached.id)] = cached
                if cached.mapping_id and cached.mapping_id != NIL_UUID.bytes:
                    mapping_ids.add(bytes(cached.mapping_id))
                continue
            remaining.append(uuid.UUID(bytes=bytes(location_id)))

        if remaining:
            with self._lock:
                rows = self.connection.execute(
                    build_locations_by_ids_query(remaining)
                ).fetchall()
            for loc_id, mapping_id, address, is_folded in rows:
                location = StoredLocation(
                    id=uuid.UUID(loc_id).bytes,
                    address=_u64(address),
                    is_folded=bool(is_folded),
                )
                if mapping_id is not None:
                    location.mapping_id = uuid.UUID(mapping_id).bytes
                if location.id in locations:
                    continue
                self.cache.set_location_by_id(location)
                locations[location.id] = location
                if mapping_id is not None:
                    mapping_ids.add(location.mapping_id)

        return locations, mapping_ids.ids

    def create_location(self, location: Location) -> bytes:
        """Store ``location`` and its lines under a new ID and return that ID.

        The location's mapping must already be stored.
        """
        k = make_sql_location_key(location)
        new_id = uuid.uuid4()

        if location.mapping is not None:
            mapping_uuid = uuid.UUID(bytes=bytes(location.mapping.id))
            # The mapping has to exist before a location can refer to it.
            self._get_mapping_by_id(mapping_uuid)
            statement = (
                'INSERT INTO "locations" '
                "(id, address, is_folded, mapping_id, normalized_address, lines) "
                "VALUES (?,?,?,?,?,?)"
            )
            params: tuple = (
                str(new_id),
                _i64(location.address),
                location.is_folded,
                str(mapping_uuid),
                _i64(k.normalized_address),
                k.lines,
            )
        else:
            statement = (
                'INSERT INTO "locations" '
                "(id, address, is_folded, normalized_address, lines) "
                "VALUES (?,?,?,?,?)"
            )
            params = (
                str(new_id),
                _i64(location.address),
                location.is_folded,
                _i64(k.normalized_address),
                k.lines,
            )

        self._insert_with_retry(statement, params)
        self.create_location_lines(new_id.bytes, location.lines)
        return new_id.bytes

    def _insert_with_retry(self, statement: str, params: tuple) -> None:
        for attempt in range(_INSERT_ATTEMPTS):
            try:
                with self._lock, self.connection:
                    self.connection.execute(statement, params)
                return
            except sqlite3.Error:
                if attempt == _INSERT_ATTEMPTS - 1:
                    raise
                time.sleep(_RETRY_DELAY)

    def symbolize(self, location: Location) -> None:
        """Attach the lines of an already stored location."""
        self.create_location_lines(location.id.bytes, location.lines)

    def get_locations(self) -> tuple[list[StoredLocation], list[bytes]]:
        """Every stored location, and the distinct mapping IDs they refer to."""
        with self._lock:
            rows = self.connection.execute(
                f'SELECT {_LOCATION_COLUMNS} FROM "locations" l'
            ).fetchall()
        mapping_ids = _MappingIDs()
        locations = [_location_from_row(row, mapping_ids) for row in rows]
        return locations, mapping_ids.ids

    def get_symbolizable_locations(self) -> tuple[list[StoredLocation], list[bytes]]:
        """Locations with a mapping and an address but no lines yet."""
        with self._lock:
            rows = self.connection.execute(
                f'SELECT {_LOCATION_COLUMNS} FROM "locations" l '
                'LEFT JOIN "lines" ln ON l."id" = ln."location_id" '
                "WHERE l.normalized_address > 0 "
                'AND ln."line" IS NULL '
                'AND l."mapping_id" IS NOT NULL '
                'AND l."id" IS NOT NULL'
            ).fetchall()
        mapping_ids = _MappingIDs()
        locations = [_location_from_row(row, mapping_ids) for row in rows]
        return locations, mapping_ids.ids