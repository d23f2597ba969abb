"""SQLite-backed catalog of mappings, functions and location lines."""

from __future__ import annotations

import sqlite3
import threading
import uuid
from collections.abc import Iterable
from typing import Optional

from .cache import MetaStoreCache
from .models import (
    Function,
    FunctionNotFoundError,
    Line,
    LocationLine,
    Mapping,
    MappingNotFoundError,
)
from .sql_keys import make_sql_function_key, make_sql_mapping_key

_MASK64 = (1 << 64) - 1

# The tables started their lives as representations of the pprof data types.
_SCHEMA = (
    "PRAGMA foreign_keys = ON",
    """CREATE TABLE "mappings" (
        "id" TEXT NOT NULL PRIMARY KEY,
        "start"             INT64,
        "limit"             INT64,
        "offset"            INT64,
        "file"              TEXT,
        "build_id"          TEXT,
        "has_functions"     BOOLEAN,
        "has_filenames"     BOOLEAN,
        "has_line_numbers"  BOOLEAN,
        "has_inline_frames" BOOLEAN,
        "size"              INT64,
        "build_id_or_file"  TEXT,
        UNIQUE ("size", "offset", "build_id_or_file")
    );""",
    'CREATE INDEX idx_mapping_key ON mappings ("size", "offset", "build_id_or_file");',
    """CREATE TABLE "functions" (
        "id" TEXT NOT NULL PRIMARY KEY,
        "name"        TEXT,
        "system_name" TEXT,
        "filename"    TEXT,
        "start_line"  INT64,
        UNIQUE (name, system_name, filename, start_line)
    );""",
    "CREATE INDEX idx_function_key ON functions (start_line, name, system_name, filename);",
    """CREATE TABLE "lines" (
        "location_id" TEXT NOT NULL,
        "function_id" TEXT NOT NULL,
        "line"        INT64,
        FOREIGN KEY (function_id) REFERENCES functions (id),
        FOREIGN KEY (location_id) REFERENCES locations (id),
        UNIQUE (location_id, function_id, line)
    );""",
    "CREATE INDEX idx_line_location ON lines (location_id);",
    """CREATE TABLE "locations" (
        "id" TEXT NOT NULL PRIMARY KEY,
        "mapping_id"         TEXT,
        "address"            INT64,
        "is_folded"          BOOLEAN,
        "normalized_address" INT64,
        "lines"              TEXT,
        FOREIGN KEY (mapping_id) REFERENCES mappings (id),
        UNIQUE (mapping_id, is_folded, normalized_address, lines)
    );""",
    "CREATE INDEX idx_location_key ON locations (normalized_address, mapping_id, is_folded, lines);",
)

_LINES_BY_LOCATION_IDS_QUERY_START = (
    'SELECT "location_id", "line", "function_id" FROM "lines" WHERE location_id IN ('
)
_LOCATIONS_BY_IDS_QUERY_START = (
    'SELECT "id", "mapping_id", "address", "is_folded"\n'
    '\t\t\t\tFROM "locations"\n'
    "\t\t\t\tWHERE id IN ("
)

_MAPPING_COLUMNS = (
    '"id", "start", "limit", "offset", "file", "build_id", '
    '"has_functions", "has_filenames", "has_line_numbers", "has_inline_frames"'
)
_FUNCTION_COLUMNS = '"id", "name", "system_name", "filename", "start_line"'


def _to_i64(value: int) -> int:
    value &= _MASK64
    return value - (1 << 64) if value >= 1 << 63 else value


def _to_u64(value: Optional[int]) -> int:
    return (value or 0) & _MASK64


def _quoted_in_list(ids: Iterable[uuid.UUID]) -> str:
    return ",".join(f"'{u}'" for u in ids)


def build_lines_by_location_ids_query(ids: Iterable[uuid.UUID]) -> str:
    """Query selecting all lines of the given location IDs."""
    return _LINES_BY_LOCATION_IDS_QUERY_START + _quoted_in_list(ids) + ")"


def build_locations_by_ids_query(ids: Iterable[uuid.UUID]) -> str:
    """Query selecting the locations with the given IDs."""
    return _LOCATIONS_BY_IDS_QUERY_START + _quoted_in_list(ids) + ")"


def _uuid_from_bytes(data: bytes) -> uuid.UUID:
    return uuid.UUID(bytes=bytes(data))


def _mapping_from_row(row: tuple) -> Mapping:
    (mid, start, limit, offset, file, build_id,
     has_functions, has_filenames, has_line_numbers, has_inline_frames) = row
    return Mapping(
        id=uuid.UUID(mid).bytes,
        start=_to_u64(start),
        limit=_to_u64(limit),
        offset=_to_u64(offset),
        file=file or "",
        build_id=build_id or "",
        has_functions=bool(has_functions),
        has_filenames=bool(has_filenames),
        has_line_numbers=bool(has_line_numbers),
        has_inline_frames=bool(has_inline_frames),
    )


def _function_from_row(row: tuple) -> Function:
    fid, name, system_name, filename, start_line = row
    return Function(
        id=uuid.UUID(fid).bytes,
        name=name or "",
        system_name=system_name or "",
        filename=filename or "",
        start_line=start_line or 0,
    )


class SqlCatalog:
    """Mappings, functions and location lines kept in SQLite, fronted by a cache.

    The schema is created when the catalog is constructed; creating it twice
    on the same database raises ``sqlite3.OperationalError``.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        cache: Optional[MetaStoreCache] = None,
    ) -> None:
        self.connection = connection
        self.cache = cache if cache is not None else MetaStoreCache()
        self._lock = threading.RLock()
        self._migrate()

    def _migrate(self) -> None:
        with self._lock:
            for statement in _SCHEMA:
                self.connection.execute(statement)
            self.connection.commit()

    # --- mappings ---

    def get_mappings_by_ids(self, *args: bytes) -> dict[bytes, Mapping]:
        """Mappings for the given IDs; unknown IDs are left out."""
        if not args:
            return {}
        in_list = _quoted_in_list(_uuid_from_bytes(i) for i in args)
        query = f'SELECT {_MAPPING_COLUMNS} FROM "mappings" WHERE id IN ({in_list})'
        with self._lock:
            rows = self.connection.execute(query).fetchall()
        res: dict[bytes, Mapping] = {}
        for row in rows:
            m = _mapping_from_row(row)
            res.setdefault(m.id, m)
        return res

    def get_mapping_by_key(self, key: Mapping) -> Mapping:
        """The stored mapping with the same key as ``key``."""
        k = make_sql_mapping_key(key)
        cached = self.cache.get_mapping_by_key(k)
        if cached is not None:
            return cached
        with self._lock:
            row = self.connection.execute(
                f'SELECT {_MAPPING_COLUMNS} FROM "mappings" '
                'WHERE "size"=? AND "offset"=? AND "build_id_or_file"=?',
                (_to_i64(k.size), _to_i64(k.offset), k.build_id_or_file),
            ).fetchone()
        if row is None:
            raise MappingNotFoundError()
        m = _mapping_from_row(row)
        self.cache.set_mapping_by_key(k, m)
        return m

    def create_mapping(self, mapping: Mapping) -> bytes:
        """Store ``mapping`` under a new ID and return that ID."""
        k = make_sql_mapping_key(mapping)
        new_id = uuid.uuid4()
        with self._lock, self.connection:
            self.connection.execute(
                'INSERT INTO "mappings" ('
                '"id", "start", "limit", "offset", "file", "build_id", '
                '"has_functions", "has_filenames", "has_line_numbers", "has_inline_frames", '
                '"size", "build_id_or_file") VALUES (?,?,?,?,?,?,?,?,?,?,?,?)',
                (
                    str(new_id),
                    _to_i64(mapping.start),
                    _to_i64(mapping.limit),
                    _to_i64(mapping.offset),
                    mapping.file,
                    mapping.build_id,
                    mapping.has_functions,
                    mapping.has_filenames,
                    mapping.has_line_numbers,
                    mapping.has_inline_frames,
                    _to_i64(k.size),
                    k.build_id_or_file,
                ),
            )
        return new_id.bytes

    def _get_mapping_by_id(self, mapping_id: uuid.UUID) -> Mapping:
        cached = self.cache.get_mapping_by_id(mapping_id.bytes)
        if cached is not None:
            return cached
        with self._lock:
            row = self.connection.execute(
                f'SELECT {_MAPPING_COLUMNS} FROM "mappings" WHERE id=?',
                (str(mapping_id),),
            ).fetchone()
        if row is None:
            raise MappingNotFoundError()
        m = _mapping_from_row(row)
        self.cache.set_mapping_by_id(m)
        return m

    # --- functions ---

    def get_function_by_key(self, key: Function) -> Function:
        """The stored function with the same key as ``key``."""
        k = make_sql_function_key(key)
        cached = self.cache.get_function_by_key(k)
        if cached is not None:
            return cached
        with self._lock:
            row = self.connection.execute(
                f'SELECT {_FUNCTION_COLUMNS} FROM "functions" '
                "WHERE start_line=? AND name=? AND system_name=? AND filename=?",
                (k.start_line, k.name, k.system_name, k.filename),
            ).fetchone()
        if row is None:
            raise FunctionNotFoundError()
        fn = _function_from_row(row)
        self.cache.set_function_by_key(k, fn)
        return fn

    def create_function(self, function: Function) -> bytes:
        """Store ``function`` under a new ID and return that ID."""
        new_id = uuid.uuid4()
        with self._lock, self.connection:
            self.connection.execute(
                'INSERT INTO "functions" (id, name, system_name, filename, start_line) '
                "VALUES (?,?,?,?,?)",
                (
                    str(new_id),
                    function.name,
                    function.system_name,
                    function.filename,
                    function.start_line,
                ),
            )
        return new_id.bytes

    def get_functions(self) -> list[Function]:
        """Every stored function."""
        with self._lock:
            rows = self.connection.execute(
                f'SELECT {_FUNCTION_COLUMNS} FROM "functions"'
            ).fetchall()
        return [_function_from_row(row) for row in rows]

    def get_functions_by_ids(self, *args: bytes) -> dict[bytes, Function]:
        """Functions for the given IDs; unknown IDs are left out."""
        res: dict[bytes, Function] = {}
        remaining: list[uuid.UUID] = []
        for fid in args:
            cached = self.cache.get_function_by_id(fid)
            if cached is not None:
                res[bytes(fid)] = cached
                continue
            remaining.append(_uuid_from_bytes(fid))

        if not remaining:
            return res

        query = (
            f'SELECT {_FUNCTION_COLUMNS} FROM "functions" '
            f"WHERE id IN ({_quoted_in_list(remaining)})"
        )
        with self._lock:
            rows = self.connection.execute(query).fetchall()
        retrieved = {f.id: f for f in map(_function_from_row, rows)}
        for fid, f in retrieved.items():
            res[fid] = f
            self.cache.set_function_by_id(f)
        return res

    def _get_or_create_function(self, function: Function) -> bytes:
        try:
            return self.get_function_by_key(function).id
        except FunctionNotFoundError:
            return self.create_function(function)

    # --- location lines ---

    def create_location_lines(self, location_id: bytes, lines: list[LocationLine]) -> None:
        """Attach ``lines`` to the location, creating missing functions.

        Each line's function gets its stored ID assigned.
        """
        if not lines:
            return
        location_uuid = str(_uuid_from_bytes(location_id))
        rows: list[tuple[str, int, str]] = []
        stored: list[Line] = []
        with self._lock:
            for ln in lines:
                if ln.function is None:
                    raise ValueError("location line has no function")
                ln.function.id = self._get_or_create_function(ln.function)
                function_uuid = _uuid_from_bytes(ln.function.id)
                rows.append((location_uuid, ln.line, str(function_uuid)))
                stored.append(Line(function_id=ln.function.id, line=ln.line))
            with self.connection:
                self.connection.executemany(
                    'INSERT INTO "lines" (location_id, line, function_id) VALUES (?,?,?)',
                    rows,
                )
        self.cache.set_location_lines_by_id(location_id, stored)

    def get_lines_by_location_ids(
        self, *args: bytes
    ) -> tuple[dict[bytes, list[Line]], list[bytes]]:
        """Lines per location ID, and the distinct function IDs they use."""
        function_ids: list[bytes] = []
        seen: set[bytes] = set()

        def note(function_id: bytes) -> None:
            if function_id not in seen:
                seen.add(function_id)
                function_ids.append(function_id)

        res: dict[bytes, list[Line]] = {}
        remaining: list[uuid.UUID] = []
        for lid in args:
            cached = self.cache.get_location_lines_by_id(lid)
            if cached is not None:
                for line in cached:
                    note(line.function_id)
                res[bytes(lid)] = cached
                continue
            remaining.append(_uuid_from_bytes(lid))

        if not remaining:
            return res, function_ids

        with self._lock:
            rows = self.connection.execute(
                build_lines_by_location_ids_query(remaining)
            ).fetchall()

        retrieved: dict[bytes, list[Line]] = {}
        for loc_id, line, func_id in rows:
            location_key = uuid.UUID(loc_id).bytes
            function_key = uuid.UUID(func_id).bytes
            retrieved.setdefault(location_key, []).append(
                Line(function_id=function_key, line=line or 0)
            )
            note(function_key)

        for lid, lines in retrieved.items():
            res[lid] = lines
            self.cache.set_location_lines_by_id(lid, lines)
        return res, function_ids

    # --- lifecycle ---

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self.connection.close()

    def ping(self) -> None:
        """Raise if the database cannot be reached."""
        with self._lock:
            self.connection.execute("SELECT 1").fetchone()