import sqlite3
import uuid

import pytest

from profmeta.models import (
    Function,
    FunctionNotFoundError,
    Line,
    LocationLine,
    Mapping,
    MappingNotFoundError,
)
from profmeta.sqlcatalog import (
    SqlCatalog,
    build_lines_by_location_ids_query,
    build_locations_by_ids_query,
)


@pytest.fixture
def connection():
    conn = sqlite3.connect(":memory:")
    yield conn
    try:
        conn.close()
    except sqlite3.ProgrammingError:
        pass


@pytest.fixture
def catalog(connection):
    return SqlCatalog(connection)


def _insert_location(connection) -> bytes:
    loc_id = uuid.uuid4()
    with connection:
        connection.execute(
            'INSERT INTO "locations" (id, address, is_folded, normalized_address, lines) '
            "VALUES (?,?,?,?,?)",
            (str(loc_id), 42, False, 42, ""),
        )
    return loc_id.bytes


def test_build_lines_by_location_ids_query():
    q = build_lines_by_location_ids_query([
        uuid.UUID("00000000-0000-0000-0000-000000000001"),
        uuid.UUID("00000000-0000-0000-0000-000000000002"),
    ])
    assert q == (
        'SELECT "location_id", "line", "function_id" FROM "lines" WHERE location_id IN '
        "('00000000-0000-0000-0000-000000000001','00000000-0000-0000-0000-000000000002')"
    )


def test_build_locations_by_ids_query():
    q = build_locations_by_ids_query([uuid.UUID("00000000-0000-0000-0000-000000000003")])
    assert q == (
        'SELECT "id", "mapping_id", "address", "is_folded"\n'
        '\t\t\t\tFROM "locations"\n'
        "\t\t\t\tWHERE id IN ('00000000-0000-0000-0000-000000000003')"
    )


def test_mapping_store(catalog):
    m = Mapping(start=1, limit=10, offset=5, file="file", build_id="buildID0")
    m.id = catalog.create_mapping(m)
    m1 = Mapping(
        start=12, limit=110, offset=51, file="file1", build_id="buildID1",
        has_functions=True, has_filenames=True, has_inline_frames=True,
    )
    m1.id = catalog.create_mapping(m1)

    by_key = catalog.get_mapping_by_key(m)
    assert by_key == m

    by_key1 = catalog.get_mapping_by_key(m1)
    assert by_key1 == m1


def test_mapping_by_key_uses_cache(catalog):
    m = Mapping(start=0, limit=0x1000, file="bin")
    m.id = catalog.create_mapping(m)
    catalog.get_mapping_by_key(m)
    assert catalog.cache.metrics.mapping_key_misses == 1
    assert catalog.get_mapping_by_key(m) == m
    assert catalog.cache.metrics.mapping_key_hits == 1


def test_mapping_by_key_missing(catalog):
    with pytest.raises(MappingNotFoundError):
        catalog.get_mapping_by_key(Mapping(file="absent"))


def test_get_mappings_by_ids(catalog):
    m = Mapping(start=0, limit=(1 << 63) + 5, offset=7, file="big")
    m.id = catalog.create_mapping(m)
    res = catalog.get_mappings_by_ids(m.id, uuid.uuid4().bytes)
    assert list(res) == [m.id]
    assert res[m.id].limit == (1 << 63) + 5
    assert res[m.id] == m


def test_get_mappings_by_ids_empty(catalog):
    assert catalog.get_mappings_by_ids() == {}


def test_get_mappings_by_ids_rejects_bad_id(catalog):
    with pytest.raises(ValueError):
        catalog.get_mappings_by_ids(b"short")


def test_get_mapping_by_id(catalog):
    m = Mapping(start=4, limit=20, file="x")
    m.id = catalog.create_mapping(m)
    assert catalog._get_mapping_by_id(uuid.UUID(bytes=m.id)) == m
    with pytest.raises(MappingNotFoundError):
        catalog._get_mapping_by_id(uuid.uuid4())


def test_function_store(catalog):
    f = Function(name="name", system_name="systemName", filename="filename", start_line=22)
    f.id = catalog.create_function(f)
    f1 = Function(name="name", system_name="systemName", filename="filename", start_line=42)
    f1.id = catalog.create_function(f1)

    by_key = catalog.get_function_by_key(f)
    assert by_key == f

    funcs = sorted(catalog.get_functions(), key=lambda fn: fn.start_line)
    assert funcs == [f, f1]


def test_function_by_key_missing(catalog):
    with pytest.raises(FunctionNotFoundError):
        catalog.get_function_by_key(Function(name="nothing"))


def test_duplicate_function_rejected(catalog):
    f = Function(name="dup", start_line=1)
    catalog.create_function(f)
    with pytest.raises(sqlite3.IntegrityError):
        catalog.create_function(Function(name="dup", start_line=1))


def test_get_functions_by_ids_then_cache(catalog):
    f = Function(name="a", filename="a.py", start_line=3)
    f.id = catalog.create_function(f)
    first = catalog.get_functions_by_ids(f.id)
    assert first == {f.id: f}
    assert catalog.cache.metrics.function_id_misses == 1
    second = catalog.get_functions_by_ids(f.id)
    assert second == {f.id: f}
    assert catalog.cache.metrics.function_id_hits == 1


def test_create_location_lines_creates_functions(connection, catalog):
    loc_id = _insert_location(connection)
    fn = Function(name="f1")
    catalog.create_location_lines(loc_id, [LocationLine(line=2, function=fn)])

    assert len(fn.id) == 16
    assert catalog.get_function_by_key(Function(name="f1")).id == fn.id

    lines, function_ids = catalog.get_lines_by_location_ids(loc_id)
    assert function_ids == [fn.id]
    assert lines == {loc_id: [Line(function_id=fn.id, line=2)]}
    assert catalog.cache.metrics.location_lines_id_hits == 1


def test_create_location_lines_reuses_function(connection, catalog):
    loc_id = _insert_location(connection)
    existing = Function(name="name", start_line=22)
    existing.id = catalog.create_function(existing)
    lines = [
        LocationLine(line=1, function=Function(name="name", start_line=22)),
        LocationLine(line=5, function=Function(name="name", start_line=22)),
    ]
    catalog.create_location_lines(loc_id, lines)
    assert [ln.function.id for ln in lines] == [existing.id, existing.id]
    assert len(catalog.get_functions()) == 1


def test_create_location_lines_empty_is_noop(connection, catalog):
    loc_id = _insert_location(connection)
    catalog.create_location_lines(loc_id, [])
    assert catalog.get_lines_by_location_ids(loc_id) == ({}, [])


def test_get_lines_from_database(connection, catalog):
    loc_id = _insert_location(connection)
    f = Function(name="g")
    f.id = catalog.create_function(f)
    with connection:
        connection.executemany(
            'INSERT INTO "lines" (location_id, line, function_id) VALUES (?,?,?)',
            [
                (str(uuid.UUID(bytes=loc_id)), 7, str(uuid.UUID(bytes=f.id))),
                (str(uuid.UUID(bytes=loc_id)), 9, str(uuid.UUID(bytes=f.id))),
            ],
        )
    lines, function_ids = catalog.get_lines_by_location_ids(loc_id)
    assert function_ids == [f.id]
    assert sorted(ln.line for ln in lines[loc_id]) == [7, 9]
    assert all(ln.function_id == f.id for ln in lines[loc_id])
    assert catalog.cache.metrics.location_lines_id_misses == 1

    again, _ = catalog.get_lines_by_location_ids(loc_id)
    assert again == lines
    assert catalog.cache.metrics.location_lines_id_hits == 1


def test_lines_require_existing_location(catalog):
    with pytest.raises(sqlite3.IntegrityError):
        catalog.create_location_lines(
            uuid.uuid4().bytes, [LocationLine(line=1, function=Function(name="h"))]
        )


def test_schema_cannot_be_created_twice(connection, catalog):
    with pytest.raises(sqlite3.OperationalError):
        SqlCatalog(connection)


def test_ping_after_close_raises(catalog):
    catalog.ping()
    catalog.close()
    with pytest.raises(sqlite3.ProgrammingError):
        catalog.ping()