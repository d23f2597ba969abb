import uuid

from profmeta.cache import CacheMetrics, MetaStoreCache
from profmeta.models import Function, Line, Mapping, StoredLocation
from profmeta.sql_keys import (
    FunctionKey,
    LocationKey,
    MappingKey,
    make_sql_function_key,
    make_sql_mapping_key,
)

LOC_ID = uuid.UUID("00000000-0000-0000-0000-000000000001").bytes
MAP_ID = uuid.UUID("00000000-0000-0000-0000-000000000002").bytes
FN_ID = uuid.UUID("00000000-0000-0000-0000-000000000003").bytes


def test_location_by_key_round_trip():
    cache = MetaStoreCache()
    key = LocationKey(normalized_address=42)
    loc = StoredLocation(id=LOC_ID, address=42, mapping_id=MAP_ID)
    cache.set_location_by_key(key, loc)
    assert cache.get_location_by_key(key) == loc
    assert cache.get_location_by_id(LOC_ID) == loc
    assert cache.metrics.location_key_hits == 1


def test_location_key_miss_counts():
    cache = MetaStoreCache()
    assert cache.get_location_by_key(LocationKey(normalized_address=1)) is None
    assert cache.metrics.location_key_misses == 1
    assert cache.metrics.location_key_hits == 0


def test_location_get_returns_copy():
    cache = MetaStoreCache()
    cache.set_location_by_id(StoredLocation(id=LOC_ID, address=42))
    got = cache.get_location_by_id(LOC_ID)
    got.address = 0
    assert cache.get_location_by_id(LOC_ID).address == 42


def test_location_by_id_miss_is_none():
    cache = MetaStoreCache()
    assert cache.get_location_by_id(LOC_ID) is None


def test_mapping_round_trip():
    cache = MetaStoreCache()
    m = Mapping(id=MAP_ID, start=1, limit=10, offset=5, file="file", build_id="buildID0")
    key = make_sql_mapping_key(m)
    cache.set_mapping_by_key(key, m)
    assert cache.get_mapping_by_key(key) == m
    assert cache.get_mapping_by_id(MAP_ID) == m
    assert cache.get_mapping_by_key(MappingKey(build_id_or_file="other")) is None
    assert cache.metrics.mapping_key_misses == 1


def test_mapping_by_id_only():
    cache = MetaStoreCache()
    m = Mapping(id=MAP_ID, file="file")
    cache.set_mapping_by_id(m)
    assert cache.get_mapping_by_id(MAP_ID) == m
    assert cache.get_mapping_by_key(make_sql_mapping_key(m)) is None


def test_function_round_trip_and_metrics():
    metrics = CacheMetrics()
    cache = MetaStoreCache(metrics)
    f = Function(id=FN_ID, name="name", system_name="systemName", filename="filename", start_line=22)
    key = make_sql_function_key(f)
    cache.set_function_by_key(key, f)
    assert cache.get_function_by_key(key) == f
    assert cache.get_function_by_id(FN_ID) == f
    assert cache.get_function_by_id(LOC_ID) is None
    assert cache.get_function_by_key(FunctionKey(name="nope")) is None
    assert metrics.function_id_hits == 1
    assert metrics.function_id_misses == 1
    assert metrics.function_key_hits == 1
    assert metrics.function_key_misses == 1


def test_function_by_id_setter():
    cache = MetaStoreCache()
    f = Function(id=FN_ID, name="f1")
    cache.set_function_by_id(f)
    got = cache.get_function_by_id(FN_ID)
    got.name = "changed"
    assert cache.get_function_by_id(FN_ID).name == "f1"


def test_location_lines_are_copied_on_set_and_get():
    cache = MetaStoreCache()
    lines = [Line(function_id=FN_ID, line=2)]
    cache.set_location_lines_by_id(LOC_ID, lines)
    lines[0].line = 99
    got = cache.get_location_lines_by_id(LOC_ID)
    assert got == [Line(function_id=FN_ID, line=2)]
    got[0].line = 7
    assert cache.get_location_lines_by_id(LOC_ID) == [Line(function_id=FN_ID, line=2)]


def test_location_lines_miss():
    cache = MetaStoreCache()
    assert cache.get_location_lines_by_id(LOC_ID) is None
    assert cache.metrics.location_lines_id_misses == 1
    assert cache.metrics.location_lines_id_hits == 0