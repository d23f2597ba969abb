# profmeta

A metadata store for profiling data. It keeps the mappings, functions and
locations that profile samples refer to, deduplicates them by key, and keeps
track of which locations still need symbolizing.

## Installing

```
pip install .
```

## The SQLite store

`profmeta.sqlstore.SqlMetaStore` keeps everything in SQLite:

- `SqlMetaStore.open_in_memory(name)` opens a shared-cache in-memory database
  (named when `name` is given).
- `SqlMetaStore.open_on_disk(path)` opens a database file.

The schema is created when the store is opened, so opening the same database
twice (a file that already holds the tables, or the same in-memory name while
it is still open) raises `sqlite3.OperationalError`. The store is a context
manager and closes itself on exit; `ping()` raises if the database cannot be
reached.

```python
import uuid

from profmeta.models import Function, Location, LocationLine, Mapping
from profmeta.sqlstore import SqlMetaStore

with SqlMetaStore.open_in_memory("example") as store:
    mapping = Mapping(start=0x400000, limit=0x800000, offset=0, file="/bin/app")
    mapping.id = store.create_mapping(mapping)

    location = Location(address=0x401000, mapping=mapping)
    location_id = store.create_location(location)

    # Locations with an address and a mapping but no lines still need symbols.
    pending, mapping_ids = store.get_symbolizable_locations()

    # Add lines once symbols are known; missing functions are created.
    fn = Function(name="main", system_name="main", filename="main.c", start_line=1)
    store.symbolize(Location(
        id=uuid.UUID(bytes=pending[0].id),
        lines=[LocationLine(line=10, function=fn)],
    ))

    locations, mapping_ids = store.get_locations_by_ids(location_id)
    lines, function_ids = store.get_lines_by_location_ids(location_id)
    functions = store.get_functions_by_ids(*function_ids)
    mappings = store.get_mappings_by_ids(*mapping_ids)
```

IDs are 16-byte UUIDs as `bytes`. Locations come back as
`profmeta.models.StoredLocation`, which refers to its mapping by ID; lines
come back as `profmeta.models.Line`, which refers to its function by ID.

Other operations: `get_mapping_by_key`, `get_function_by_key`,
`get_location_by_key` (find the stored record equal by key to the one given),
`create_function`, `get_functions`, `get_locations` and
`create_location_lines`.

A lookup that finds nothing raises a subclass of
`profmeta.models.NotFoundError`: `LocationNotFoundError`,
`MappingNotFoundError` or `FunctionNotFoundError`.

`profmeta.sqlcatalog.SqlCatalog` is the part of the store that handles
mappings, functions and lines only; it takes an open `sqlite3.Connection`.

### Cache

Key and ID lookups go through `profmeta.cache.MetaStoreCache`, reachable as
`store.cache`. Its getters return copies, or `None` when absent, and it counts
hits and misses in `store.cache.metrics` (a `CacheMetrics`).

## Records

`profmeta.models` holds the dataclasses `Mapping`, `Function`, `Line`,
`LocationLines`, `StoredLocation`, `LocationLine` and `Location`. `Mapping`,
`Function`, `LocationLines` and `StoredLocation` have `to_bytes()` and
`from_bytes()` for a compact protobuf-style encoding.
`unsymbolizable_mapping(m)` tells whether a mapping such as `[vdso]` can never
be symbolized.

## Keys

`profmeta.sql_keys` builds the tuple keys that the SQL store and its cache
use (`make_sql_mapping_key`, `make_sql_function_key`, `make_sql_location_key`).
`profmeta.kv` builds equivalent byte keys for use in a sorted key-value store
(`make_mapping_key`, `make_function_key`, `make_location_key`). Mapping sizes
are rounded up to 4 KiB, and location addresses are normalised against the
start of their mapping, so the same binary loaded at different addresses
gives the same keys.

## Label postings

`profmeta.postings.MemPostings` is a thread-safe in-memory index from label
name and value to a sorted set of series IDs:

```python
from profmeta.postings import MemPostings

p = MemPostings()
p.add(42, {"foo": "bar", "container": "test1"})
p.add(123, {"foo": "bar", "container": "test2"})
list(p.get("foo", "bar"))        # [42, 123]
list(p.get("container", "nope")) # [18446744073709551615], the empty marker
p.label_names()                  # ["foo", "container"]
p.label_values("container")      # ["test1", "test2"]
```

## What it does not do

- There is only the SQLite backend. The byte keys in `profmeta.kv` are
  provided, but no store uses them.
- Stacktraces are not stored.
- There is no helper that joins stored locations with their mappings, lines
  and functions into `Location` records; combine `get_locations_by_ids`,
  `get_mappings_by_ids`, `get_lines_by_location_ids` and
  `get_functions_by_ids` as in the example above.
- There is no command-line tool and no server.

## Running the tests

```
pip install .[test]
pytest
```