"""Structured lookup keys used by the SQL metadata store and its cache."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from .models import NIL_UUID, Function, Location, Mapping

_MASK64 = (1 << 64) - 1
_MAPSIZE_ROUNDING = 0x1000


@dataclass(frozen=True)
class MappingKey:
    size: int = 0
    offset: int = 0
    build_id_or_file: str = ""


@dataclass(frozen=True)
class FunctionKey:
    start_line: int = 0
    name: str = ""
    system_name: str = ""
    filename: str = ""


@dataclass(frozen=True)
class LocationKey:
    normalized_address: int = 0
    mapping_id: uuid.UUID = NIL_UUID
    lines: str = ""
    is_folded: bool = False


def make_sql_mapping_key(m: Mapping) -> MappingKey:
    """Key by size rounded up to 4K, offset, and build ID (else file)."""
    size = (m.limit - m.start) & _MASK64
    size = (size + _MAPSIZE_ROUNDING - 1) & _MASK64
    size -= size % _MAPSIZE_ROUNDING
    return MappingKey(size=size, offset=m.offset, build_id_or_file=m.build_id or m.file or "")


def make_sql_function_key(f: Function) -> FunctionKey:
    return FunctionKey(f.start_line, f.name, f.system_name, f.filename)


def make_sql_location_key(l: Location) -> LocationKey:
    """Key by normalized address, mapping, folding, and lines when there is no address.

    Raises ValueError if a mapping or function ID is not a 16-byte UUID.
    """
    normalized = l.address
    mapping_id = NIL_UUID
    if l.mapping is not None:
        normalized = (normalized - l.mapping.start) & _MASK64
        mapping_id = uuid.UUID(bytes=bytes(l.mapping.id))

    lines = ""
    if normalized == 0:
        parts: list[str] = []
        for line in l.lines:
            parts.append(
                str(uuid.UUID(bytes=bytes(line.function.id))) if line.function is not None else ""
            )
            parts.append(format(line.line, "x"))
        lines = "|".join(parts)

    return LocationKey(
        normalized_address=normalized,
        mapping_id=mapping_id,
        lines=lines,
        is_folded=l.is_folded,
    )