"""Profile metadata records: mappings, functions, locations and their lines."""

from __future__ import annotations

import posixpath
import uuid
from dataclasses import dataclass, field
from typing import Iterator, Optional

NIL_UUID = uuid.UUID(int=0)

_MASK64 = (1 << 64) - 1


class NotFoundError(LookupError):
    """Base class for lookups that found nothing."""

    default_message = "not found"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class StacktraceNotFoundError(NotFoundError):
    default_message = "stacktrace not found"


class LocationNotFoundError(NotFoundError):
    default_message = "location not found"


class MappingNotFoundError(NotFoundError):
    default_message = "mapping not found"


class FunctionNotFoundError(NotFoundError):
    default_message = "function not found"


# --- compact protobuf-style wire encoding -----------------------------------


def _varint(value: int) -> bytes:
    value &= _MASK64
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def _tag(number: int, wire_type: int) -> bytes:
    return _varint((number << 3) | wire_type)


def _field_int(number: int, value: int) -> bytes:
    if not value:
        return b""
    return _tag(number, 0) + _varint(value)


def _field_bool(number: int, value: bool) -> bytes:
    return _field_int(number, 1 if value else 0)


def _field_bytes(number: int, data: bytes, always: bool = False) -> bytes:
    if not data and not always:
        return b""
    return _tag(number, 2) + _varint(len(data)) + bytes(data)


def _field_str(number: int, value: str) -> bytes:
    return _field_bytes(number, value.encode("utf-8"))


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise ValueError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _MASK64, pos
        shift += 7
        if shift >= 70:
            raise ValueError("varint too long")


def _fields(data: bytes) -> Iterator[tuple[int, int, object]]:
    pos = 0
    while pos < len(data):
        key, pos = _read_varint(data, pos)
        number, wire_type = key >> 3, key & 0x7
        if wire_type == 0:
            value, pos = _read_varint(data, pos)
        elif wire_type == 2:
            length, pos = _read_varint(data, pos)
            if pos + length > len(data):
                raise ValueError("truncated length-delimited field")
            value = bytes(data[pos:pos + length])
            pos += length
        elif wire_type in (1, 5):
            size = 8 if wire_type == 1 else 4
            if pos + size > len(data):
                raise ValueError("truncated fixed-width field")
            value = bytes(data[pos:pos + size])
            pos += size
        else:
            raise ValueError(f"unsupported wire type {wire_type}")
        yield number, wire_type, value


def _signed(value: int) -> int:
    return value - (1 << 64) if value >= 1 << 63 else value


def _text(value: object) -> str:
    return bytes(value).decode("utf-8")  # type: ignore[arg-type]


# --- records ----------------------------------------------------------------


@dataclass
class Mapping:
    """A memory region of a binary."""

    id: bytes = b""
    start: int = 0
    limit: int = 0
    offset: int = 0
    file: str = ""
    build_id: str = ""
    has_functions: bool = False
    has_filenames: bool = False
    has_line_numbers: bool = False
    has_inline_frames: bool = False

    def to_bytes(self) -> bytes:
        return b"".join((
            _field_bytes(1, self.id),
            _field_int(2, self.start),
            _field_int(3, self.limit),
            _field_int(4, self.offset),
            _field_str(5, self.file),
            _field_str(6, self.build_id),
            _field_bool(7, self.has_functions),
            _field_bool(8, self.has_filenames),
            _field_bool(9, self.has_line_numbers),
            _field_bool(10, self.has_inline_frames),
        ))

    @classmethod
    def from_bytes(cls, data: bytes) -> "Mapping":
        m = cls()
        for number, _, value in _fields(data):
            if number == 1:
                m.id = bytes(value)  # type: ignore[arg-type]
            elif number == 2:
                m.start = value  # type: ignore[assignment]
            elif number == 3:
                m.limit = value  # type: ignore[assignment]
            elif number == 4:
                m.offset = value  # type: ignore[assignment]
            elif number == 5:
                m.file = _text(value)
            elif number == 6:
                m.build_id = _text(value)
            elif number == 7:
                m.has_functions = bool(value)
            elif number == 8:
                m.has_filenames = bool(value)
            elif number == 9:
                m.has_line_numbers = bool(value)
            elif number == 10:
                m.has_inline_frames = bool(value)
        return m


@dataclass
class Function:
    """A symbolized function."""

    id: bytes = b""
    start_line: int = 0
    name: str = ""
    system_name: str = ""
    filename: str = ""

    def to_bytes(self) -> bytes:
        return b"".join((
            _field_bytes(1, self.id),
            _field_int(2, self.start_line),
            _field_str(3, self.name),
            _field_str(4, self.system_name),
            _field_str(5, self.filename),
        ))

    @classmethod
    def from_bytes(cls, data: bytes) -> "Function":
        f = cls()
        for number, _, value in _fields(data):
            if number == 1:
                f.id = bytes(value)  # type: ignore[arg-type]
            elif number == 2:
                f.start_line = _signed(value)  # type: ignore[arg-type]
            elif number == 3:
                f.name = _text(value)
            elif number == 4:
                f.system_name = _text(value)
            elif number == 5:
                f.filename = _text(value)
        return f


@dataclass
class Line:
    """A stored source line, referring to its function by ID."""

    function_id: bytes = b""
    line: int = 0

    def _encode(self) -> bytes:
        return _field_bytes(1, self.function_id) + _field_int(2, self.line)

    @classmethod
    def _decode(cls, data: bytes) -> "Line":
        ln = cls()
        for number, _, value in _fields(data):
            if number == 1:
                ln.function_id = bytes(value)  # type: ignore[arg-type]
            elif number == 2:
                ln.line = _signed(value)  # type: ignore[arg-type]
        return ln


@dataclass
class LocationLines:
    """All lines attached to one location."""

    id: bytes = b""
    lines: list[Line] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        parts = [_field_bytes(1, self.id)]
        parts.extend(_field_bytes(2, ln._encode(), always=True) for ln in self.lines)
        return b"".join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> "LocationLines":
        ll = cls()
        for number, _, value in _fields(data):
            if number == 1:
                ll.id = bytes(value)  # type: ignore[arg-type]
            elif number == 2:
                ll.lines.append(Line._decode(value))  # type: ignore[arg-type]
        return ll


@dataclass
class StoredLocation:
    """A location as persisted: its mapping is referenced by ID."""

    id: bytes = b""
    address: int = 0
    mapping_id: bytes = b""
    is_folded: bool = False

    def to_bytes(self) -> bytes:
        return b"".join((
            _field_bytes(1, self.id),
            _field_int(2, self.address),
            _field_bytes(3, self.mapping_id),
            _field_bool(4, self.is_folded),
        ))

    @classmethod
    def from_bytes(cls, data: bytes) -> "StoredLocation":
        loc = cls()
        for number, _, value in _fields(data):
            if number == 1:
                loc.id = bytes(value)  # type: ignore[arg-type]
            elif number == 2:
                loc.address = value  # type: ignore[assignment]
            elif number == 3:
                loc.mapping_id = bytes(value)  # type: ignore[arg-type]
            elif number == 4:
                loc.is_folded = bool(value)
        return loc


@dataclass
class LocationLine:
    """A line of a resolved location, with its function."""

    line: int = 0
    function: Optional[Function] = None


@dataclass
class Location:
    """A resolved location with its mapping and lines."""

    id: uuid.UUID = NIL_UUID
    address: int = 0
    mapping: Optional[Mapping] = None
    lines: list[LocationLine] = field(default_factory=list)
    is_folded: bool = False


def _base_name(path: str) -> str:
    if path == "":
        return "."
    stripped = path.rstrip("/")
    if stripped == "":
        return "/"
    return posixpath.basename(stripped)


def unsymbolizable_mapping(m: Mapping) -> bool:
    """True if locations in the mapping cannot be symbolized, e.g. "[vdso]"."""
    name = _base_name(m.file)
    return (
        name.startswith("[")
        or name.startswith("linux-vdso")
        or m.file.startswith("/dev/dri/")
    )