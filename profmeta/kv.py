"""Binary lookup keys for the key-value metadata store."""

from __future__ import annotations

from .models import Function, Location, Mapping

STACKTRACE_ID_PREFIX = b"v1/stacktrace/by-id/"
LOCATIONS_KEY_PREFIX = b"v1/locations/by-key/"
FUNCTION_KEY_PREFIX = b"v1/functions/by-key/"
MAPPING_KEY_PREFIX = b"v1/mappings/by-key/"

_MASK64 = (1 << 64) - 1
_MAPSIZE_ROUNDING = 0x1000


def _u64(value: int) -> bytes:
    return (value & _MASK64).to_bytes(8, "big")


def _copy_into(buf: bytearray, offset: int, data: bytes) -> None:
    n = min(len(buf) - offset, len(data))
    if n > 0:
        buf[offset:offset + n] = data[:n]


def make_location_key(l: Location) -> bytes:
    """Key identifying a location by mapping, normalized address and, if needed, lines."""
    normalized = l.address
    if l.mapping is not None:
        # Normalizes the address to handle address space randomization.
        normalized = (normalized - l.mapping.start) & _MASK64

    lines_length = len(l.lines) * (16 + 8) if normalized == 0 else 0
    p = len(LOCATIONS_KEY_PREFIX)
    buf = bytearray(p + 16 + 8 + 8 + lines_length)
    buf[:p] = LOCATIONS_KEY_PREFIX
    if l.mapping is not None:
        _copy_into(buf, p, l.mapping.id)
    buf[p + 16:p + 24] = _u64(normalized)
    if l.is_folded:
        buf[p + 24:p + 32] = _u64(1)

    # Without an address the functions are the only uniqueness factor, as is
    # the case for interpreted runtimes.
    if normalized == 0:
        for i, line in enumerate(l.lines):
            if line.function is None:
                raise ValueError("location line has no function")
            base = p + 32 + 24 * i
            _copy_into(buf, base, line.function.id)
            buf[base + 8:base + 16] = _u64(line.line)
    return bytes(buf)


def make_function_key(f: Function) -> bytes:
    """Key identifying a function by start line, names and file."""
    return b"".join((
        FUNCTION_KEY_PREFIX,
        _u64(f.start_line),
        f.name.encode("utf-8"),
        f.system_name.encode("utf-8"),
        f.filename.encode("utf-8"),
    ))


def _rounded_size(m: Mapping) -> int:
    size = (m.limit - m.start) & _MASK64
    size = (size + _MAPSIZE_ROUNDING - 1) & _MASK64
    return size - (size % _MAPSIZE_ROUNDING)


def make_mapping_key(m: Mapping) -> bytes:
    """Key identifying a mapping by rounded size, offset and build ID or file."""
    # Build ID takes precedence over the file name; neither means a fake mapping.
    build_id_or_file = m.build_id or m.file or ""
    return b"".join((
        MAPPING_KEY_PREFIX,
        _u64(_rounded_size(m)),
        _u64(m.offset),
        build_id_or_file.encode("utf-8"),
    ))