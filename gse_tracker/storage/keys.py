"""
Composite storage keys.

Layout (UTF-8):
    {namespace}:{symbol}:{kind}:{timestamp}
    {namespace}:{kind}:{timestamp}          (no symbol partition, e.g. market summaries)

The timestamp is always TS_WIDTH zero-padded decimal digits, so inside one
(namespace, symbol, kind) partition byte order == numeric timestamp order,
including across digit rollovers (999999999 -> 1000000000).

":" is reserved as the separator and can never appear inside a field, which is
what keeps the partition prefix for "AB" from matching keys of "ABC".
"""

from __future__ import annotations

from typing import NamedTuple, Optional

from gse_tracker.errors import MalformedKey

SEP = ":"
TS_WIDTH = 20
MAX_TIMESTAMP = 10**TS_WIDTH - 1

# First byte after SEP; used as an exclusive upper bound for a symbol's key range.
_SEP_SUCCESSOR = chr(ord(SEP) + 1)


class StorageKey(NamedTuple):
    namespace: str
    symbol: Optional[str]
    kind: str
    timestamp: int


def _check_field(name: str, value: str) -> None:
    if not value:
        raise ValueError(f"{name} must not be empty")
    if SEP in value:
        raise ValueError(f"{name}={value!r} contains reserved separator {SEP!r}")


def _head(namespace: str, symbol: Optional[str], kind: str) -> str:
    _check_field("namespace", namespace)
    _check_field("kind", kind)
    if symbol is None:
        return f"{namespace}{SEP}{kind}{SEP}"
    _check_field("symbol", symbol)
    return f"{namespace}{SEP}{symbol}{SEP}{kind}{SEP}"


def encode_timestamp(timestamp: int) -> str:
    if timestamp < 0 or timestamp > MAX_TIMESTAMP:
        raise ValueError(f"timestamp {timestamp} outside [0, {MAX_TIMESTAMP}]")
    return f"{timestamp:0{TS_WIDTH}d}"


def encode(namespace: str, symbol: Optional[str], kind: str, timestamp: int) -> bytes:
    """Build the full key for one snapshot."""
    return (_head(namespace, symbol, kind) + encode_timestamp(int(timestamp))).encode("utf-8")


def partition_prefix(namespace: str, symbol: Optional[str], kind: str) -> bytes:
    """Prefix matching exactly the keys of one (namespace, symbol, kind) partition."""
    return _head(namespace, symbol, kind).encode("utf-8")


def namespace_prefix(namespace: str) -> bytes:
    _check_field("namespace", namespace)
    return f"{namespace}{SEP}".encode("utf-8")


def symbol_range_end(namespace: str, symbol: str) -> bytes:
    """
    Smallest key strictly greater than every key of `symbol` in `namespace`.
    Seeking here skips the symbol's whole key range in one step.
    """
    _check_field("namespace", namespace)
    _check_field("symbol", symbol)
    return f"{namespace}{SEP}{symbol}{_SEP_SUCCESSOR}".encode("utf-8")


def decode(key: bytes) -> StorageKey:
    """
    Parse a key produced by encode().
    Raises MalformedKey if the field count or timestamp format does not match.
    """
    try:
        text = bytes(key).decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedKey(key, f"not utf-8: {e}") from e

    parts = text.split(SEP)
    if len(parts) == 4:
        namespace, symbol, kind, ts_raw = parts
    elif len(parts) == 3:
        namespace, kind, ts_raw = parts
        symbol = None
    else:
        raise MalformedKey(key, f"expected 3 or 4 fields, got {len(parts)}")

    if not namespace or not kind or symbol == "":
        raise MalformedKey(key, "empty field")
    if len(ts_raw) != TS_WIDTH or not ts_raw.isdigit() or not ts_raw.isascii():
        raise MalformedKey(key, f"timestamp field {ts_raw!r} is not {TS_WIDTH} digits")

    return StorageKey(namespace=namespace, symbol=symbol, kind=kind, timestamp=int(ts_raw))
