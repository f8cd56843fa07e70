from __future__ import annotations

import bisect
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional, Tuple

from gse_tracker.errors import StorageError

log = logging.getLogger("kv_engine")

_SCAN_BATCH = 256


class KVEngine(ABC):
    """
    Ordered key-value engine contract (interface).

    Keys and values are raw bytes; keys order lexicographically by byte.
    Every put/delete is atomic on its own. There are no multi-key transactions.
    """

    @abstractmethod
    def put(self, key: bytes, value: bytes) -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, key: bytes) -> Optional[bytes]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: bytes) -> None:
        raise NotImplementedError

    @abstractmethod
    def scan(
        self,
        prefix: bytes,
        start: Optional[bytes] = None,
        reverse: bool = False,
    ) -> Iterator[Tuple[bytes, bytes]]:
        """
        Yield (key, value) for keys starting with `prefix`, in key order.

        forward: begins at the first key >= start (default: prefix)
        reverse: begins at the last key <= start (default: end of prefix range)
        """
        raise NotImplementedError

    def close(self) -> None:
        pass


def prefix_upper_bound(prefix: bytes) -> Optional[bytes]:
    """Smallest byte string greater than every key starting with `prefix` (None = unbounded)."""
    b = bytearray(prefix)
    while b and b[-1] == 0xFF:
        b.pop()
    if not b:
        return None
    b[-1] += 1
    return bytes(b)


class MemoryEngine(KVEngine):
    """
    In-process engine: sorted key list + dict.

    Used by tests and STORAGE_ENGINE=memory. Scans are lazy: each batch is
    re-seeked from the last key returned, so concurrent writers never
    invalidate a running scan and a scan never yields a key twice.
    """

    def __init__(self) -> None:
        self._keys: List[bytes] = []
        self._data: Dict[bytes, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key: bytes, value: bytes) -> None:
        key = bytes(key)
        with self._lock:
            if key not in self._data:
                bisect.insort(self._keys, key)
            self._data[key] = bytes(value)

    def get(self, key: bytes) -> Optional[bytes]:
        with self._lock:
            return self._data.get(bytes(key))

    def delete(self, key: bytes) -> None:
        key = bytes(key)
        with self._lock:
            if self._data.pop(key, None) is None:
                return
            i = bisect.bisect_left(self._keys, key)
            del self._keys[i]

    def scan(
        self,
        prefix: bytes,
        start: Optional[bytes] = None,
        reverse: bool = False,
    ) -> Iterator[Tuple[bytes, bytes]]:
        upper = prefix_upper_bound(prefix)
        last: Optional[bytes] = None

        while True:
            with self._lock:
                lo = bisect.bisect_left(self._keys, prefix)
                hi = len(self._keys) if upper is None else bisect.bisect_left(self._keys, upper)

                if reverse:
                    if last is not None:
                        hi = min(hi, bisect.bisect_left(self._keys, last))
                    elif start is not None:
                        hi = min(hi, bisect.bisect_right(self._keys, start))
                    lo = max(lo, hi - _SCAN_BATCH)
                    batch = self._keys[lo:hi][::-1]
                else:
                    if last is not None:
                        lo = max(lo, bisect.bisect_right(self._keys, last))
                    elif start is not None:
                        lo = max(lo, bisect.bisect_left(self._keys, start))
                    batch = self._keys[lo:min(hi, lo + _SCAN_BATCH)]

                rows = [(k, self._data[k]) for k in batch]

            if not rows:
                return
            yield from rows
            last = rows[-1][0]

    def __len__(self) -> int:
        return len(self._keys)


class RocksEngine(KVEngine):
    """
    RocksDB engine (via rocksdict) opened in raw bytes mode with LZ4 compression.
    """

    def __init__(self, path: str) -> None:
        from rocksdict import DBCompressionType, Options, Rdict

        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)

        opts = Options(raw_mode=True)
        opts.create_if_missing(True)
        opts.set_compression_type(DBCompressionType.lz4())

        try:
            self._db = Rdict(path, options=opts)
        except Exception as e:
            raise StorageError(f"Failed to open RocksDB at {path}: {e}") from e

        self.path = path
        log.info("RocksDB opened path=%s", path)

    def put(self, key: bytes, value: bytes) -> None:
        try:
            self._db.put(key, value)
        except Exception as e:
            raise StorageError(f"put failed key={key!r}: {e}") from e

    def get(self, key: bytes) -> Optional[bytes]:
        try:
            return self._db.get(key)
        except Exception as e:
            raise StorageError(f"get failed key={key!r}: {e}") from e

    def delete(self, key: bytes) -> None:
        try:
            self._db.delete(key)
        except Exception as e:
            raise StorageError(f"delete failed key={key!r}: {e}") from e

    def scan(
        self,
        prefix: bytes,
        start: Optional[bytes] = None,
        reverse: bool = False,
    ) -> Iterator[Tuple[bytes, bytes]]:
        try:
            it = self._db.iter()
            if reverse:
                seek = start if start is not None else prefix_upper_bound(prefix)
                if seek is None:
                    it.seek_to_last()
                else:
                    it.seek_for_prev(seek)
            else:
                it.seek(start if start is not None and start > prefix else prefix)

            while it.valid():
                key = it.key()
                if key.startswith(prefix):
                    yield key, it.value()
                elif not reverse or key < prefix:
                    break
                # reverse seeks may land on keys past the prefix range; keep stepping back
                if reverse:
                    it.prev()
                else:
                    it.next()
        except Exception as e:
            raise StorageError(f"scan failed prefix={prefix!r}: {e}") from e

    def close(self) -> None:
        try:
            self._db.close()
        except Exception as e:
            log.warning("RocksDB close failed path=%s error=%s", self.path, e)
