"""A small bucketed cache of (process, file) pairs already reported as written."""

from __future__ import annotations

import struct
from collections import deque
from dataclasses import dataclass

_MASK = 0xFFFFFFFF
_JHASH_INITVAL = 0xDEADBEEF

FWC_MAX_BKT_SZ = 10
FWC_BUCKET_BITS = 7

# pid_t, ino_t, dev_t and u64 as laid out in memory, padding zeroed
_KEY = struct.Struct("<i4xQI4xQ")


def _rol(value: int, shift: int) -> int:
    return ((value << shift) | (value >> (32 - shift))) & _MASK


def _mix(a: int, b: int, c: int) -> tuple[int, int, int]:
    a = (a - c) & _MASK; a ^= _rol(c, 4); c = (c + b) & _MASK
    b = (b - a) & _MASK; b ^= _rol(a, 6); a = (a + c) & _MASK
    c = (c - b) & _MASK; c ^= _rol(b, 8); b = (b + a) & _MASK
    a = (a - c) & _MASK; a ^= _rol(c, 16); c = (c + b) & _MASK
    b = (b - a) & _MASK; b ^= _rol(a, 19); a = (a + c) & _MASK
    c = (c - b) & _MASK; c ^= _rol(b, 4); b = (b + a) & _MASK
    return a, b, c


def _final(a: int, b: int, c: int) -> int:
    c ^= b; c = (c - _rol(b, 14)) & _MASK
    a ^= c; a = (a - _rol(c, 11)) & _MASK
    b ^= a; b = (b - _rol(a, 25)) & _MASK
    c ^= b; c = (c - _rol(b, 16)) & _MASK
    a ^= c; a = (a - _rol(c, 4)) & _MASK
    b ^= a; b = (b - _rol(a, 14)) & _MASK
    c ^= b; c = (c - _rol(b, 24)) & _MASK
    return c


def jhash(data, initval: int = 0) -> int:
    """Bob Jenkins' lookup3 hash of ``data`` as a 32-bit integer."""
    key = bytes(data)
    length = len(key)
    a = b = c = (_JHASH_INITVAL + length + initval) & _MASK
    offset = 0
    while length - offset > 12:
        wa, wb, wc = struct.unpack_from("<III", key, offset)
        a, b, c = _mix((a + wa) & _MASK, (b + wb) & _MASK, (c + wc) & _MASK)
        offset += 12
    tail = key[offset:]
    if not tail:
        return c
    wa, wb, wc = struct.unpack("<III", tail.ljust(12, b"\0"))
    return _final((a + wa) & _MASK, (b + wb) & _MASK, (c + wc) & _MASK)


@dataclass
class _Entry:
    hash: int
    key: tuple[int, int, int, int]
    hits: int = 0


class FileWriteCache:
    """Remembers recent writes; each bucket keeps its newest entries only."""

    def __init__(self, bucket_bits: int = FWC_BUCKET_BITS,
                 max_bucket_size: int = FWC_MAX_BKT_SZ) -> None:
        self._buckets: list[deque[_Entry]] = [deque() for _ in range(1 << bucket_bits)]
        self._max_bucket_size = max_bucket_size
        self.enabled = True

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._buckets)

    def _locate(self, key: tuple[int, int, int, int]) -> tuple[int, deque[_Entry], _Entry | None]:
        hashed = jhash(_KEY.pack(*key))
        bucket = self._buckets[hashed & (len(self._buckets) - 1)]
        found = next(
            (entry for entry in bucket if entry.hash == hashed and entry.key == key),
            None,
        )
        return hashed, bucket, found

    def hits(self, tgid: int, inode: int, dev: int, time: int) -> int:
        """How often a cached entry was found again; 0 if it is not cached."""
        _, _, entry = self._locate((tgid, inode, dev, time))
        return entry.hits if entry else 0

    def entry_exists(self, tgid: int, inode: int, dev: int, time: int) -> bool:
        """True if the write was seen before (or the cache is off); otherwise remember it."""
        if not self.enabled:
            return True
        key = (tgid, inode, dev, time)
        hashed, bucket, entry = self._locate(key)
        if entry is not None:
            entry.hits += 1
            return True
        if len(bucket) >= self._max_bucket_size:
            bucket.pop()
        bucket.appendleft(_Entry(hashed, key))
        return False

    def shutdown(self) -> None:
        """Disable the cache and drop every entry."""
        self.enabled = False
        for bucket in self._buckets:
            bucket.clear()