"""Replay protection using time-sliced Bloom filters backed by an exact recent-nonce cache."""

from __future__ import annotations

import hashlib
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

BLOOM_EXPECTED_ITEMS = 100_000
BLOOM_FALSE_POSITIVE = 0.0001

SLICE_DURATION = 10.0
MAX_SLICES = 18

EXACT_CACHE_SIZE = 10_000

_MIN_NONCE_SIZE = 8
_FNV_OFFSET = 14695981039346656037
_FNV_PRIME = 1099511628211
_U64_MASK = 0xFFFFFFFFFFFFFFFF

_BLOOM_BYTES_ESTIMATE = 240 * 1024
_CACHE_ENTRY_ESTIMATE = 82


class BloomFilter:
    """Fixed-size Bloom filter sized for an expected item count and false-positive rate."""

    def __init__(self, expected_items: int, false_positive_rate: float) -> None:
        if expected_items < 1:
            raise ValueError("expected_items must be at least 1")
        if not 0 < false_positive_rate < 1:
            raise ValueError("false_positive_rate must be between 0 and 1")
        ln2 = math.log(2)
        bits = math.ceil(-expected_items * math.log(false_positive_rate) / (ln2 * ln2))
        self.size_bits = max(1, bits)
        self.hash_count = max(1, round(self.size_bits / expected_items * ln2))
        self._bits = bytearray((self.size_bits + 7) // 8)

    def _positions(self, data: bytes) -> Iterator[int]:
        digest = hashlib.blake2b(bytes(data), digest_size=16).digest()
        h1 = int.from_bytes(digest[:8], "big")
        h2 = int.from_bytes(digest[8:], "big") | 1
        return ((h1 + i * h2) % self.size_bits for i in range(self.hash_count))

    def add(self, data: bytes) -> None:
        for pos in self._positions(data):
            self._bits[pos >> 3] |= 1 << (pos & 7)

    def test(self, data: bytes) -> bool:
        """True if ``data`` may have been added; False if it certainly was not."""
        return all(self._bits[pos >> 3] & (1 << (pos & 7)) for pos in self._positions(data))


@dataclass(frozen=True)
class ReplayStats:
    total_checks: int = 0
    replay_blocked: int = 0
    bloom_hits: int = 0
    exact_hits: int = 0


class _TimeSlice:
    def __init__(self, start_time: float) -> None:
        self.start_time = start_time
        self.count = 0
        self._bloom: Optional[BloomFilter] = None

    def add(self, nonce: bytes) -> None:
        if self._bloom is None:
            self._bloom = BloomFilter(BLOOM_EXPECTED_ITEMS, BLOOM_FALSE_POSITIVE)
        self._bloom.add(nonce)
        self.count += 1

    def test(self, nonce: bytes) -> bool:
        return self._bloom is not None and self._bloom.test(nonce)


class _RecentCache:
    """Bounded set of nonce hashes; the oldest insertion is evicted first."""

    def __init__(self, capacity: int, clock: Callable[[], float]) -> None:
        self._capacity = capacity
        self._clock = clock
        self._items: dict[int, float] = {}
        self._order: deque[int] = deque()

    def add(self, key: int) -> None:
        if key in self._items:
            self._items[key] = self._clock()
            return
        if len(self._items) >= self._capacity:
            oldest = self._order.popleft()
            del self._items[oldest]
        self._items[key] = self._clock()
        self._order.append(key)

    def __contains__(self, key: int) -> bool:
        return key in self._items


def _hash_nonce(nonce: bytes) -> int:
    h = _FNV_OFFSET
    for b in nonce:
        h ^= b
        h = (h * _FNV_PRIME) & _U64_MASK
    return h


class ReplayGuard:
    """Remembers nonces for about three minutes and rejects any seen again.

    Slices rotate every ``SLICE_DURATION`` seconds of the given clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        now = clock()
        self._slices = [_TimeSlice(now - i * SLICE_DURATION) for i in range(MAX_SLICES)]
        self._current_idx = 0
        self._last_rotation = now
        self._cache = _RecentCache(EXACT_CACHE_SIZE, clock)
        self._total_checks = 0
        self._replay_blocked = 0
        self._bloom_hits = 0
        self._exact_hits = 0

    def _advance(self) -> None:
        elapsed = self._clock() - self._last_rotation
        steps = int(elapsed // SLICE_DURATION)
        if steps <= 0:
            return
        for _ in range(min(steps, MAX_SLICES)):
            self.rotate()
        self._last_rotation += steps * SLICE_DURATION

    def _in_blooms(self, nonce: bytes) -> bool:
        return any(s.test(nonce) for s in self._slices)

    def _mark(self, nonce: bytes, nonce_hash: int) -> None:
        self._slices[self._current_idx % MAX_SLICES].add(nonce)
        self._cache.add(nonce_hash)

    def check_and_mark(self, nonce: bytes) -> bool:
        """Return True and remember ``nonce`` if it is new; False if it is a replay."""
        if len(nonce) < _MIN_NONCE_SIZE:
            return False
        nonce = bytes(nonce)
        with self._lock:
            self._advance()
            self._total_checks += 1
            nonce_hash = _hash_nonce(nonce)
            if nonce_hash in self._cache:
                self._exact_hits += 1
                self._replay_blocked += 1
                return False
            if self._in_blooms(nonce):
                # A Bloom hit may be a false positive; it is treated as a replay.
                self._bloom_hits += 1
                self._replay_blocked += 1
                return False
            self._mark(nonce, nonce_hash)
            return True

    def check_only(self, nonce: bytes) -> bool:
        """True if ``nonce`` has not been seen; nothing is recorded."""
        if len(nonce) < _MIN_NONCE_SIZE:
            return False
        nonce = bytes(nonce)
        with self._lock:
            self._advance()
            if _hash_nonce(nonce) in self._cache:
                return False
            return not self._in_blooms(nonce)

    def mark(self, nonce: bytes) -> None:
        """Record ``nonce`` as seen."""
        if len(nonce) < _MIN_NONCE_SIZE:
            return
        nonce = bytes(nonce)
        with self._lock:
            self._advance()
            self._mark(nonce, _hash_nonce(nonce))

    def rotate(self) -> None:
        """Move to the next slice, discarding the oldest one."""
        with self._lock:
            self._current_idx += 1
            self._slices[self._current_idx % MAX_SLICES] = _TimeSlice(self._clock())

    def stats(self) -> ReplayStats:
        with self._lock:
            return ReplayStats(
                total_checks=self._total_checks,
                replay_blocked=self._replay_blocked,
                bloom_hits=self._bloom_hits,
                exact_hits=self._exact_hits,
            )

    def memory_usage(self) -> int:
        """Estimated memory footprint in bytes."""
        return _BLOOM_BYTES_ESTIMATE * MAX_SLICES + EXACT_CACHE_SIZE * _CACHE_ENTRY_ESTIMATE