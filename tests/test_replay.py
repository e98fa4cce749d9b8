import pytest

from phantom.crypto.replay import (
    MAX_SLICES,
    SLICE_DURATION,
    BloomFilter,
    ReplayGuard,
    ReplayStats,
)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def nonce(i: int) -> bytes:
    return i.to_bytes(12, "big")


def test_bloom_filter_remembers_added_items():
    bf = BloomFilter(1000, 0.01)
    items = [nonce(i) for i in range(200)]
    for item in items:
        bf.add(item)
    assert all(bf.test(item) for item in items)


def test_bloom_filter_empty_rejects():
    bf = BloomFilter(1000, 0.01)
    assert not any(bf.test(nonce(i)) for i in range(50))


def test_bloom_filter_false_positive_rate_is_low():
    bf = BloomFilter(1000, 0.01)
    for i in range(1000):
        bf.add(nonce(i))
    false_hits = sum(bf.test(nonce(i)) for i in range(10_000, 20_000))
    assert false_hits < 500


@pytest.mark.parametrize("items,rate", [(0, 0.01), (100, 0.0), (100, 1.0)])
def test_bloom_filter_rejects_bad_parameters(items, rate):
    with pytest.raises(ValueError):
        BloomFilter(items, rate)


def test_check_and_mark_detects_replay():
    guard = ReplayGuard(clock=FakeClock())
    assert guard.check_and_mark(nonce(1)) is True
    assert guard.check_and_mark(nonce(1)) is False
    assert guard.check_and_mark(nonce(2)) is True


def test_short_nonce_is_rejected():
    guard = ReplayGuard(clock=FakeClock())
    assert guard.check_and_mark(b"1234567") is False
    assert guard.check_only(b"1234567") is False


def test_check_only_does_not_mark():
    guard = ReplayGuard(clock=FakeClock())
    assert guard.check_only(nonce(5)) is True
    assert guard.check_only(nonce(5)) is True
    guard.mark(nonce(5))
    assert guard.check_only(nonce(5)) is False


def test_stats_count_checks_and_blocks():
    guard = ReplayGuard(clock=FakeClock())
    guard.check_and_mark(nonce(1))
    guard.check_and_mark(nonce(1))
    guard.check_and_mark(nonce(2))
    assert guard.stats() == ReplayStats(
        total_checks=3, replay_blocked=1, bloom_hits=0, exact_hits=1
    )


def test_check_only_does_not_touch_stats():
    guard = ReplayGuard(clock=FakeClock())
    guard.check_only(nonce(1))
    assert guard.stats().total_checks == 0


def test_nonce_still_rejected_after_rotation():
    clock = FakeClock()
    guard = ReplayGuard(clock=clock)
    guard.mark(nonce(9))
    clock.now += SLICE_DURATION * (MAX_SLICES + 2)
    for _ in range(MAX_SLICES):
        guard.rotate()
    # The exact cache outlives the Bloom slices.
    assert guard.check_only(nonce(9)) is False
    assert guard.check_only(nonce(10)) is True


def test_memory_usage_estimate():
    guard = ReplayGuard(clock=FakeClock())
    assert guard.memory_usage() == 240 * 1024 * 18 + 10000 * 82