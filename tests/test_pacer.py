import pytest

from phantom.congestion.pacer import INITIAL_PACING_GAIN, MIN_PACING_RATE, Pacer

RATE_100_MBPS = 100 * 1024 * 1024 / 8


class FakeClock:
    def __init__(self, now=500.0):
        self.now = now

    def __call__(self):
        return self.now


def drain(pacer, size=1200):
    sent = 0
    while pacer.can_send(size):
        pacer.on_packet_sent(size)
        sent += 1
    return sent


def test_pacer_cases_from_source():
    p = Pacer(RATE_100_MBPS, 1200)
    assert p.can_send(1200)
    drain(p)
    assert p.time_until_send(1200) >= 0
    assert p.pacing_interval(1200) > 0


def test_burst_is_ten_packets_with_frozen_clock():
    clock = FakeClock()
    p = Pacer(RATE_100_MBPS, 1200, clock=clock)
    assert drain(p) == 10
    assert not p.can_send(1200)
    assert p.time_until_send(1200) > 0
    assert p.stats()["packets_sent"] == 10


def test_time_until_send_zero_with_tokens():
    p = Pacer(RATE_100_MBPS, 1200, clock=FakeClock())
    assert p.time_until_send(1200) == 0


def test_tokens_refill_with_time():
    clock = FakeClock()
    p = Pacer(RATE_100_MBPS, 1200, clock=clock)
    drain(p)
    wait = p.time_until_send(1200)
    clock.now += wait * 1.01
    assert p.can_send(1200)


def test_tokens_never_exceed_bucket():
    clock = FakeClock()
    p = Pacer(RATE_100_MBPS, 1200, clock=clock)
    clock.now += 100
    p.can_send(1)
    stats = p.stats()
    assert stats["tokens"] == stats["max_tokens"]


def test_pacing_interval_uses_effective_rate():
    p = Pacer(RATE_100_MBPS, 1200)
    assert p.pacing_interval(1200) == pytest.approx(1200 / p.pacing_rate)
    assert p.pacing_interval(1200) < 0.01


def test_pacing_rate_includes_gain():
    p = Pacer(RATE_100_MBPS, 1200)
    assert p.pacing_rate == pytest.approx(RATE_100_MBPS * INITIAL_PACING_GAIN)
    p.set_pacing_gain(1.0)
    assert p.pacing_rate == pytest.approx(RATE_100_MBPS)


def test_set_pacing_rate_clamps_to_minimum():
    p = Pacer(RATE_100_MBPS, 1200)
    p.set_pacing_gain(1.0)
    p.set_pacing_rate(1)
    assert p.pacing_rate == MIN_PACING_RATE


def test_set_pacing_rate_clamps_to_maximum():
    p = Pacer(RATE_100_MBPS, 1200)
    p.set_pacing_gain(1.0)
    p.set_max_rate(RATE_100_MBPS)
    p.set_pacing_rate(RATE_100_MBPS * 10)
    assert p.pacing_rate == pytest.approx(RATE_100_MBPS)


def test_zero_rate_interval_falls_back():
    p = Pacer(RATE_100_MBPS, 1200)
    p.set_pacing_gain(0.0)
    assert p.pacing_interval(1200) == 0.001


def test_set_burst_allowed_resizes_bucket():
    p = Pacer(RATE_100_MBPS, 1200, clock=FakeClock())
    p.set_burst_allowed(2)
    assert p.stats()["max_tokens"] == 2 * 1200
    assert drain(p) == 2


def test_non_positive_mtu_uses_default():
    p = Pacer(RATE_100_MBPS, 0, clock=FakeClock())
    assert p.stats()["max_tokens"] == 1200 * 10


def test_reset_refills_and_restores_gain():
    clock = FakeClock()
    p = Pacer(RATE_100_MBPS, 1200, clock=clock)
    p.set_pacing_gain(1.0)
    drain(p)
    p.reset()
    stats = p.stats()
    assert stats["tokens"] == stats["max_tokens"]
    assert stats["packets_sent"] == 0
    assert stats["pacing_gain"] == INITIAL_PACING_GAIN


def test_stats_rates_in_mbps():
    p = Pacer(RATE_100_MBPS, 1200)
    stats = p.stats()
    assert stats["pacing_rate_mbps"] == pytest.approx(100)
    assert stats["effective_rate_mbps"] == pytest.approx(100 * INITIAL_PACING_GAIN)