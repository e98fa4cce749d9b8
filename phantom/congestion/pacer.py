"""Token-bucket pacing of outgoing packets to avoid bursts."""

from __future__ import annotations

import threading
import time
from typing import Callable

DEFAULT_MTU = 1200
PACING_GAIN_CYCLE = 8
INITIAL_PACING_GAIN = 2.0
STEADY_PACING_GAIN = 1.0
MIN_PACING_RATE = 100 * 1024
MAX_BURST_PACKETS = 10


class Pacer:
    """Send-rate controller. Rates are in bytes/s, durations in seconds."""

    def __init__(
        self,
        initial_rate: float,
        mtu: int = DEFAULT_MTU,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if mtu <= 0:
            mtu = DEFAULT_MTU
        self._clock = clock
        self._lock = threading.Lock()
        self._pacing_rate = float(initial_rate)
        self._pacing_gain = INITIAL_PACING_GAIN
        self._max_tokens = float(mtu * MAX_BURST_PACKETS)
        self._tokens = self._max_tokens
        self._last_refill = clock()
        self._burst_tokens = 0
        self._burst_size = mtu * MAX_BURST_PACKETS
        self._mtu = mtu
        self._max_rate = initial_rate * 2
        self._packets_sent = 0
        self._bytes_throttled = 0

    def set_pacing_rate(self, rate: float) -> None:
        """Set the base rate, clamped between the minimum rate and the maximum rate."""
        with self._lock:
            rate = max(rate, MIN_PACING_RATE)
            rate = min(rate, self._max_rate)
            self._pacing_rate = rate

    def set_max_rate(self, rate: float) -> None:
        with self._lock:
            self._max_rate = rate

    def set_pacing_gain(self, gain: float) -> None:
        with self._lock:
            self._pacing_gain = gain

    @property
    def pacing_rate(self) -> float:
        """Effective rate: base rate times gain."""
        with self._lock:
            return self._pacing_rate * self._pacing_gain

    def time_until_send(self, packet_size: int) -> float:
        """Seconds to wait before a packet of this size may go out."""
        with self._lock:
            self._refill()
            if self._tokens >= packet_size:
                return 0.0
            needed = packet_size - self._tokens
            rate = self._pacing_rate * self._pacing_gain
            if rate <= 0:
                rate = MIN_PACING_RATE
            return needed / rate

    def on_packet_sent(self, packet_size: int) -> None:
        with self._lock:
            self._refill()
            self._tokens = max(self._tokens - packet_size, 0.0)
            self._packets_sent += 1

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self._last_refill = now
        if elapsed <= 0:
            return
        rate = self._pacing_rate * self._pacing_gain
        self._tokens = min(self._tokens + rate * elapsed, self._max_tokens)

    def pacing_interval(self, packet_size: int) -> float:
        """Spacing between packets of this size at the effective rate."""
        with self._lock:
            rate = self._pacing_rate * self._pacing_gain
            if rate <= 0:
                return 0.001
            return packet_size / rate

    def can_send(self, packet_size: int) -> bool:
        with self._lock:
            self._refill()
            return self._tokens >= packet_size

    def set_burst_allowed(self, packets: int) -> None:
        """Resize the bucket to hold this many MTU-sized packets and fill it."""
        with self._lock:
            self._burst_tokens = packets
            self._burst_size = packets * self._mtu
            self._max_tokens = float(self._burst_size)
            self._tokens = self._max_tokens

    def reset(self) -> None:
        with self._lock:
            self._tokens = self._max_tokens
            self._last_refill = self._clock()
            self._packets_sent = 0
            self._bytes_throttled = 0
            self._pacing_gain = INITIAL_PACING_GAIN

    def stats(self) -> dict[str, object]:
        with self._lock:
            return {
                "pacing_rate_mbps": self._pacing_rate * 8 / 1024 / 1024,
                "pacing_gain": self._pacing_gain,
                "effective_rate_mbps": self._pacing_rate * self._pacing_gain * 8 / 1024 / 1024,
                "tokens": self._tokens,
                "max_tokens": self._max_tokens,
                "packets_sent": self._packets_sent,
            }