"""Round-trip time estimation following RFC 6298. All durations are in seconds."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, NamedTuple

RTT_ALPHA = 0.125
RTT_BETA = 0.25
DEFAULT_INIT_RTT = 0.1
MIN_RTT_WINDOW = 10.0
RTT_SAMPLE_SIZE = 50

_MIN_RTO = 0.1
_MAX_RTO = 60.0
_CLOCK_GRANULARITY = 0.001


class _Sample(NamedTuple):
    rtt: float
    timestamp: float


class RTTEstimator:
    """Tracks smoothed, minimum, latest and maximum RTT and derives the RTO."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._min_rtt_window = MIN_RTT_WINDOW
        self._samples: deque[_Sample] = deque(maxlen=RTT_SAMPLE_SIZE)
        self._clear()

    def _clear(self) -> None:
        self._smoothed_rtt = DEFAULT_INIT_RTT
        self._rtt_variance = DEFAULT_INIT_RTT / 2
        self._min_rtt = 0.0
        self._latest_rtt = 0.0
        self._max_rtt = 0.0
        self._min_rtt_timestamp = 0.0
        self._samples.clear()
        self._total_samples = 0
        self._sum_rtt = 0.0
        self._initialized = False

    def update(self, rtt_sample: float, ack_delay: float = 0.0) -> None:
        """Feed one RTT sample, optionally reduced by the peer's ACK delay."""
        if rtt_sample <= 0:
            return
        with self._lock:
            now = self._clock()
            adjusted = rtt_sample
            if ack_delay > 0 and rtt_sample > ack_delay:
                adjusted = rtt_sample - ack_delay

            self._latest_rtt = adjusted
            self._total_samples += 1
            self._sum_rtt += adjusted
            self._samples.append(_Sample(adjusted, now))

            if self._min_rtt == 0 or adjusted < self._min_rtt:
                self._min_rtt = adjusted
                self._min_rtt_timestamp = now
            elif now - self._min_rtt_timestamp > self._min_rtt_window:
                self._min_rtt = self._min_rtt_in_window(now)
                self._min_rtt_timestamp = now

            self._max_rtt = max(self._max_rtt, adjusted)

            if not self._initialized:
                self._smoothed_rtt = adjusted
                self._rtt_variance = adjusted / 2
                self._initialized = True
            else:
                diff = abs(self._smoothed_rtt - adjusted)
                self._rtt_variance = self._rtt_variance * (1 - RTT_BETA) + diff * RTT_BETA
                self._smoothed_rtt = self._smoothed_rtt * (1 - RTT_ALPHA) + adjusted * RTT_ALPHA

    def _min_rtt_in_window(self, now: float) -> float:
        recent = [s.rtt for s in self._samples if now - s.timestamp <= self._min_rtt_window]
        return min(recent) if recent else self._smoothed_rtt

    @property
    def smoothed_rtt(self) -> float:
        with self._lock:
            return self._smoothed_rtt

    @property
    def min_rtt(self) -> float:
        """Minimum RTT, or the smoothed RTT before any sample arrived."""
        with self._lock:
            return self._min_rtt if self._min_rtt else self._smoothed_rtt

    @property
    def latest_rtt(self) -> float:
        with self._lock:
            return self._latest_rtt

    @property
    def rtt_variance(self) -> float:
        with self._lock:
            return self._rtt_variance

    @property
    def max_rtt(self) -> float:
        with self._lock:
            return self._max_rtt

    @property
    def average_rtt(self) -> float:
        with self._lock:
            if self._total_samples == 0:
                return self._smoothed_rtt
            return self._sum_rtt / self._total_samples

    @property
    def rto(self) -> float:
        """Retransmission timeout, clamped to [100 ms, 60 s]."""
        with self._lock:
            rto = self._smoothed_rtt + 4 * self._rtt_variance
            rto = max(rto, self._smoothed_rtt + _CLOCK_GRANULARITY)
            return min(max(rto, _MIN_RTO), _MAX_RTO)

    @property
    def initialized(self) -> bool:
        with self._lock:
            return self._initialized

    def reset(self) -> None:
        with self._lock:
            self._clear()

    def stats(self) -> dict[str, object]:
        with self._lock:
            return {
                "srtt_ms": int(self._smoothed_rtt * 1000),
                "min_rtt_ms": int(self._min_rtt * 1000),
                "latest_rtt_ms": int(self._latest_rtt * 1000),
                "max_rtt_ms": int(self._max_rtt * 1000),
                "rtt_var_ms": int(self._rtt_variance * 1000),
                "rto_ms": int(self.rto * 1000),
                "total_samples": self._total_samples,
                "initialized": self._initialized,
            }