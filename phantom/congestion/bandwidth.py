"""Bottleneck bandwidth estimation from delivery rate samples."""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, NamedTuple, Optional

BANDWIDTH_WINDOW_SIZE = 10
BANDWIDTH_WINDOW_TIME = 10.0
MIN_BANDWIDTH_SAMPLES = 3
BANDWIDTH_FILTER_LENGTH = 10


def _mbps_to_bytes_per_second(mbps: int) -> float:
    return float(mbps) * 1024 * 1024 / 8


def _bytes_per_second_to_mbps(rate: float) -> float:
    return rate * 8 / 1024 / 1024


class _Sample(NamedTuple):
    bandwidth: float
    rtt: float
    app_limited: bool
    timestamp: float
    delivered: int


class BandwidthEstimator:
    """Estimates bandwidth in bytes/s; times are in seconds."""

    def __init__(self, max_mbps: int, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._max_configured = _mbps_to_bytes_per_second(max_mbps)
        self._samples: deque[_Sample] = deque(maxlen=BANDWIDTH_WINDOW_SIZE)
        self._app_limited_seq = 0
        self._clear()

    def _clear(self) -> None:
        self._samples.clear()
        self._max_bandwidth = 0.0
        self._curr_bandwidth = 0.0
        self._avg_bandwidth = 0.0
        self._delivered_bytes = 0
        self._delivered_time = self._clock()
        self._last_delivered = 0
        self._last_delivered_at: Optional[float] = None
        self._app_limited = False
        self._sample_count = 0

    def on_packet_delivered(
        self,
        delivered_bytes: int,
        delivered_time: float,
        sent_time: float,
        rtt: float,
        app_limited: bool,
    ) -> None:
        """Record the cumulative delivered byte count after an acknowledgement."""
        with self._lock:
            now = self._clock()
            if self._last_delivered_at is None:
                self._last_delivered_at = now
                self._last_delivered = delivered_bytes
                return

            time_delta = now - self._last_delivered_at
            if time_delta <= 0:
                return
            bytes_delta = delivered_bytes - self._last_delivered
            if bytes_delta <= 0:
                return

            self._samples.append(
                _Sample(
                    bandwidth=bytes_delta / time_delta,
                    rtt=rtt,
                    app_limited=app_limited,
                    timestamp=now,
                    delivered=delivered_bytes,
                )
            )
            self._last_delivered = delivered_bytes
            self._last_delivered_at = now
            self._sample_count += 1
            self._update_estimate(now)

    def _update_estimate(self, now: float) -> None:
        valid = [
            s.bandwidth
            for s in self._samples
            if now - s.timestamp <= BANDWIDTH_WINDOW_TIME and not s.app_limited
        ]
        if valid:
            self._avg_bandwidth = sum(valid) / len(valid)
            peak = max(valid)
            if peak > 0:
                self._max_bandwidth = peak
        self._curr_bandwidth = self._max_bandwidth

    @property
    def bandwidth(self) -> float:
        """Estimated bottleneck bandwidth, or the configured maximum before any sample."""
        with self._lock:
            return self._max_bandwidth if self._max_bandwidth > 0 else self._max_configured

    @property
    def avg_bandwidth(self) -> float:
        with self._lock:
            return self._avg_bandwidth

    @property
    def max_configured(self) -> float:
        with self._lock:
            return self._max_configured

    def set_max_configured(self, max_mbps: int) -> None:
        with self._lock:
            self._max_configured = _mbps_to_bytes_per_second(max_mbps)

    def set_app_limited(self, limited: bool, seq: int) -> None:
        with self._lock:
            self._app_limited = limited
            if limited:
                self._app_limited_seq = seq

    @property
    def app_limited(self) -> bool:
        with self._lock:
            return self._app_limited

    @property
    def delivered(self) -> int:
        with self._lock:
            return self._delivered_bytes

    def add_delivered(self, nbytes: int) -> None:
        with self._lock:
            self._delivered_bytes += nbytes
            self._delivered_time = self._clock()

    def reset(self) -> None:
        with self._lock:
            self._clear()

    def stats(self) -> dict[str, object]:
        with self._lock:
            return {
                "max_bandwidth_mbps": _bytes_per_second_to_mbps(self._max_bandwidth),
                "avg_bandwidth_mbps": _bytes_per_second_to_mbps(self._avg_bandwidth),
                "max_configured_mbps": _bytes_per_second_to_mbps(self._max_configured),
                "sample_count": self._sample_count,
                "app_limited": self._app_limited,
                "delivered_bytes": self._delivered_bytes,
            }