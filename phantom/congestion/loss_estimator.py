"""Packet loss rate estimation combining EWMAs, sliding windows and burst detection."""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, NamedTuple

EWMA_ALPHA = 0.125
EWMA_BETA = 0.25
EWMA_GAMMA = 0.0625

SHORT_WINDOW_SIZE = 50
MEDIUM_WINDOW_SIZE = 200
LONG_WINDOW_SIZE = 1000

DECAY_INTERVAL = 0.1
HALF_LIFE_MS = 500.0

BURST_THRESHOLD = 0.3
BURST_DECAY_FACTOR = 0.8

STABILITY_WINDOW = 10
STABILITY_THRESHOLD = 0.02

_BURST_DETECTOR_WINDOW = 20
_EVENT_HISTORY_LIMIT = 2000
_EVENT_HISTORY_KEEP = 1000
_EVENT_MAX_AGE = 5.0


@dataclass(frozen=True)
class LossStats:
    """Snapshot of a loss estimator."""

    smoothed_loss: float
    instant_loss: float
    trend_loss: float
    ewma_short: float
    ewma_medium: float
    ewma_long: float
    short_window: float
    medium_window: float
    long_window: float
    confidence: float
    sample_count: int
    total_sent: int
    total_lost: int
    in_burst: bool
    burst_intensity: float


class _Event(NamedTuple):
    timestamp: float
    is_loss: bool
    nbytes: int
    rtt: float


class SlidingWindow:
    """Loss rate over the last ``size`` ack/loss outcomes."""

    def __init__(self, size: int) -> None:
        self.size = size
        self._events: deque[bool] = deque(maxlen=size)
        self._loss_count = 0

    def add(self, is_loss: bool) -> None:
        if len(self._events) == self.size and self._events[0]:
            self._loss_count -= 1
        self._events.append(is_loss)
        if is_loss:
            self._loss_count += 1

    @property
    def loss_rate(self) -> float:
        if not self._events:
            return 0.0
        return self._loss_count / len(self._events)


class BurstDetector:
    """Detects bursts of losses packed into a short interval."""

    def __init__(self, window_size: int) -> None:
        self.window_size = window_size
        self._recent_losses: list[float] = []
        self._burst_start = 0.0
        self.in_burst = False
        self.burst_intensity = 0.0

    def on_loss(self, t: float) -> None:
        """Register a loss at time ``t`` (seconds)."""
        cutoff = t - 0.5
        self._recent_losses = [lt for lt in self._recent_losses if lt > cutoff]
        self._recent_losses.append(t)

        if len(self._recent_losses) >= self.window_size // 2:
            if not self.in_burst:
                self.in_burst = True
                self._burst_start = t
            self.burst_intensity = len(self._recent_losses) / self.window_size
        elif self.in_burst and t - self._burst_start > 1.0:
            self.in_burst = False
            self.burst_intensity = 0.0


class LossEstimator:
    """Smoothed loss-rate estimator with a confidence measure."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._clear()

    def _clear(self) -> None:
        self._ewma_short = 0.0
        self._ewma_medium = 0.0
        self._ewma_long = 0.0
        self._short_window = SlidingWindow(SHORT_WINDOW_SIZE)
        self._medium_window = SlidingWindow(MEDIUM_WINDOW_SIZE)
        self._long_window = SlidingWindow(LONG_WINDOW_SIZE)
        self._recent_events: list[_Event] = []
        self._last_decay = self._clock()
        self._burst_detector = BurstDetector(_BURST_DETECTOR_WINDOW)
        self._total_sent = 0
        self._total_lost = 0
        self._total_acked = 0
        self._smoothed_loss = 0.0
        self._instant_loss = 0.0
        self._trend_loss = 0.0
        self._confidence = 0.0
        self._sample_count = 0

    def on_packet_acked(self, packet_size: int, rtt: float) -> None:
        with self._lock:
            self._total_acked += 1
            self._observe(False, packet_size, rtt)

    def on_packet_lost(self, packet_size: int, estimated_rtt: float) -> None:
        with self._lock:
            self._total_lost += 1
            self._observe(True, packet_size, estimated_rtt)

    def _observe(self, is_loss: bool, nbytes: int, rtt: float) -> None:
        now = self._clock()
        self._total_sent += 1
        self._record_event(now, is_loss, nbytes, rtt)
        for window in (self._short_window, self._medium_window, self._long_window):
            window.add(is_loss)
        self._update_ewma(is_loss)
        if is_loss:
            self._burst_detector.on_loss(now)
        self._apply_time_decay(now)
        self._compute_smoothed_loss()

    def _record_event(self, t: float, is_loss: bool, nbytes: int, rtt: float) -> None:
        self._recent_events.append(_Event(t, is_loss, nbytes, rtt))
        if len(self._recent_events) > _EVENT_HISTORY_LIMIT:
            self._recent_events = self._recent_events[-_EVENT_HISTORY_KEEP:]
        self._sample_count += 1

    def _update_ewma(self, is_loss: bool) -> None:
        sample = 1.0 if is_loss else 0.0
        self._ewma_short = EWMA_ALPHA * sample + (1 - EWMA_ALPHA) * self._ewma_short
        self._ewma_medium = EWMA_BETA * sample + (1 - EWMA_BETA) * self._ewma_medium
        self._ewma_long = EWMA_GAMMA * sample + (1 - EWMA_GAMMA) * self._ewma_long

    def _apply_time_decay(self, now: float) -> None:
        elapsed = now - self._last_decay
        if elapsed < DECAY_INTERVAL:
            return
        elapsed_ms = float(int(elapsed * 1000))
        decay = math.pow(0.5, elapsed_ms / HALF_LIFE_MS)
        self._ewma_short *= decay
        self._ewma_medium *= decay
        self._ewma_long *= decay

        cutoff = now - _EVENT_MAX_AGE
        self._recent_events = [ev for ev in self._recent_events if ev.timestamp > cutoff]
        self._last_decay = now

    def _compute_smoothed_loss(self) -> None:
        self._instant_loss = self._short_window.loss_rate
        self._trend_loss = 0.6 * self._ewma_medium + 0.4 * self._ewma_long

        burst = self._burst_detector
        if burst.in_burst:
            burst_factor = burst.burst_intensity * BURST_DECAY_FACTOR
            smoothed = (
                0.5 * self._instant_loss + 0.3 * self._ewma_short + 0.2 * self._trend_loss
            ) * burst_factor
        else:
            smoothed = 0.3 * self._instant_loss + 0.3 * self._ewma_short + 0.4 * self._trend_loss

        window_loss = self._medium_window.loss_rate
        if abs(smoothed - window_loss) > 0.1 and self._sample_count > 100:
            smoothed = 0.6 * smoothed + 0.4 * window_loss

        self._update_confidence()
        if self._confidence < 0.5:
            smoothed = max(smoothed, self._long_window.loss_rate)

        self._smoothed_loss = max(0.0, min(1.0, smoothed))

    def _update_confidence(self) -> None:
        sample_confidence = min(self._sample_count / 100.0, 1.0)
        self._confidence = 0.6 * sample_confidence + 0.4 * self._compute_stability()

    def _compute_stability(self) -> float:
        if len(self._recent_events) < STABILITY_WINDOW:
            return 0.5
        recent = self._recent_events[-STABILITY_WINDOW:]
        recent_rate = sum(1 for ev in recent if ev.is_loss) / len(recent)
        variance = abs(recent_rate - self._smoothed_loss)
        return 1.0 - min(variance / 0.2, 1.0)

    @property
    def loss_rate(self) -> float:
        """Smoothed loss rate in [0, 1]."""
        with self._lock:
            return self._smoothed_loss

    @property
    def instant_loss_rate(self) -> float:
        with self._lock:
            return self._instant_loss

    @property
    def trend_loss_rate(self) -> float:
        with self._lock:
            return self._trend_loss

    @property
    def confidence(self) -> float:
        with self._lock:
            return self._confidence

    @property
    def in_burst(self) -> bool:
        with self._lock:
            return self._burst_detector.in_burst

    def stats(self) -> LossStats:
        with self._lock:
            return LossStats(
                smoothed_loss=self._smoothed_loss,
                instant_loss=self._instant_loss,
                trend_loss=self._trend_loss,
                ewma_short=self._ewma_short,
                ewma_medium=self._ewma_medium,
                ewma_long=self._ewma_long,
                short_window=self._short_window.loss_rate,
                medium_window=self._medium_window.loss_rate,
                long_window=self._long_window.loss_rate,
                confidence=self._confidence,
                sample_count=self._sample_count,
                total_sent=self._total_sent,
                total_lost=self._total_lost,
                in_burst=self._burst_detector.in_burst,
                burst_intensity=self._burst_detector.burst_intensity,
            )

    def reset(self) -> None:
        with self._lock:
            self._clear()