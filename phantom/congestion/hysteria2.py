"""Hysteria2-style congestion control with an aggressive "brutal" sending mode."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from phantom.congestion.bandwidth import BandwidthEstimator
from phantom.congestion.pacer import Pacer
from phantom.congestion.rtt import RTTEstimator
from phantom.congestion.types import CongestionState, CongestionStats, PacketInfo

DEFAULT_INITIAL_WINDOW = 32
DEFAULT_MAX_WINDOW = 512
DEFAULT_MIN_WINDOW = 4
DEFAULT_MSS = 1200

BRUTAL_MIN_RTT = 0.010
BRUTAL_MAX_RTT = 0.500
BRUTAL_LOSS_THRESHOLD = 0.30
BRUTAL_RTT_MULTIPLIER = 3.0

RECOVERY_LOSS_THRESHOLD = 0.10
SLOW_START_LOSS_THRESHOLD = 0.02

WINDOW_GAIN_FACTOR = 1.25
WINDOW_LOSS_FACTOR = 0.7
PROBE_RTT_DURATION = 0.200
PROBE_RTT_INTERVAL = 10.0

_LOSS_HISTORY = 10.0
_LOSS_COUNTER_PERIOD = 10.0


def _mbps_to_bytes_per_second(mbps: int) -> float:
    return float(mbps) * 1024 * 1024 / 8


class Hysteria2Controller:
    """Congestion controller. Sizes are in bytes, rates in bytes/s, times in seconds."""

    def __init__(
        self,
        up_mbps: int,
        down_mbps: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._lock = threading.RLock()

        peak_mbps = max(up_mbps, down_mbps)
        max_bw = _mbps_to_bytes_per_second(peak_mbps)
        self._max_bandwidth = max_bw
        self._mss = DEFAULT_MSS
        self._max_window = float(DEFAULT_MAX_WINDOW * DEFAULT_MSS)
        self._min_window = float(DEFAULT_MIN_WINDOW * DEFAULT_MSS)

        self._rtt = RTTEstimator(clock=clock)
        self._bw = BandwidthEstimator(peak_mbps, clock=clock)
        self._pacer = Pacer(max_bw, DEFAULT_MSS, clock=clock)
        self._pacer.set_max_rate(max_bw)
        self._pacer.set_pacing_rate(max_bw * 0.9)

        self._last_loss_update: Optional[float] = None
        self._last_send_time = 0.0
        self._last_ack_time = 0.0
        self._recovery_start = 0.0
        self._recovery_seq = 0
        self._probe_rtt_restore: Optional[tuple[float, float]] = None
        self._init_state()

    def _init_state(self) -> None:
        now = self._clock()
        self._cwnd = float(DEFAULT_INITIAL_WINDOW * self._mss)
        self._ssthresh = self._max_window
        self._in_flight = 0
        self._lost_packets = 0
        self._total_packets = 0
        self._loss_rate = 0.0
        self._recent_losses: list[tuple[float, int]] = []
        self._brutal_mode = True
        self._brutal_rate = self._max_bandwidth * 0.9
        self._state = CongestionState.SLOW_START
        self._in_recovery = False
        self._next_packet_num = 1
        self._largest_acked = 0
        self._largest_sent = 0
        self._packets: dict[int, PacketInfo] = {}
        self._delivered_bytes = 0
        self._delivered_time = 0.0
        self._cycle_start = now
        self._last_probe_rtt = now
        self._probe_rtt_restore = None

    def _settle(self, now: float) -> None:
        """Finish a ProbeRTT phase whose duration has elapsed."""
        if self._probe_rtt_restore is None:
            return
        deadline, old_cwnd = self._probe_rtt_restore
        if now >= deadline:
            if self._state == CongestionState.PROBE_RTT:
                self._cwnd = old_cwnd
                self._state = CongestionState.PROBE_BW
            self._probe_rtt_restore = None

    @property
    def congestion_window(self) -> int:
        with self._lock:
            self._settle(self._clock())
            if self._brutal_mode:
                return int(self._max_window)
            return int(self._cwnd)

    def can_send(self, packet_size: int) -> bool:
        with self._lock:
            self._settle(self._clock())
            in_flight = self._in_flight
            if self._brutal_mode:
                return in_flight + packet_size <= int(self._max_window * 2)
            if in_flight + packet_size > int(self._cwnd):
                return False
        return self._pacer.can_send(packet_size)

    def on_packet_sent(self, packet_number: int, packet_size: int, is_retransmit: bool = False) -> None:
        with self._lock:
            now = self._clock()
            self._settle(now)
            self._in_flight += packet_size
            self._total_packets += 1
            self._last_send_time = now
            self._largest_sent = max(self._largest_sent, packet_number)
            self._packets[packet_number] = PacketInfo(
                packet_number=packet_number,
                size=packet_size,
                sent_time=now,
                is_retransmit=is_retransmit,
                in_flight=True,
                delivered_bytes=self._delivered_bytes,
                delivered_time=self._delivered_time,
            )
        self._pacer.on_packet_sent(packet_size)
        if not is_retransmit:
            self._bw.add_delivered(packet_size)

    def on_packet_acked(self, packet_number: int, acked_bytes: int, rtt: float) -> None:
        with self._lock:
            now = self._clock()
            self._settle(now)
            self._in_flight -= acked_bytes

            if rtt > 0:
                self._rtt.update(rtt, 0.0)

            self._delivered_bytes += acked_bytes
            self._delivered_time = now

            info = self._packets.pop(packet_number, None)
            if info is not None:
                info.acked = True
                info.in_flight = False
                if not info.is_retransmit and rtt > 0:
                    self._bw.on_packet_delivered(
                        self._delivered_bytes, now, info.sent_time, rtt, False
                    )

            self._largest_acked = max(self._largest_acked, packet_number)
            if self._in_recovery and packet_number >= self._recovery_seq:
                self._in_recovery = False
            self._last_ack_time = now
            self._adjust_window(acked_bytes, rtt, now)

    def on_packet_lost(self, packet_number: int, lost_bytes: int) -> None:
        with self._lock:
            now = self._clock()
            self._settle(now)
            self._in_flight -= lost_bytes
            self._lost_packets += 1

            self._recent_losses.append((now, lost_bytes))
            cutoff = now - _LOSS_HISTORY
            self._recent_losses = [loss for loss in self._recent_losses if loss[0] > cutoff]

            self._update_loss_rate(now)

            info = self._packets.pop(packet_number, None)
            if info is not None:
                info.lost = True
                info.in_flight = False

            self._handle_congestion(now)

    def on_congestion_event(self, event_time: float) -> None:
        with self._lock:
            self._settle(self._clock())
            self._handle_congestion(event_time)

    def _handle_congestion(self, event_time: float) -> None:
        if self._brutal_mode:
            if self._loss_rate > BRUTAL_LOSS_THRESHOLD:
                self._brutal_mode = False
                self._state = CongestionState.RECOVERY
                self._cwnd = max(self._cwnd * WINDOW_LOSS_FACTOR, self._min_window)
                self._ssthresh = self._cwnd
                self._in_recovery = True
                self._recovery_start = event_time
                self._recovery_seq = self._largest_sent + 1
                return
            min_rtt = self._rtt.min_rtt
            if min_rtt > 0 and self._rtt.latest_rtt > min_rtt * BRUTAL_RTT_MULTIPLIER:
                self._brutal_mode = False
                self._state = CongestionState.RECOVERY
            return

        if self._in_recovery:
            return
        self._in_recovery = True
        self._recovery_start = event_time
        self._recovery_seq = self._largest_sent + 1
        if self._state == CongestionState.SLOW_START:
            self._ssthresh = self._cwnd / 2
            self._cwnd = self._ssthresh
            self._state = CongestionState.RECOVERY
        elif self._state in (CongestionState.CONGESTION_AVOIDANCE, CongestionState.PROBE_BW):
            self._cwnd = max(self._cwnd * WINDOW_LOSS_FACTOR, self._min_window)
            self._ssthresh = self._cwnd
            self._state = CongestionState.RECOVERY

    def _adjust_window(self, acked_bytes: int, rtt: float, now: float) -> None:
        if self._brutal_mode:
            self._brutal_adjust(rtt)
            return
        if self._maybe_enter_brutal_mode():
            return

        if self._state == CongestionState.SLOW_START:
            self._slow_start_adjust(acked_bytes)
        elif self._state == CongestionState.CONGESTION_AVOIDANCE:
            self._congestion_avoidance_adjust(acked_bytes)
        elif self._state == CongestionState.RECOVERY:
            self._recovery_adjust(acked_bytes)
        elif self._state == CongestionState.PROBE_BW:
            self._probe_bw_adjust()

        self._maybe_probe_rtt(now)

    def _brutal_adjust(self, rtt: float) -> None:
        min_rtt = self._rtt.min_rtt
        if rtt < BRUTAL_MAX_RTT and self._loss_rate < 0.15:
            self._cwnd = min(self._cwnd * 1.05, self._max_window)
            self._brutal_rate = min(self._brutal_rate * 1.02, self._max_bandwidth)
            self._pacer.set_pacing_rate(self._brutal_rate)
        elif rtt > min_rtt * 2:
            self._brutal_rate = max(self._brutal_rate * 0.95, self._max_bandwidth * 0.5)
            self._pacer.set_pacing_rate(self._brutal_rate)

    def _maybe_enter_brutal_mode(self) -> bool:
        if self._loss_rate < 0.03:
            min_rtt = self._rtt.min_rtt
            if min_rtt > 0 and self._rtt.latest_rtt < min_rtt * 1.5:
                self._brutal_mode = True
                self._brutal_rate = self._max_bandwidth * 0.8
                self._state = CongestionState.PROBE_BW
                self._pacer.set_pacing_rate(self._brutal_rate)
                return True
        return False

    def _slow_start_adjust(self, acked_bytes: int) -> None:
        self._cwnd += acked_bytes
        if self._cwnd >= self._ssthresh:
            self._state = CongestionState.CONGESTION_AVOIDANCE
        if self._loss_rate > SLOW_START_LOSS_THRESHOLD:
            self._ssthresh = self._cwnd / 2
            self._state = CongestionState.CONGESTION_AVOIDANCE
        self._cwnd = min(self._cwnd, self._max_window)

    def _congestion_avoidance_adjust(self, acked_bytes: int) -> None:
        self._cwnd += self._mss * acked_bytes / self._cwnd
        self._cwnd = min(self._cwnd, self._max_window)

    def _recovery_adjust(self, acked_bytes: int) -> None:
        if not self._in_recovery:
            self._state = CongestionState.CONGESTION_AVOIDANCE
            return
        self._cwnd += acked_bytes * 0.5

    def _probe_bw_adjust(self) -> None:
        bw = self._bw.bandwidth
        min_rtt = self._rtt.min_rtt
        if bw > 0 and min_rtt > 0:
            target = bw * min_rtt * WINDOW_GAIN_FACTOR
            if target > self._cwnd:
                self._cwnd += self._mss
            elif target < self._cwnd * 0.9:
                self._cwnd = max(self._cwnd * 0.99, target)
        self._cwnd = min(max(self._cwnd, self._min_window), self._max_window)

    def _maybe_probe_rtt(self, now: float) -> None:
        if now - self._last_probe_rtt < PROBE_RTT_INTERVAL:
            return
        self._state = CongestionState.PROBE_RTT
        self._last_probe_rtt = now
        self._probe_rtt_restore = (now + PROBE_RTT_DURATION, self._cwnd)
        self._cwnd = self._min_window

    def _update_loss_rate(self, now: float) -> None:
        total = self._total_packets
        lost = self._lost_packets
        if total > 0:
            self._loss_rate = lost / total
        if self._last_loss_update is None or now - self._last_loss_update > _LOSS_COUNTER_PERIOD:
            self._total_packets = total // 2
            self._lost_packets = lost // 2
            self._last_loss_update = now

    @property
    def pacing_rate(self) -> float:
        with self._lock:
            if self._brutal_mode:
                return self._brutal_rate
        return self._pacer.pacing_rate

    def pacing_interval(self, packet_size: int) -> float:
        """Seconds between packets of this size at the current sending rate."""
        with self._lock:
            if self._brutal_mode:
                if self._brutal_rate <= 0:
                    return 0.001
                return packet_size / self._brutal_rate
        return self._pacer.pacing_interval(packet_size)

    @property
    def rtt(self) -> float:
        return self._rtt.smoothed_rtt

    @property
    def min_rtt(self) -> float:
        return self._rtt.min_rtt

    @property
    def latest_rtt(self) -> float:
        return self._rtt.latest_rtt

    @property
    def loss_rate(self) -> float:
        with self._lock:
            return self._loss_rate

    @property
    def bandwidth(self) -> float:
        return self._bw.bandwidth

    def set_brutal_mode(self, enabled: bool, rate_mbps: int = 0) -> None:
        with self._lock:
            self._brutal_mode = enabled
            if rate_mbps > 0:
                self._brutal_rate = _mbps_to_bytes_per_second(rate_mbps)
            if enabled:
                self._state = CongestionState.PROBE_BW
                self._pacer.set_pacing_rate(self._brutal_rate)

    @property
    def brutal_mode(self) -> bool:
        with self._lock:
            return self._brutal_mode

    def stats(self) -> CongestionStats:
        with self._lock:
            self._settle(self._clock())
            bandwidth = self._bw.bandwidth
            return CongestionStats(
                congestion_window=int(self._cwnd),
                bytes_in_flight=self._in_flight,
                max_window=int(self._max_window),
                min_window=int(self._min_window),
                smoothed_rtt=self._rtt.smoothed_rtt,
                min_rtt=self._rtt.min_rtt,
                latest_rtt=self._rtt.latest_rtt,
                rtt_variance=self._rtt.rtt_variance,
                bandwidth=bandwidth,
                pacing_rate=self._pacer.pacing_rate,
                delivery_rate=bandwidth,
                bandwidth_mbps=bandwidth * 8 / 1024 / 1024,
                loss_rate=self._loss_rate,
                total_packets=self._total_packets,
                lost_packets=self._lost_packets,
                brutal_mode=self._brutal_mode,
                brutal_rate=self._brutal_rate,
                state=str(self._state),
                slow_start_exit=self._state != CongestionState.SLOW_START,
                in_recovery=self._in_recovery,
            )

    def reset(self) -> None:
        with self._lock:
            self._rtt.reset()
            self._bw.reset()
            self._pacer.reset()
            self._init_state()

    def next_packet_number(self) -> int:
        with self._lock:
            num = self._next_packet_num
            self._next_packet_num += 1
            return num