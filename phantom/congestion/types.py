"""Shared types for congestion control: states, loss reasons and statistics records."""

from __future__ import annotations

import enum
from dataclasses import dataclass


class CongestionState(enum.IntEnum):
    """Phase of the congestion controller."""

    SLOW_START = 0
    CONGESTION_AVOIDANCE = 1
    RECOVERY = 2
    DRAIN = 3
    PROBE_BW = 4
    PROBE_RTT = 5

    def __str__(self) -> str:
        return self.name.lower()


class LossReason(enum.IntEnum):
    """Why a packet was declared lost."""

    TIMEOUT = 0
    REORDER = 1
    ECN = 2


@dataclass
class CongestionStats:
    """Snapshot of a congestion controller. Durations are in seconds, rates in bytes/s."""

    congestion_window: int = 0
    bytes_in_flight: int = 0
    max_window: int = 0
    min_window: int = 0

    smoothed_rtt: float = 0.0
    min_rtt: float = 0.0
    latest_rtt: float = 0.0
    rtt_variance: float = 0.0

    bandwidth: float = 0.0
    pacing_rate: float = 0.0
    delivery_rate: float = 0.0
    bandwidth_mbps: float = 0.0

    loss_rate: float = 0.0
    total_packets: int = 0
    lost_packets: int = 0
    retransmit_packets: int = 0

    brutal_mode: bool = False
    brutal_rate: float = 0.0

    state: str = ""
    slow_start_exit: bool = False
    in_recovery: bool = False
    recovery_end_time_ms: int = 0


@dataclass
class PacketInfo:
    """Tracking record for one sent packet."""

    packet_number: int
    size: int
    sent_time: float
    is_retransmit: bool = False
    in_flight: bool = True
    acked: bool = False
    lost: bool = False
    delivered_time: float = 0.0
    delivered_bytes: int = 0


@dataclass
class BandwidthSample:
    """One bandwidth measurement."""

    bandwidth: float
    rtt: float
    is_app_limited: bool
    timestamp: float


@dataclass
class AckInfo:
    """Details of an acknowledgement."""

    packet_number: int
    acked_bytes: int
    rtt: float
    receive_time: float
    delivered_bytes: int = 0
    delivered_time: float = 0.0


@dataclass
class LossInfo:
    """Details of a detected loss."""

    packet_number: int
    lost_bytes: int
    reason: LossReason
    detect_time: float