import dataclasses

import pytest

from phantom.congestion.types import (
    AckInfo,
    BandwidthSample,
    CongestionState,
    CongestionStats,
    LossInfo,
    LossReason,
    PacketInfo,
)


@pytest.mark.parametrize(
    "state, text",
    [
        (CongestionState.SLOW_START, "slow_start"),
        (CongestionState.CONGESTION_AVOIDANCE, "congestion_avoidance"),
        (CongestionState.RECOVERY, "recovery"),
        (CongestionState.DRAIN, "drain"),
        (CongestionState.PROBE_BW, "probe_bw"),
        (CongestionState.PROBE_RTT, "probe_rtt"),
    ],
)
def test_state_string(state, text):
    assert str(state) == text


def test_state_values_follow_declaration():
    names = [str(CongestionState(value)) for value in range(6)]
    assert names == [
        "slow_start",
        "congestion_avoidance",
        "recovery",
        "drain",
        "probe_bw",
        "probe_rtt",
    ]
    assert CongestionState(0) is CongestionState.SLOW_START


def test_loss_reason_values():
    assert LossReason(0) is LossReason.TIMEOUT
    assert LossReason(1) is LossReason.REORDER
    assert LossReason(2) is LossReason.ECN


def test_stats_defaults_are_empty():
    stats = CongestionStats()
    assert stats.congestion_window == 0
    assert stats.brutal_mode is False
    assert stats.state == ""


def test_stats_replace_keeps_other_fields():
    stats = CongestionStats(congestion_window=38400, state=str(CongestionState.PROBE_BW))
    changed = dataclasses.replace(stats, in_recovery=True)
    assert changed.congestion_window == 38400
    assert changed.state == "probe_bw"
    assert changed.in_recovery is True
    assert stats.in_recovery is False


def test_packet_info_defaults():
    info = PacketInfo(packet_number=7, size=1200, sent_time=1.5)
    assert info.in_flight is True
    assert info.acked is False
    assert info.lost is False
    assert info.delivered_bytes == 0


def test_records_compare_by_value():
    assert BandwidthSample(1.0, 0.05, False, 2.0) == BandwidthSample(1.0, 0.05, False, 2.0)
    assert AckInfo(1, 1200, 0.05, 3.0) != AckInfo(2, 1200, 0.05, 3.0)
    loss = LossInfo(3, 1200, LossReason.REORDER, 4.0)
    assert loss.reason is LossReason.REORDER