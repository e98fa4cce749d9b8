"""Bridges reliable-transport sequence numbers to the congestion controller's packet numbers."""

from __future__ import annotations

import dataclasses
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from phantom.congestion.hysteria2 import Hysteria2Controller
from phantom.congestion.types import CongestionStats

_SEQ_MASK = 0xFFFFFFFF
_SEQ_HALF = 0x80000000
_MAX_ENTRIES = 10000
_MAX_VALID_RTT = 30.0
_DEFAULT_INTERVAL = 0.001


def seq_less_than(a: int, b: int) -> bool:
    """Compare 32-bit sequence numbers, tolerating wraparound."""
    return ((a - b) & _SEQ_MASK) >= _SEQ_HALF


def seq_in_range(seq: int, start: int, end: int) -> bool:
    """True when ``start <= seq <= end`` in wrapping 32-bit sequence space."""
    return not seq_less_than(seq, start) and not seq_less_than(end, seq)


@dataclass
class SeqPacketInfo:
    """Mapping record for one sequence number sent through the adapter."""

    pkt_num: int
    size: int
    sent_time: float
    retransmit: bool = False
    retrans_count: int = 0


class CongestionAdapter:
    """Simplified congestion-control interface keyed by transport sequence numbers.

    With no controller every operation is a no-op and sending is always allowed.
    Times are in seconds.
    """

    def __init__(
        self,
        cc: Optional[Hysteria2Controller],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cc = cc
        self._clock = clock
        self._seq_to_info: dict[int, SeqPacketInfo] = {}
        self._pkt_num_to_seq: dict[int, int] = {}
        self._next_pkt_num = 1
        self._lock = threading.Lock()

    def _valid_rtt(self, info: SeqPacketInfo, now: float) -> float:
        rtt = now - info.sent_time
        if rtt < 0 or rtt > _MAX_VALID_RTT:
            return 0.0
        return rtt

    def _forget(self, seq: int) -> Optional[SeqPacketInfo]:
        info = self._seq_to_info.pop(seq, None)
        if info is not None:
            self._pkt_num_to_seq.pop(info.pkt_num, None)
        return info

    def on_arq_packet_sent(self, seq: int, size: int, is_retransmit: bool = False) -> int:
        """Record a sent sequence number and return the controller packet number."""
        if self._cc is None:
            return 0
        seq &= _SEQ_MASK
        with self._lock:
            info = self._seq_to_info.get(seq)
            if info is not None:
                if is_retransmit:
                    info.retransmit = True
                    info.retrans_count += 1
                    self._cc.on_packet_sent(info.pkt_num, size, True)
                    return info.pkt_num
                self._pkt_num_to_seq.pop(info.pkt_num, None)

            pkt_num = self._next_pkt_num
            self._next_pkt_num += 1
            self._seq_to_info[seq] = SeqPacketInfo(pkt_num=pkt_num, size=size, sent_time=self._clock())
            self._pkt_num_to_seq[pkt_num] = seq
            self._cleanup_old_entries(seq)
            self._cc.on_packet_sent(pkt_num, size, False)
            return pkt_num

    def on_arq_packet_acked(self, ack_seq: int) -> tuple[int, float]:
        """Cumulative ACK of everything before ``ack_seq``; returns (acked bytes, RTT sample)."""
        if self._cc is None:
            return 0, 0.0
        ack_seq &= _SEQ_MASK
        with self._lock:
            now = self._clock()
            valid_rtt = 0.0
            total = 0
            acked = [seq for seq in self._seq_to_info if seq_less_than(seq, ack_seq)]
            for seq in acked:
                info = self._seq_to_info[seq]
                # Karn's algorithm: only first transmissions give RTT samples.
                if not info.retransmit and valid_rtt == 0:
                    valid_rtt = self._valid_rtt(info, now)
                total += info.size
                self._cc.on_packet_acked(info.pkt_num, info.size, valid_rtt if valid_rtt > 0 else 0.0)
            for seq in acked:
                self._forget(seq)
            return total, valid_rtt

    def on_arq_packet_sacked(self, ranges: Iterable[tuple[int, int]]) -> int:
        """Selective ACK of inclusive (start, end) ranges; returns acked bytes."""
        ranges = list(ranges)
        if self._cc is None or not ranges:
            return 0
        with self._lock:
            now = self._clock()
            total = 0
            for start, end in ranges:
                start &= _SEQ_MASK
                end &= _SEQ_MASK
                hits = [seq for seq in self._seq_to_info if seq_in_range(seq, start, end)]
                for seq in hits:
                    info = self._forget(seq)
                    if info is None:
                        continue
                    total += info.size
                    rtt = 0.0 if info.retransmit else self._valid_rtt(info, now)
                    self._cc.on_packet_acked(info.pkt_num, info.size, rtt)
            return total

    def on_arq_packet_lost(self, seq: int) -> None:
        if self._cc is None:
            return
        with self._lock:
            info = self._forget(seq & _SEQ_MASK)
            if info is not None:
                self._cc.on_packet_lost(info.pkt_num, info.size)

    def on_arq_packet_retransmit(self, seq: int) -> None:
        """Mark a sequence number as retransmitted without dropping its mapping."""
        with self._lock:
            info = self._seq_to_info.get(seq & _SEQ_MASK)
            if info is not None:
                info.retransmit = True
                info.retrans_count += 1

    def packet_info(self, seq: int) -> Optional[SeqPacketInfo]:
        """A copy of the record for ``seq``, or None."""
        with self._lock:
            info = self._seq_to_info.get(seq & _SEQ_MASK)
            return dataclasses.replace(info) if info is not None else None

    def _cleanup_old_entries(self, current_seq: int) -> None:
        if len(self._seq_to_info) <= _MAX_ENTRIES:
            return
        threshold = (current_seq - _MAX_ENTRIES // 2) & _SEQ_MASK
        for seq in [s for s in self._seq_to_info if seq_less_than(s, threshold)]:
            self._forget(seq)

    def on_packet_sent(self, size: int) -> int:
        """Register an untracked packet and return its packet number."""
        if self._cc is None:
            return 0
        with self._lock:
            pkt_num = self._next_pkt_num
            self._next_pkt_num += 1
        self._cc.on_packet_sent(pkt_num, size, False)
        return pkt_num

    def _release_pkt_num(self, pkt_num: int) -> Optional[int]:
        with self._lock:
            seq = self._pkt_num_to_seq.pop(pkt_num, None)
            if seq is None:
                return None
            info = self._seq_to_info.pop(seq, None)
            return info.size if info is not None else 0

    def on_packet_acked(self, pkt_num: int, rtt: float) -> None:
        if self._cc is None:
            return
        size = self._release_pkt_num(pkt_num)
        if size is not None:
            self._cc.on_packet_acked(pkt_num, size, rtt)

    def on_packet_lost(self, pkt_num: int) -> None:
        if self._cc is None:
            return
        size = self._release_pkt_num(pkt_num)
        if size is not None:
            self._cc.on_packet_lost(pkt_num, size)

    def on_bytes_acked(self, nbytes: int, rtt: float) -> None:
        if self._cc is not None:
            self._cc.on_packet_acked(0, nbytes, rtt)

    def on_bytes_lost(self, nbytes: int) -> None:
        if self._cc is not None:
            self._cc.on_packet_lost(0, nbytes)

    def can_send(self, size: int) -> bool:
        if self._cc is None:
            return True
        return self._cc.can_send(size)

    def pacing_interval(self, size: int) -> float:
        if self._cc is None:
            return _DEFAULT_INTERVAL
        return self._cc.pacing_interval(size)

    def wait_for_send(self, size: int) -> None:
        """Block until the controller allows a packet of this size."""
        if self._cc is None:
            return
        while not self._cc.can_send(size):
            time.sleep(self._cc.pacing_interval(size))

    @property
    def controller(self) -> Optional[Hysteria2Controller]:
        return self._cc

    def stats(self) -> Optional[CongestionStats]:
        if self._cc is None:
            return None
        return self._cc.stats()

    def mapping_stats(self) -> tuple[int, int]:
        """Sizes of the sequence map and the packet-number map."""
        with self._lock:
            return len(self._seq_to_info), len(self._pkt_num_to_seq)