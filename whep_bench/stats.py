"""Throughput, RTT and loss derived from raw transport counters."""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Stats:
    """Point-in-time snapshot for one session."""
    send_kbps: int
    recv_kbps: int
    live_ms: int
    rtt_ms: int
    lost: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def sample(prev_bytes: int, prev_ts: int, cur_bytes: int, cur_ts: int) -> int:
    """
    Rate in kbps between two cumulative byte samples taken at ``prev_ts``
    and ``cur_ts`` (milliseconds).

    A non-positive elapsed time yields 0. A counter that went backwards
    (engine restart, wrap) is treated as no traffic.
    """
    elapsed = cur_ts - prev_ts
    if elapsed <= 0:
        return 0
    delta = max(cur_bytes - prev_bytes, 0)
    return (delta * 8) // elapsed


def normalize_rtt(raw: Optional[float], previous: int = 0) -> int:
    """RTT in whole milliseconds; a missing reading keeps the previous one."""
    if raw is None or raw != raw or raw < 0:
        return previous
    return int(raw)


def normalize_loss(raw: Optional[float]) -> float:
    if raw is None or raw != raw:
        return 0.0
    return min(max(float(raw), 0.0), 1.0)


class StatsSampler:
    """
    Keeps the previous (tx, rx, timestamp) sample and turns each new
    cumulative reading into send/receive rates.
    """

    def __init__(self, start_ms: int = 0):
        self._prev_ts = start_ms
        self._prev_tx = 0
        self._prev_rx = 0
        self._send_kbps = 0
        self._recv_kbps = 0

    def update(self, bytes_tx: int, bytes_rx: int, now_ms: int) -> Tuple[int, int]:
        """Returns (send_kbps, recv_kbps) since the last call."""
        if now_ms <= self._prev_ts:
            # No time has passed; repeat the last rate rather than divide by zero.
            return self._send_kbps, self._recv_kbps

        self._send_kbps = sample(self._prev_tx, self._prev_ts, bytes_tx, now_ms)
        self._recv_kbps = sample(self._prev_rx, self._prev_ts, bytes_rx, now_ms)
        self._prev_tx = bytes_tx
        self._prev_rx = bytes_rx
        self._prev_ts = now_ms
        return self._send_kbps, self._recv_kbps
