"""
Bench Collector - aggregates the session event stream.

The collector is the only place session state is aggregated; sessions
never touch it directly, they publish ``BenchEvent``s and ``consume()``
feeds them here (and to any other observer) in order.
"""

import asyncio
import json
import math
import statistics
import time
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol

import structlog

from .runner import BenchEvent, BenchEventKind
from .stats import Stats

logger = structlog.get_logger(__name__)


class Observer(Protocol):
    def handle(self, event: BenchEvent) -> None:
        ...


async def consume(events: "asyncio.Queue[BenchEvent]", observers: Iterable[Observer]):
    """Dispatch every queued event to every observer, in order. Runs until cancelled."""
    observers = list(observers)
    while True:
        event = await events.get()
        try:
            for observer in observers:
                try:
                    observer.handle(event)
                except Exception:
                    logger.exception(
                        "Observer failed",
                        observer=type(observer).__name__,
                        kind=event.kind.value,
                        session_id=event.session_id,
                    )
        finally:
            events.task_done()


@dataclass
class SessionRecord:
    """Everything observed about one session."""
    session_id: int
    started_at: float
    connected_at: Optional[float] = None
    ended_at: Optional[float] = None
    last_stats: Optional[Stats] = None
    stats_count: int = 0
    reason: Optional[str] = None

    @property
    def connect_latency(self) -> Optional[float]:
        if self.connected_at is None:
            return None
        return self.connected_at - self.started_at

    @property
    def status(self) -> str:
        if self.ended_at is None:
            return "connected" if self.connected_at is not None else "connecting"
        if self.reason is not None:
            return "failed"
        return "completed" if self.connected_at is not None else "never_connected"


def _nearest_rank(ordered: List[float], fraction: float) -> float:
    rank = max(1, math.ceil(fraction * len(ordered)))
    return ordered[rank - 1]


@dataclass
class AggregateStats:
    """Distribution of one per-session measurement across the run."""
    count: int = 0
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    stddev: float = 0.0

    @classmethod
    def from_values(cls, values: Iterable[float]) -> "AggregateStats":
        ordered = sorted(values)
        if not ordered:
            return cls()

        return cls(
            count=len(ordered),
            min=ordered[0],
            max=ordered[-1],
            mean=statistics.fmean(ordered),
            median=statistics.median(ordered),
            p90=_nearest_rank(ordered, 0.90),
            p95=_nearest_rank(ordered, 0.95),
            p99=_nearest_rank(ordered, 0.99),
            stddev=statistics.pstdev(ordered),
        )


class BenchCollector:
    """
    Aggregates session events into live stats and a final report.

    Usage:
        collector = BenchCollector()
        consumer = asyncio.create_task(consume(events, [collector]))
        ...
        report = collector.generate_report()
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._sessions: Dict[int, SessionRecord] = {}
        self._stats_samples: List[Stats] = []
        self._start_time: Optional[float] = None
        self._end_time: Optional[float] = None

    def start(self):
        """Mark the start of the benchmark."""
        self._start_time = self._clock()

    def stop(self):
        """Mark the end of the benchmark."""
        self._end_time = self._clock()

    @property
    def sessions(self) -> Dict[int, SessionRecord]:
        return self._sessions

    def handle(self, event: BenchEvent):
        now = event.timestamp or self._clock()

        if event.kind is BenchEventKind.CONNECTING:
            self._sessions[event.session_id] = SessionRecord(event.session_id, started_at=now)
            return

        record = self._sessions.get(event.session_id)
        if record is None:
            logger.warning(
                "Event for unknown session", kind=event.kind.value, session_id=event.session_id
            )
            record = self._sessions[event.session_id] = SessionRecord(
                event.session_id, started_at=now
            )

        if event.kind is BenchEventKind.CONNECTED:
            record.connected_at = now
        elif event.kind is BenchEventKind.STATS:
            record.last_stats = event.stats
            record.stats_count += 1
            self._stats_samples.append(event.stats)
        elif event.kind is BenchEventKind.DISCONNECTED:
            record.ended_at = now
            record.reason = event.reason

    def get_live_stats(self) -> Dict[str, Any]:
        """Lightweight stats for the live display line."""
        records = list(self._sessions.values())
        live = [r for r in records if r.ended_at is None and r.connected_at is not None]
        latest = [r.last_stats for r in live if r.last_stats is not None]

        return {
            "started": len(records),
            "connecting": sum(1 for r in records if r.status == "connecting"),
            "connected": len(live),
            "ended": sum(1 for r in records if r.ended_at is not None),
            "failed": sum(1 for r in records if r.status == "failed"),
            "total_recv_kbps": sum(s.recv_kbps for s in latest),
            "total_send_kbps": sum(s.send_kbps for s in latest),
            "avg_rtt_ms": statistics.mean(s.rtt_ms for s in latest) if latest else 0.0,
            "avg_lost": statistics.mean(s.lost for s in latest) if latest else 0.0,
        }

    def generate_report(self, config: Optional[Dict] = None) -> Dict[str, Any]:
        """
        Generate the benchmark report.

        Args:
            config: Optional plan/configuration to include in report.
        """
        records = list(self._sessions.values())
        if not records:
            return {
                "status": "no_data",
                "message": "No sessions started",
            }

        by_status: Dict[str, int] = defaultdict(int)
        for record in records:
            by_status[record.status] += 1

        duration = (self._end_time or self._clock()) - (self._start_time or self._clock())
        connected = [r for r in records if r.connected_at is not None]

        report: Dict[str, Any] = {
            "summary": {
                "timestamp": datetime.now().isoformat(),
                "total_duration_seconds": duration,
                "sessions_started": len(records),
                "sessions_connected": len(connected),
                "sessions_failed": by_status.get("failed", 0),
                "sessions_never_connected": by_status.get("never_connected", 0),
                "connect_rate": len(connected) / len(records),
                "stats_samples": len(self._stats_samples),
            },
            "metrics": {},
            "errors": [],
        }

        connect_times = [r.connect_latency for r in connected]
        if connect_times:
            report["metrics"]["connect_seconds"] = asdict(AggregateStats.from_values(connect_times))

        if self._stats_samples:
            samples = self._stats_samples
            report["metrics"]["recv_kbps"] = asdict(
                AggregateStats.from_values([s.recv_kbps for s in samples])
            )
            report["metrics"]["send_kbps"] = asdict(
                AggregateStats.from_values([s.send_kbps for s in samples])
            )
            report["metrics"]["rtt_ms"] = asdict(
                AggregateStats.from_values([s.rtt_ms for s in samples])
            )
            report["metrics"]["lost"] = asdict(
                AggregateStats.from_values([s.lost for s in samples])
            )

        reasons: Dict[str, int] = defaultdict(int)
        for record in records:
            if record.reason:
                reasons[record.reason] += 1
        report["errors"] = [
            {"message": msg, "count": count}
            for msg, count in sorted(reasons.items(), key=lambda x: -x[1])
        ]

        if config:
            report["config"] = config

        return report

    def save_report(self, filepath: str, config: Optional[Dict] = None):
        """Save report to JSON file."""
        report = self.generate_report(config)

        with open(filepath, "w") as f:
            json.dump(report, f, indent=2)

        logger.info("Report saved", path=filepath)

    def print_summary(self):
        """Print a human-readable summary to console."""
        report = self.generate_report()

        print("\n" + "=" * 60)
        print("WHEP BENCHMARK RESULTS")
        print("=" * 60)

        summary = report.get("summary", {})
        print(f"\nDuration:         {summary.get('total_duration_seconds', 0):.2f}s")
        print(f"Sessions:         {summary.get('sessions_started', 0)}")
        print(f"Connected:        {summary.get('sessions_connected', 0)}")
        print(f"Failed:           {summary.get('sessions_failed', 0)}")
        print(f"Connect Rate:     {summary.get('connect_rate', 0) * 100:.1f}%")

        metrics = report.get("metrics", {})
        if "connect_seconds" in metrics:
            connect = metrics["connect_seconds"]
            print("\nConnect Time:")
            print(f"  P50:  {connect['median'] * 1000:.0f}ms")
            print(f"  P95:  {connect['p95'] * 1000:.0f}ms")
            print(f"  Max:  {connect['max'] * 1000:.0f}ms")

        if "recv_kbps" in metrics:
            print("\nPer-session Receive Rate:")
            print(f"  Mean: {metrics['recv_kbps']['mean']:.0f} kbps")
            print(f"  P50:  {metrics['recv_kbps']['median']:.0f} kbps")
            print(f"RTT P95:          {metrics['rtt_ms']['p95']:.0f}ms")
            print(f"Loss Mean:        {metrics['lost']['mean'] * 100:.2f}%")

        if report.get("errors"):
            print("\nTop Errors:")
            for err in report["errors"][:5]:
                print(f"  [{err['count']}x] {err['message'][:60]}")

        print("\n" + "=" * 60)
