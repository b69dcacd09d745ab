"""
Prometheus metrics for the WHEP benchmark.

``BenchMetrics`` is an observer on the event stream; it never sits in a
session's drive loop. Serve it with ``start_metrics_server(port)`` and
scrape ``/metrics`` while the benchmark runs.

Usage:
    metrics = BenchMetrics()
    start_metrics_server(9100)
    await consume(events, [collector, metrics])
"""

from typing import Dict, Optional

import structlog
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    REGISTRY,
    start_http_server,
)

from .runner import BenchEvent, BenchEventKind

logger = structlog.get_logger(__name__)

# =============================================================================
# Histogram Buckets
# =============================================================================

# Connect time: HTTP negotiation + ICE + DTLS, typically 100ms - 5s
CONNECT_BUCKETS = (0.05, 0.1, 0.2, 0.3, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0, 10.0)

# RTT in milliseconds
RTT_BUCKETS = (5, 10, 20, 30, 50, 75, 100, 150, 200, 300, 500, 1000)

# Per-session receive rate in kbps
RECV_KBPS_BUCKETS = (50, 100, 250, 500, 750, 1000, 1500, 2000, 3000, 5000, 8000)


class BenchMetrics:
    """Container for all benchmark metrics."""

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.sessions_active = Gauge(
            "whep_bench_sessions_active",
            "Sessions started and not yet disconnected",
            registry=registry,
        )
        self.sessions_connected = Gauge(
            "whep_bench_sessions_connected",
            "Sessions with established media transport",
            registry=registry,
        )
        self.sessions_total = Counter(
            "whep_bench_sessions",
            "Finished sessions by outcome",
            ["outcome"],  # completed, failed, never_connected
            registry=registry,
        )
        self.connect_seconds = Histogram(
            "whep_bench_connect_seconds",
            "Time from session start to transport connected",
            buckets=CONNECT_BUCKETS,
            registry=registry,
        )
        self.rtt_ms = Histogram(
            "whep_bench_rtt_ms",
            "Round-trip time reported by the transport",
            buckets=RTT_BUCKETS,
            registry=registry,
        )
        self.recv_kbps = Histogram(
            "whep_bench_recv_kbps",
            "Per-session receive rate",
            buckets=RECV_KBPS_BUCKETS,
            registry=registry,
        )
        self.packet_loss = Gauge(
            "whep_bench_last_loss_fraction",
            "Most recent ingress loss fraction seen on any session",
            registry=registry,
        )

        self._started_at: Dict[int, float] = {}
        self._connected = set()

    def handle(self, event: BenchEvent):
        if event.kind is BenchEventKind.CONNECTING:
            self._started_at[event.session_id] = event.timestamp
            self.sessions_active.inc()

        elif event.kind is BenchEventKind.CONNECTED:
            started = self._started_at.get(event.session_id)
            if started is not None:
                self.connect_seconds.observe(max(event.timestamp - started, 0.0))
            self._connected.add(event.session_id)
            self.sessions_connected.inc()

        elif event.kind is BenchEventKind.STATS:
            self.rtt_ms.observe(event.stats.rtt_ms)
            self.recv_kbps.observe(event.stats.recv_kbps)
            self.packet_loss.set(event.stats.lost)

        elif event.kind is BenchEventKind.DISCONNECTED:
            self._started_at.pop(event.session_id, None)
            self.sessions_active.dec()
            was_connected = event.session_id in self._connected
            if was_connected:
                self._connected.discard(event.session_id)
                self.sessions_connected.dec()
            self.sessions_total.labels(outcome=_outcome(event.reason, was_connected)).inc()


def _outcome(reason: Optional[str], was_connected: bool) -> str:
    if reason is not None:
        return "failed"
    return "completed" if was_connected else "never_connected"


def start_metrics_server(port: int, addr: str = "0.0.0.0"):
    """Start the Prometheus HTTP endpoint in a background thread."""
    start_http_server(port, addr=addr)
    logger.info("Metrics server started", port=port)
