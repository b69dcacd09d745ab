import asyncio
import json
import os
import tempfile
import unittest

from prometheus_client import CollectorRegistry

from whep_bench.collector import AggregateStats, BenchCollector, consume
from whep_bench.metrics import BenchMetrics
from whep_bench.runner import BenchEvent, BenchEventKind
from whep_bench.stats import Stats


def event(kind, session_id, timestamp, stats=None, reason=None):
    return BenchEvent(kind, session_id, stats=stats, reason=reason, timestamp=timestamp)


def sample_events():
    """Session 1 completes, session 2 fails negotiation, session 3 is still live."""
    return [
        event(BenchEventKind.CONNECTING, 1, 10.0),
        event(BenchEventKind.CONNECTED, 1, 10.5),
        event(BenchEventKind.STATS, 1, 12.5, stats=Stats(10, 1000, 2000, 30, 0.0)),
        event(BenchEventKind.CONNECTING, 2, 11.0),
        event(BenchEventKind.DISCONNECTED, 2, 11.2, reason="ServerError: Location header not found"),
        event(BenchEventKind.CONNECTING, 3, 12.0),
        event(BenchEventKind.CONNECTED, 3, 13.0),
        event(BenchEventKind.STATS, 3, 14.0, stats=Stats(20, 3000, 1000, 50, 0.1)),
        event(BenchEventKind.DISCONNECTED, 1, 20.0),
    ]


class TestAggregateStats(unittest.TestCase):

    def test_empty(self):
        self.assertEqual(AggregateStats.from_values([]).count, 0)

    def test_values(self):
        stats = AggregateStats.from_values([1.0, 2.0, 3.0, 4.0])
        self.assertEqual(stats.count, 4)
        self.assertEqual(stats.min, 1.0)
        self.assertEqual(stats.max, 4.0)
        self.assertEqual(stats.mean, 2.5)
        self.assertEqual(stats.median, 2.5)

    def test_percentiles_use_nearest_rank(self):
        stats = AggregateStats.from_values(float(v) for v in range(10, 0, -1))
        self.assertEqual(stats.median, 5.5)
        self.assertEqual(stats.p95, 10.0)
        self.assertEqual(AggregateStats.from_values([7.0]).p99, 7.0)


class TestBenchCollector(unittest.TestCase):

    def setUp(self):
        self.collector = BenchCollector(clock=lambda: 30.0)
        for e in sample_events():
            self.collector.handle(e)

    def test_session_status(self):
        sessions = self.collector.sessions
        self.assertEqual(sessions[1].status, "completed")
        self.assertEqual(sessions[2].status, "failed")
        self.assertEqual(sessions[3].status, "connected")
        self.assertEqual(sessions[1].connect_latency, 0.5)
        self.assertEqual(sessions[1].stats_count, 1)

    def test_live_stats(self):
        live = self.collector.get_live_stats()
        self.assertEqual(live["started"], 3)
        self.assertEqual(live["connected"], 1)
        self.assertEqual(live["ended"], 2)
        self.assertEqual(live["failed"], 1)
        self.assertEqual(live["total_recv_kbps"], 3000)
        self.assertEqual(live["avg_rtt_ms"], 50)

    def test_report(self):
        report = self.collector.generate_report({"count": 3})

        summary = report["summary"]
        self.assertEqual(summary["sessions_started"], 3)
        self.assertEqual(summary["sessions_connected"], 2)
        self.assertEqual(summary["sessions_failed"], 1)
        self.assertAlmostEqual(summary["connect_rate"], 2 / 3)
        self.assertEqual(summary["stats_samples"], 2)

        self.assertEqual(report["metrics"]["recv_kbps"]["max"], 3000)
        self.assertEqual(report["metrics"]["connect_seconds"]["count"], 2)
        self.assertEqual(
            report["errors"], [{"message": "ServerError: Location header not found", "count": 1}]
        )
        self.assertEqual(report["config"], {"count": 3})

    def test_empty_report(self):
        self.assertEqual(BenchCollector().generate_report()["status"], "no_data")

    def test_save_report(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "report.json")
            self.collector.save_report(path)
            with open(path) as f:
                saved = json.load(f)
        self.assertEqual(saved["summary"]["sessions_started"], 3)


class TestBenchMetrics(unittest.TestCase):

    def test_metrics_follow_events(self):
        registry = CollectorRegistry()
        metrics = BenchMetrics(registry=registry)
        for e in sample_events():
            metrics.handle(e)

        value = registry.get_sample_value
        self.assertEqual(value("whep_bench_sessions_active"), 1)
        self.assertEqual(value("whep_bench_sessions_connected"), 1)
        self.assertEqual(value("whep_bench_sessions_total", {"outcome": "completed"}), 1)
        self.assertEqual(value("whep_bench_sessions_total", {"outcome": "failed"}), 1)
        self.assertEqual(value("whep_bench_connect_seconds_count"), 2)
        self.assertEqual(value("whep_bench_rtt_ms_count"), 2)
        self.assertEqual(value("whep_bench_recv_kbps_sum"), 4000)
        self.assertAlmostEqual(value("whep_bench_last_loss_fraction"), 0.1)


class TestConsume(unittest.IsolatedAsyncioTestCase):

    async def test_dispatches_in_order_to_every_observer(self):
        seen_a, seen_b = [], []

        class Recorder:
            def __init__(self, seen):
                self.seen = seen

            def handle(self, e):
                self.seen.append((e.kind, e.session_id))

        class Exploding:
            def handle(self, e):
                raise RuntimeError("observer bug")

        queue = asyncio.Queue()
        for e in sample_events():
            queue.put_nowait(e)

        task = asyncio.create_task(consume(queue, [Recorder(seen_a), Exploding(), Recorder(seen_b)]))
        await asyncio.wait_for(queue.join(), timeout=2)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        expected = [(e.kind, e.session_id) for e in sample_events()]
        self.assertEqual(seen_a, expected)
        self.assertEqual(seen_b, expected)


if __name__ == '__main__':
    unittest.main()
