"""
WHEP Benchmark CLI

Ramps up WHEP egress sessions against a media server and reports
connect times, throughput, RTT and loss.

Usage:
    # Ten sessions, one every 500ms, each kept for 30s
    whep-bench --url http://media:8080/whep --token secret \\
        --engine my_engine:create --count 10 --interval 500 --lifetime 30000

    # Use a predefined scenario and save the report
    whep-bench --scenario medium --engine my_engine:create --output report.json

URL and token default to WHEP_BENCH_URL / WHEP_BENCH_TOKEN.
"""

import argparse
import asyncio
import signal
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from .collector import BenchCollector, consume
from .config import BenchPlan, BenchScenario, Settings
from .engine import EngineFactory, load_engine_factory
from .logging_config import configure_logging
from .metrics import BenchMetrics, start_metrics_server
from .runner import BenchEvent, BenchRunner, default_driver_factory

logger = structlog.get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="whep-bench",
        description="WHEP egress load testing tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    # Target
    parser.add_argument("--url", help="WHEP endpoint URL (env: WHEP_BENCH_URL)")
    parser.add_argument("--token", help="Bearer token (env: WHEP_BENCH_TOKEN)")

    # Plan - scenario and/or explicit values
    parser.add_argument(
        "--scenario", "-s",
        choices=[s.value for s in BenchScenario],
        help="Use a predefined ramp-up profile",
    )
    parser.add_argument("--count", "-c", type=int, help="Number of sessions to start")
    parser.add_argument("--interval", "-i", type=int, help="Milliseconds between session starts")
    parser.add_argument("--lifetime", "-l", type=int, help="Milliseconds each session is kept alive")

    # Transport
    parser.add_argument("--engine", "-e", help="Transport engine factory as 'module:callable'")
    parser.add_argument("--bind", help="Local address to bind UDP sockets to (default: 0.0.0.0)")

    # Output
    parser.add_argument("--metrics-port", type=int, help="Serve Prometheus metrics on this port")
    parser.add_argument("--output", "-o", help="Output file for JSON report")

    # Verbosity
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    parser.add_argument("--debug", action="store_true", help="Enable debug output")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON")

    return parser.parse_args(argv)


def create_settings_from_args(args: argparse.Namespace) -> Settings:
    """Build Settings from the environment, overridden by explicit arguments."""
    overrides: Dict[str, Any] = {
        "url": args.url,
        "token": args.token,
        "count": args.count,
        "interval_ms": args.interval,
        "lifetime_ms": args.lifetime,
        "engine": args.engine,
        "bind_host": args.bind,
        "metrics_port": args.metrics_port,
        "output_file": args.output,
    }
    if args.json_logs:
        overrides["log_json"] = True
    if args.debug:
        overrides["log_level"] = "DEBUG"
    elif args.verbose:
        overrides["log_level"] = "INFO"

    return Settings(**{k: v for k, v in overrides.items() if v is not None})


def create_plan(args: argparse.Namespace, settings: Settings) -> BenchPlan:
    if args.scenario:
        return BenchPlan.from_scenario(
            BenchScenario(args.scenario),
            count=args.count,
            interval=args.interval / 1000.0 if args.interval is not None else None,
            lifetime=args.lifetime / 1000.0 if args.lifetime is not None else None,
        )
    return BenchPlan.from_settings(settings)


async def display_live_stats(runner: BenchRunner, collector: BenchCollector, interval: float):
    """Print a one-line status periodically."""
    while True:
        await asyncio.sleep(interval)
        stats = collector.get_live_stats()
        print(
            f"\r[{datetime.now().strftime('%H:%M:%S')}] "
            f"Started: {runner.started:4d}/{runner.plan.count:<4d} | "
            f"Live: {stats['connected']:4d} | "
            f"Failed: {stats['failed']:4d} | "
            f"Recv: {stats['total_recv_kbps']:8d} kbps | "
            f"RTT: {stats['avg_rtt_ms']:5.0f}ms | "
            f"Loss: {stats['avg_lost'] * 100:5.2f}%",
            end="",
            flush=True,
        )


async def run_benchmark(
    settings: Settings, plan: BenchPlan, engine_factory: EngineFactory
) -> Tuple[BenchCollector, bool]:
    """Run the whole benchmark. Returns the filled collector and whether it was interrupted."""
    interrupted = False

    events: "asyncio.Queue[BenchEvent]" = asyncio.Queue()
    collector = BenchCollector()
    observers = [collector]

    if settings.metrics_port:
        metrics = BenchMetrics()
        start_metrics_server(settings.metrics_port)
        observers.append(metrics)

    runner = BenchRunner(
        plan,
        default_driver_factory(
            settings.url,
            settings.token,
            engine_factory,
            options=settings.engine_options(),
            bind_host=settings.bind_host,
            http_timeout=settings.http_timeout,
        ),
        events,
    )

    logger.info("Starting WHEP benchmark", target=settings.url, **plan.to_dict())

    # Signals cancel the ramp-up and live sessions; sessions still report Disconnected.
    main_task = asyncio.current_task()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, main_task.cancel)

    collector.start()
    consumer = asyncio.create_task(consume(events, observers))
    live = asyncio.create_task(display_live_stats(runner, collector, settings.live_stats_interval))

    try:
        await runner.run()
        await runner.join()
    except asyncio.CancelledError:
        logger.info("Shutdown signal received")
        interrupted = True
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await runner.stop()
        await events.join()
        collector.stop()

        for task in (consumer, live):
            task.cancel()
        await asyncio.gather(consumer, live, return_exceptions=True)
        print()  # New line after live stats

    return collector, interrupted


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        settings = create_settings_from_args(args)
        plan = create_plan(args, settings)
        if not settings.engine:
            raise ValueError("a transport engine is required (--engine or WHEP_BENCH_ENGINE)")
        engine_factory = load_engine_factory(settings.engine)
    except (ValidationError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(settings.log_level, settings.log_json)

    try:
        collector, interrupted = asyncio.run(run_benchmark(settings, plan, engine_factory))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130

    collector.print_summary()

    if settings.output_file:
        collector.save_report(
            settings.output_file,
            {"target_url": settings.url, **plan.to_dict()},
        )
        print(f"\nReport saved to: {settings.output_file}")

    if interrupted:
        return 130

    report = collector.generate_report()
    if report.get("summary", {}).get("sessions_failed", 0):
        return 1
    return 0


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
