"""
WHEP Benchmark
==============

Load testing tool for WHEP (WebRTC-HTTP Egress Protocol) media servers.
Starts many receive-only sessions on a schedule, keeps each alive for a
bounded lifetime, and reports connect time, throughput, RTT and loss.

Architecture:
    ┌──────────────────────────────────────────────────────┐
    │                  BenchRunner                          │
    │  ┌──────────┐ ┌──────────┐ ┌──────────┐              │
    │  │Session 1 │ │Session 2 │ │Session N │  (asyncio)   │
    │  │ Driver   │ │ Driver   │ │ Driver   │              │
    │  └────┬─────┘ └────┬─────┘ └────┬─────┘              │
    │       └────────────┼────────────┘                     │
    │                    ▼ BenchEvent queue                 │
    │        ┌───────────────────────────┐                 │
    │        │ BenchCollector / Metrics  │                 │
    │        └───────────────────────────┘                 │
    └──────────────────────────────────────────────────────┘
          │ HTTP (offer/answer, DELETE)      │ UDP (ICE, DTLS, RTP)
          ▼                                  ▼
    ┌──────────────────────────────────────────────────────┐
    │                  WHEP media server                    │
    └──────────────────────────────────────────────────────┘

Each driver owns a transport engine (ICE/DTLS/SRTP), supplied by the
caller as a ``module:callable`` factory implementing ``TransportEngine``.

Usage:
    # CLI
    whep-bench --url http://media:8080/whep --token secret \\
        --engine my_engine:create --count 20 --interval 250 --lifetime 60000

    # Programmatic
    from whep_bench import BenchPlan, BenchRunner, default_driver_factory

    events = asyncio.Queue()
    runner = BenchRunner(
        BenchPlan(count=20, interval=0.25, lifetime=60.0),
        default_driver_factory(url, token, engine_factory),
        events,
    )
    await runner.run()
    await runner.join()
"""

__version__ = "0.1.0"

from .errors import WhepError, UrlError, ServerError, SdpError, TransportError, NetworkError
from .stats import Stats, StatsSampler, sample
from .sdp import SessionDescription
from .engine import EngineOptions, TransportEngine, load_engine_factory
from .signaling import SignalingClient
from .driver import SessionDriver, SessionState, WhepEvent, WhepEventKind
from .config import BenchPlan, BenchScenario, Settings
from .runner import BenchEvent, BenchEventKind, BenchRunner, default_driver_factory
from .collector import BenchCollector, AggregateStats, consume
from .metrics import BenchMetrics

__all__ = [
    # Errors
    "WhepError",
    "UrlError",
    "ServerError",
    "SdpError",
    "TransportError",
    "NetworkError",
    # Stats
    "Stats",
    "StatsSampler",
    "sample",
    # Session
    "SessionDescription",
    "EngineOptions",
    "TransportEngine",
    "load_engine_factory",
    "SignalingClient",
    "SessionDriver",
    "SessionState",
    "WhepEvent",
    "WhepEventKind",
    # Runner
    "BenchPlan",
    "BenchScenario",
    "Settings",
    "BenchEvent",
    "BenchEventKind",
    "BenchRunner",
    "default_driver_factory",
    # Observers
    "BenchCollector",
    "AggregateStats",
    "consume",
    "BenchMetrics",
]
