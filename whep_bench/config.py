"""
Benchmark Configuration

Settings come from the environment (``WHEP_BENCH_*``) and CLI overrides;
the ramp-up plan is an immutable ``BenchPlan``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .engine import EngineOptions


class Settings(BaseSettings):
    """Benchmark settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="WHEP_BENCH_", case_sensitive=False)

    # Target
    url: str
    token: str = ""

    # Plan
    count: int = 1
    interval_ms: int = 1000
    lifetime_ms: int = 60000

    # Transport
    engine: str = ""                # "package.module:factory"
    bind_host: str = "0.0.0.0"
    stats_interval_ms: int = 2000
    initial_bitrate_kbps: int = 1000
    http_timeout: float = 10.0      # seconds

    # Observability
    metrics_port: int = 0           # 0 = disabled
    live_stats_interval: float = 5.0
    output_file: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = False

    def engine_options(self) -> EngineOptions:
        return EngineOptions(
            rtp_mode=True,
            stats_interval=self.stats_interval_ms / 1000.0,
            initial_bitrate_kbps=self.initial_bitrate_kbps,
        )


class BenchScenario(Enum):
    """Pre-defined ramp-up profiles."""
    SMOKE = "smoke"     # One session, establish the baseline
    LIGHT = "light"     # 10 sessions, one per second
    MEDIUM = "medium"   # 50 sessions, 5 per second
    HEAVY = "heavy"     # 200 sessions, 10 per second
    SPIKE = "spike"     # 200 sessions at once


SCENARIOS: Dict[BenchScenario, Dict[str, float]] = {
    BenchScenario.SMOKE: {"count": 1, "interval": 0.0, "lifetime": 30.0},
    BenchScenario.LIGHT: {"count": 10, "interval": 1.0, "lifetime": 120.0},
    BenchScenario.MEDIUM: {"count": 50, "interval": 0.2, "lifetime": 300.0},
    BenchScenario.HEAVY: {"count": 200, "interval": 0.1, "lifetime": 300.0},
    BenchScenario.SPIKE: {"count": 200, "interval": 0.0, "lifetime": 60.0},
}


@dataclass(frozen=True)
class BenchPlan:
    """How many sessions to start, how far apart, and how long each lives."""
    count: int
    interval: float     # seconds between session starts
    lifetime: float     # seconds each session is kept alive

    def __post_init__(self):
        if self.count < 0:
            raise ValueError(f"count must be >= 0, got {self.count}")
        if self.interval < 0:
            raise ValueError(f"interval must be >= 0, got {self.interval}")
        if self.lifetime <= 0:
            raise ValueError(f"lifetime must be > 0, got {self.lifetime}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "BenchPlan":
        return cls(
            count=settings.count,
            interval=settings.interval_ms / 1000.0,
            lifetime=settings.lifetime_ms / 1000.0,
        )

    @classmethod
    def from_scenario(cls, scenario: BenchScenario, **overrides) -> "BenchPlan":
        """Create a plan from a predefined scenario."""
        values = dict(SCENARIOS[scenario])
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def ramp_up_time(self) -> float:
        """Seconds between the first and last session start."""
        return max(self.count - 1, 0) * self.interval

    @property
    def total_duration(self) -> float:
        return self.ramp_up_time + self.lifetime if self.count else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "interval_seconds": self.interval,
            "lifetime_seconds": self.lifetime,
            "total_duration_seconds": self.total_duration,
        }
