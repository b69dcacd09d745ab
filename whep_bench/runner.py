"""
Bench Runner - ramps up WHEP sessions and funnels their lifecycle events
into one queue.

Each session runs as its own asyncio task:

    Connecting(id) ──► open + prepare ──► drive loop (lifetime watchdog)
                                      └─► teardown ──► Disconnected(id)

``Disconnected`` is published exactly once per session on every path:
normal end, transport disconnect, error, lifetime expiry or cancellation.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

import structlog

from .config import BenchPlan
from .driver import SessionDriver, WhepEventKind
from .engine import EngineFactory, EngineOptions
from .errors import WhepError
from .stats import Stats

logger = structlog.get_logger(__name__)

DriverFactory = Callable[[int], Awaitable[SessionDriver]]


class BenchEventKind(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STATS = "stats"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class BenchEvent:
    """One lifecycle or stats transition of one session."""
    kind: BenchEventKind
    session_id: int
    stats: Optional[Stats] = None
    reason: Optional[str] = None    # why a session failed, if it did
    timestamp: float = 0.0

    @classmethod
    def connecting(cls, session_id: int) -> "BenchEvent":
        return cls(BenchEventKind.CONNECTING, session_id, timestamp=time.monotonic())

    @classmethod
    def connected(cls, session_id: int) -> "BenchEvent":
        return cls(BenchEventKind.CONNECTED, session_id, timestamp=time.monotonic())

    @classmethod
    def stats_update(cls, session_id: int, stats: Stats) -> "BenchEvent":
        return cls(BenchEventKind.STATS, session_id, stats=stats, timestamp=time.monotonic())

    @classmethod
    def disconnected(cls, session_id: int, reason: Optional[str] = None) -> "BenchEvent":
        return cls(
            BenchEventKind.DISCONNECTED, session_id, reason=reason, timestamp=time.monotonic()
        )


def default_driver_factory(
    url: str,
    token: str,
    engine_factory: EngineFactory,
    options: Optional[EngineOptions] = None,
    bind_host: str = "0.0.0.0",
    http_timeout: float = 10.0,
) -> DriverFactory:
    """Driver factory that opens a real UDP socket and HTTP client per session."""

    async def create(session_id: int) -> SessionDriver:
        return await SessionDriver.open(
            url,
            token,
            engine_factory,
            options=options,
            bind_host=bind_host,
            http_timeout=http_timeout,
        )

    return create


class BenchRunner:
    """
    Orchestrates the benchmark ramp-up.

    Usage:
        events = asyncio.Queue()
        runner = BenchRunner(plan, driver_factory, events)
        await runner.run()     # returns once every session has been started
        await runner.join()    # waits for every session to end
    """

    def __init__(
        self,
        plan: BenchPlan,
        driver_factory: DriverFactory,
        events: "asyncio.Queue[BenchEvent]",
    ):
        self.plan = plan
        self._driver_factory = driver_factory
        self._events = events
        self._count = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def started(self) -> int:
        """Number of sessions started so far."""
        return self._count

    @property
    def active(self) -> int:
        """Number of session tasks still running."""
        return len(self._tasks)

    async def run(self):
        """Start ``plan.count`` sessions, ``plan.interval`` apart."""
        logger.info(
            "Starting benchmark ramp-up",
            sessions=self.plan.count,
            interval=self.plan.interval,
            lifetime=self.plan.lifetime,
        )

        while self._count < self.plan.count:
            self._count += 1
            session_id = self._count

            await self._events.put(BenchEvent.connecting(session_id))

            task = asyncio.create_task(
                self._run_session(session_id), name=f"whep-session-{session_id}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

            if self._count < self.plan.count:
                await asyncio.sleep(self.plan.interval)

        logger.info("Ramp-up complete", started=self._count, active=self.active)

    async def join(self):
        """Wait for every started session to finish."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def stop(self):
        """Cancel every running session; each still publishes Disconnected."""
        logger.info("Stopping sessions", active=self.active)
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_session(self, session_id: int):
        log = logger.bind(session_id=session_id)
        driver: Optional[SessionDriver] = None
        reason: Optional[str] = None

        try:
            driver = await self._driver_factory(session_id)
            await driver.prepare()
            try:
                await asyncio.wait_for(
                    self._drive(session_id, driver), timeout=self.plan.lifetime
                )
            except asyncio.TimeoutError:
                log.info("Disconnecting after lifetime expired", lifetime=self.plan.lifetime)

        except WhepError as e:
            reason = f"{type(e).__name__}: {e}"
            log.error("Session failed", error=reason)

        except asyncio.CancelledError:
            reason = "cancelled"
            log.info("Session cancelled")
            raise

        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
            log.exception("Unexpected session error")

        finally:
            try:
                if driver is not None:
                    await self._teardown(driver, log)
            except asyncio.CancelledError:
                reason = reason or "cancelled"
                log.info("Session cancelled during teardown")
                raise
            finally:
                await self._events.put(BenchEvent.disconnected(session_id, reason))

    async def _drive(self, session_id: int, driver: SessionDriver):
        while True:
            event = await driver.recv()

            if event.kind is WhepEventKind.CONNECTED:
                logger.info("Session connected", session_id=session_id)
                await self._events.put(BenchEvent.connected(session_id))

            elif event.kind is WhepEventKind.STATS:
                logger.debug("Session stats", session_id=session_id, **event.stats.to_dict())
                await self._events.put(BenchEvent.stats_update(session_id, event.stats))

            elif event.kind is WhepEventKind.DISCONNECTED:
                logger.info("Session disconnected by transport", session_id=session_id)
                return

    @staticmethod
    async def _teardown(driver: SessionDriver, log):
        try:
            await driver.disconnect()
        except WhepError as e:
            log.warning("Teardown failed", error=str(e))
        except Exception as e:
            log.warning("Teardown failed unexpectedly", error=f"{type(e).__name__}: {e}")
        finally:
            await driver.close()
