"""
Session Driver - runs one WHEP session against the target server.

The driver owns a transport engine, a UDP endpoint and a signaling client.
After ``prepare()`` negotiates the session, each ``recv()`` call advances
the drive loop by one step and returns what happened:

    poll engine ──► Event     ──► CONNECTED / DISCONNECTED / Stats / CONTINUE
                ──► Transmit  ──► send datagram, CONTINUE
                ──► TimeoutAt ──► race(socket recv, deadline) ──► feed engine, CONTINUE
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import httpx
import structlog

from .engine import (
    Connected,
    Direction,
    EngineError,
    EngineFactory,
    EngineOptions,
    IceConnectionState,
    IceStateChange,
    Input,
    MediaIngressStats,
    MediaKind,
    PeerStats,
    Receive,
    TimeoutAt,
    TimeoutElapsed,
    Transmit,
    TransportEngine,
)
from .errors import NetworkError, SdpError, TransportError, WhepError
from .signaling import SignalingClient
from .stats import Stats, StatsSampler, normalize_loss, normalize_rtt
from .udp import UdpEndpoint, local_ipv4_addresses

logger = structlog.get_logger(__name__)


class SessionState(Enum):
    """Session lifecycle states."""
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.DISCONNECTED, SessionState.FAILED)


class WhepEventKind(Enum):
    CONTINUE = "continue"
    CONNECTED = "connected"
    STATS = "stats"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class WhepEvent:
    """Result of one drive-loop step."""
    kind: WhepEventKind
    stats: Optional[Stats] = None


CONTINUE = WhepEvent(WhepEventKind.CONTINUE)
CONNECTED = WhepEvent(WhepEventKind.CONNECTED)
DISCONNECTED = WhepEvent(WhepEventKind.DISCONNECTED)


class SessionDriver:
    """
    Drives one WHEP egress session.

    Usage:
        driver = await SessionDriver.open(url, token, engine_factory)
        try:
            await driver.prepare()
            while True:
                event = await driver.recv()
                if event.kind is WhepEventKind.DISCONNECTED:
                    break
        finally:
            await driver.disconnect()
            await driver.close()
    """

    def __init__(
        self,
        engine: TransportEngine,
        endpoint: UdpEndpoint,
        signaling: SignalingClient,
        clock: Callable[[], float] = time.monotonic,
        local_host: Optional[str] = None,
    ):
        self.engine = engine
        self.endpoint = endpoint
        self.signaling = signaling
        self._clock = clock
        self._local_host = local_host

        self.state = SessionState.NEGOTIATING
        self.location: Optional[str] = None
        self.connected_at: Optional[float] = None
        self.last_rtt = 0
        self._sampler = StatsSampler(start_ms=self._now_ms())

    @classmethod
    async def open(
        cls,
        url: str,
        token: str,
        engine_factory: EngineFactory,
        options: Optional[EngineOptions] = None,
        bind_host: str = "0.0.0.0",
        http_client: Optional[httpx.AsyncClient] = None,
        http_timeout: float = 10.0,
    ) -> "SessionDriver":
        """
        Build a driver: validate the URL, bind a UDP socket and register a
        host candidate for every local IPv4 address.

        Raises:
            UrlError: malformed target URL.
            NetworkError: the UDP socket could not be bound.
        """
        signaling = SignalingClient(url, token, http_client=http_client, timeout=http_timeout)
        try:
            endpoint = await UdpEndpoint.bind(bind_host)
        except NetworkError:
            await signaling.close()
            raise

        port = endpoint.local_addr[1]
        if bind_host in ("0.0.0.0", ""):
            hosts = local_ipv4_addresses()
        else:
            hosts = [bind_host]

        try:
            engine = engine_factory(options or EngineOptions())
            for host in hosts:
                engine.add_local_candidate((host, port))
        except EngineError as e:
            endpoint.close()
            await signaling.close()
            raise TransportError(f"engine setup failed: {e}") from e

        return cls(engine, endpoint, signaling, local_host=hosts[0] if hosts else None)

    async def prepare(self):
        """
        Negotiate the session: offer audio+video receive-only, send it to the
        server, apply the answer. One shot, no retry.

        Raises:
            ServerError, SdpError, TransportError: negotiation failed; the
                session is FAILED.
        """
        try:
            self.engine.add_media(MediaKind.AUDIO, Direction.RECV_ONLY, "audio_0")
            self.engine.add_media(MediaKind.VIDEO, Direction.RECV_ONLY, "video_0")
            try:
                offer = self.engine.create_offer()
            except EngineError as e:
                raise TransportError(f"engine could not create offer: {e}") from e
            logger.debug("WHEP offer created", offer=offer)

            answer, location = await self.signaling.negotiate(offer)
            # Teardown must still be possible if applying the answer fails.
            self.location = location

            try:
                self.engine.accept_answer(answer)
            except EngineError as e:
                raise SdpError(f"engine rejected answer: {e}") from e
        except WhepError:
            self.state = SessionState.FAILED
            raise

        logger.info("WHEP session negotiated", location=location, media=answer.summary())

    async def recv(self) -> WhepEvent:
        """
        Advance the drive loop by one step.

        Raises:
            TransportError: the engine rejected an input or failed to poll.
            NetworkError: the socket failed.
        """
        try:
            output = self.engine.poll_output()
        except EngineError as e:
            self.state = SessionState.FAILED
            raise TransportError(f"engine poll failed: {e}") from e

        if isinstance(output, Transmit):
            self.endpoint.send(output.contents, output.destination)
            return CONTINUE

        if isinstance(output, TimeoutAt):
            await self._wait_for_input(output.deadline)
            return CONTINUE

        return self._handle_event(output)

    async def _wait_for_input(self, deadline: float):
        wait = deadline - self._clock()
        if wait <= 0:
            # Deadline already passed: drive time forwards straight away.
            try:
                self.engine.handle_input(TimeoutElapsed(self._clock()))
            except EngineError as e:
                logger.error("Engine rejected timeout input", error=str(e))
            return

        try:
            data, source = await asyncio.wait_for(self.endpoint.recv(), timeout=wait)
        except asyncio.TimeoutError:
            received: Input = TimeoutElapsed(self._clock())
        except NetworkError as e:
            logger.error("Network error", error=str(e))
            self.state = SessionState.FAILED
            raise
        else:
            received = Receive(
                contents=data,
                source=source,
                destination=self._destination(),
                timestamp=self._clock(),
            )

        try:
            self.engine.handle_input(received)
        except EngineError as e:
            self.state = SessionState.FAILED
            raise TransportError(f"engine rejected input: {e}") from e

    def _destination(self):
        host, port = self.endpoint.local_addr
        # A wildcard bind hides the receiving interface; use the first candidate.
        return self._local_host or host, port

    def _handle_event(self, event) -> WhepEvent:
        if isinstance(event, Connected):
            if self.connected_at is not None:
                return CONTINUE
            self.connected_at = self._clock()
            self.state = SessionState.CONNECTED
            return CONNECTED

        if isinstance(event, IceStateChange):
            logger.info("ICE connection state change", state=event.state.value)
            if event.state is IceConnectionState.DISCONNECTED:
                self.state = SessionState.DISCONNECTED
                return DISCONNECTED
            return CONTINUE

        if isinstance(event, MediaIngressStats):
            self.last_rtt = normalize_rtt(event.rtt, self.last_rtt)
            return CONTINUE

        if isinstance(event, PeerStats):
            send_kbps, recv_kbps = self._sampler.update(
                event.peer_bytes_tx, event.peer_bytes_rx, self._now_ms()
            )
            return WhepEvent(
                WhepEventKind.STATS,
                Stats(
                    send_kbps=send_kbps,
                    recv_kbps=recv_kbps,
                    live_ms=self.live_ms,
                    rtt_ms=self.last_rtt,
                    lost=normalize_loss(event.ingress_loss_fraction),
                ),
            )

        # RtpPacket and anything else the engine reports are not measured here.
        return CONTINUE

    @property
    def live_ms(self) -> int:
        if self.connected_at is None:
            return 0
        return int((self._clock() - self.connected_at) * 1000)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def disconnect(self):
        """
        Tear down the server-side resource, at most once. No-op when
        negotiation never produced a location.

        Raises:
            ServerError: the DELETE failed (the location is consumed anyway).
        """
        location, self.location = self.location, None
        if location is None:
            return
        if not self.state.is_terminal:
            self.state = SessionState.DISCONNECTED
        await self.signaling.teardown(location)
        logger.info("WHEP session torn down", location=location)

    async def close(self):
        """Release the socket and HTTP client."""
        self.endpoint.close()
        await self.signaling.close()
