"""
Transport engine boundary.

The engine (ICE, DTLS/SRTP, RTP/RTCP, bandwidth estimation) is an external
collaborator driven as a poll/feed state machine:

    output = engine.poll_output()     # Event | Transmit | TimeoutAt
    engine.handle_input(Receive(...)) # or TimeoutElapsed(...)

Timestamps and deadlines are ``time.monotonic()`` seconds. Engines signal
failures by raising ``EngineError``.
"""

import abc
import importlib
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple, Union

from .sdp import SessionDescription

Address = Tuple[str, int]


class EngineError(Exception):
    """Raised by an engine that cannot accept an input or produce output."""


class MediaKind(Enum):
    AUDIO = "audio"
    VIDEO = "video"


class Direction(Enum):
    SEND_RECV = "sendrecv"
    SEND_ONLY = "sendonly"
    RECV_ONLY = "recvonly"
    INACTIVE = "inactive"


class IceConnectionState(Enum):
    NEW = "new"
    CHECKING = "checking"
    CONNECTED = "connected"
    COMPLETED = "completed"
    DISCONNECTED = "disconnected"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class EngineEvent:
    """Base class for protocol events returned by ``poll_output``."""


@dataclass(frozen=True)
class Connected(EngineEvent):
    """ICE and DTLS are up; media can flow."""


@dataclass(frozen=True)
class IceStateChange(EngineEvent):
    state: IceConnectionState


@dataclass(frozen=True)
class MediaIngressStats(EngineEvent):
    mid: Optional[str] = None
    rtt: Optional[float] = None    # milliseconds
    loss: Optional[float] = None


@dataclass(frozen=True)
class PeerStats(EngineEvent):
    peer_bytes_tx: int
    peer_bytes_rx: int
    ingress_loss_fraction: Optional[float] = None


@dataclass(frozen=True)
class RtpPacket(EngineEvent):
    payload: bytes


# ---------------------------------------------------------------------------
# Outputs and inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Transmit:
    contents: bytes
    source: Address
    destination: Address


@dataclass(frozen=True)
class TimeoutAt:
    deadline: float


@dataclass(frozen=True)
class Receive:
    contents: bytes
    source: Address
    destination: Address
    timestamp: float


@dataclass(frozen=True)
class TimeoutElapsed:
    timestamp: float


Output = Union[EngineEvent, Transmit, TimeoutAt]
Input = Union[Receive, TimeoutElapsed]


@dataclass(frozen=True)
class EngineOptions:
    """Construction options handed to an engine factory."""
    rtp_mode: bool = True
    stats_interval: float = 2.0
    initial_bitrate_kbps: int = 1000


class TransportEngine(abc.ABC):
    """Interface the session driver consumes."""

    @abc.abstractmethod
    def add_local_candidate(self, address: Address) -> None:
        """Register a local UDP host candidate."""

    @abc.abstractmethod
    def add_media(self, kind: MediaKind, direction: Direction, mid: str) -> None:
        """Queue a media section for the next offer."""

    @abc.abstractmethod
    def create_offer(self) -> str:
        """Render the pending changes as an SDP offer."""

    @abc.abstractmethod
    def accept_answer(self, answer: SessionDescription) -> None:
        """Apply the remote answer to the pending offer."""

    @abc.abstractmethod
    def poll_output(self) -> Output:
        """Next event, packet to send, or the deadline of the next wakeup."""

    @abc.abstractmethod
    def handle_input(self, data: Input) -> None:
        """Feed a received datagram or the passage of time."""


EngineFactory = Callable[[EngineOptions], TransportEngine]


def load_engine_factory(path: str) -> EngineFactory:
    """
    Resolve a ``package.module:callable`` string to an engine factory.

    Raises:
        ValueError: if the path is malformed or does not resolve to a callable.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Engine must be given as 'module:callable', got {path!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValueError(f"Cannot import engine module {module_name!r}: {e}") from e

    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"{path!r} is not a callable engine factory")
    return factory
