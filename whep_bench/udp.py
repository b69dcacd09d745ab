"""UDP endpoint for one session, built on asyncio datagram transports."""

import asyncio
import socket
from typing import List, Optional, Tuple, Union

import psutil
import structlog

from .engine import Address
from .errors import NetworkError

logger = structlog.get_logger(__name__)


class _DatagramQueue(asyncio.DatagramProtocol):
    """Pushes every datagram (or socket error) onto a queue."""

    def __init__(self, queue: "asyncio.Queue[Union[Tuple[bytes, Address], Exception]]"):
        self._queue = queue

    def datagram_received(self, data: bytes, addr: Address):
        self._queue.put_nowait((data, (addr[0], addr[1])))

    def error_received(self, exc: Exception):
        # sendto failures and ICMP errors land here; the socket stays usable.
        logger.debug("UDP socket error ignored", error=str(exc))

    def connection_lost(self, exc: Optional[Exception]):
        if exc is not None:
            self._queue.put_nowait(exc)


class UdpEndpoint:
    """
    A bound UDP socket with an awaitable ``recv``.

    Usage:
        endpoint = await UdpEndpoint.bind("0.0.0.0")
        endpoint.send(b"...", ("203.0.113.5", 5000))
        data, source = await endpoint.recv()
        endpoint.close()
    """

    def __init__(self, transport: asyncio.DatagramTransport, queue: asyncio.Queue):
        self._transport = transport
        self._queue = queue

    @classmethod
    async def bind(cls, host: str = "0.0.0.0", port: int = 0) -> "UdpEndpoint":
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramQueue(queue),
                local_addr=(host, port),
                family=socket.AF_INET,
            )
        except OSError as e:
            raise NetworkError(f"cannot bind UDP socket on {host}:{port}: {e}") from e
        return cls(transport, queue)

    @property
    def local_addr(self) -> Address:
        host, port = self._transport.get_extra_info("sockname")[:2]
        return host, port

    def send(self, data: bytes, destination: Address) -> bool:
        """Queue a datagram for sending. Failures are logged, never raised."""
        try:
            self._transport.sendto(data, destination)
        except (OSError, RuntimeError) as e:
            logger.debug(
                "UDP send failed",
                destination=f"{destination[0]}:{destination[1]}",
                size=len(data),
                error=str(e),
            )
            return False
        return True

    async def recv(self) -> Tuple[bytes, Address]:
        """
        Wait for the next datagram.

        Raises:
            NetworkError: if the socket reported an error.
        """
        item = await self._queue.get()
        if isinstance(item, Exception):
            raise NetworkError(f"UDP receive failed: {item}") from item
        return item

    def close(self):
        self._transport.close()


def local_ipv4_addresses() -> List[str]:
    """IPv4 addresses of every local interface, loopback included."""
    addresses = []
    for _name, entries in psutil.net_if_addrs().items():
        for entry in entries:
            if entry.family == socket.AF_INET and entry.address not in addresses:
                addresses.append(entry.address)
    return addresses
