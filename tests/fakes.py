"""Scripted stand-ins for the transport engine, UDP socket and WHEP server."""

import asyncio
import time
from collections import deque

import httpx

from whep_bench.engine import EngineError, TimeoutAt, TransportEngine

URL = "http://host:8080/whep"
TOKEN = "secret-token"

OFFER = (
    "v=0\r\n"
    "o=- 4611731400430051336 2 IN IP4 0.0.0.0\r\n"
    "s=-\r\n"
    "t=0 0\r\n"
    "m=audio 9 UDP/TLS/RTP/SAVPF 111\r\n"
    "c=IN IP4 0.0.0.0\r\n"
    "a=mid:audio_0\r\n"
    "a=recvonly\r\n"
    "m=video 9 UDP/TLS/RTP/SAVPF 96\r\n"
    "c=IN IP4 0.0.0.0\r\n"
    "a=mid:video_0\r\n"
    "a=recvonly\r\n"
)

ANSWER = (
    "v=0\r\n"
    "o=- 1 1 IN IP4 10.0.0.1\r\n"
    "s=-\r\n"
    "t=0 0\r\n"
    "a=group:BUNDLE audio_0 video_0\r\n"
    "m=audio 9 UDP/TLS/RTP/SAVPF 111\r\n"
    "c=IN IP4 10.0.0.1\r\n"
    "a=mid:audio_0\r\n"
    "a=sendonly\r\n"
    "a=rtpmap:111 opus/48000/2\r\n"
    "a=candidate:1 1 UDP 2130706431 10.0.0.1 10000 typ host\r\n"
    "m=video 9 UDP/TLS/RTP/SAVPF 96\r\n"
    "c=IN IP4 10.0.0.1\r\n"
    "a=mid:video_0\r\n"
    "a=sendonly\r\n"
    "a=rtpmap:96 VP8/90000\r\n"
)


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class ScriptedEngine(TransportEngine):
    """
    Returns the scripted outputs in order (raising any exception in the
    script), then asks to be woken again every ``tick`` seconds forever.
    """

    def __init__(self, script=None, clock=time.monotonic, tick=0.01):
        self.outputs = deque(script or [])
        self.clock = clock
        self.tick = tick
        self.candidates = []
        self.media = []
        self.inputs = []
        self.answer = None
        self.offer_error = None
        self.answer_error = None
        self.input_error = None

    def add_local_candidate(self, address):
        self.candidates.append(address)

    def add_media(self, kind, direction, mid):
        self.media.append((kind, direction, mid))

    def create_offer(self):
        if self.offer_error:
            raise self.offer_error
        return OFFER

    def accept_answer(self, answer):
        if self.answer_error:
            raise self.answer_error
        self.answer = answer

    def poll_output(self):
        if self.outputs:
            item = self.outputs.popleft()
            if isinstance(item, Exception):
                raise item
            return item
        return TimeoutAt(self.clock() + self.tick)

    def handle_input(self, data):
        if self.input_error:
            raise self.input_error
        self.inputs.append(data)


class BrokenEngine(ScriptedEngine):
    def poll_output(self):
        raise EngineError("poll exploded")


class FakeEndpoint:
    """In-memory UdpEndpoint."""

    def __init__(self, local_addr=("192.0.2.10", 40000), send_ok=True):
        self.local_addr = local_addr
        self.send_ok = send_ok
        self.sent = []
        self.closed = False
        self._queue = asyncio.Queue()

    def send(self, data, destination):
        self.sent.append((data, destination))
        return self.send_ok

    async def recv(self):
        item = await self._queue.get()
        if isinstance(item, Exception):
            raise item
        return item

    def deliver(self, data, source):
        self._queue.put_nowait((data, source))

    def fail(self, exc):
        self._queue.put_nowait(exc)

    def close(self):
        self.closed = True


class FakeWhepServer:
    """httpx.MockTransport handler playing the WHEP endpoint."""

    def __init__(
        self, location="/whep/resource/1", status=201, answer=ANSWER, delete_status=200, delete_delay=0.0
    ):
        self.location = location
        self.status = status
        self.answer = answer
        self.delete_status = delete_status
        self.delete_delay = delete_delay
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            headers = {"content-type": "application/sdp"}
            if self.location:
                headers["location"] = self.location
            return httpx.Response(self.status, text=self.answer, headers=headers)
        if request.method == "DELETE":
            return httpx.Response(self.delete_status)
        return httpx.Response(405)

    async def _async_handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "DELETE" and self.delete_delay:
            await asyncio.sleep(self.delete_delay)
        return self.handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self._async_handler))

    @property
    def posts(self):
        return [r for r in self.requests if r.method == "POST"]

    @property
    def deletes(self):
        return [r for r in self.requests if r.method == "DELETE"]
