import asyncio
import socket
import unittest
from collections import namedtuple
from unittest.mock import patch

from whep_bench.driver import SessionDriver, SessionState, WhepEventKind
from whep_bench.engine import (
    EngineError,
    EngineOptions,
    TimeoutElapsed,
    Transmit,
    load_engine_factory,
)
from whep_bench.errors import TransportError, UrlError
from whep_bench.signaling import SignalingClient
from whep_bench.udp import UdpEndpoint, local_ipv4_addresses

from fakes import TOKEN, URL, ScriptedEngine

snicaddr = namedtuple("snicaddr", "family address netmask broadcast ptp")

INTERFACES = {
    "lo": [snicaddr(socket.AF_INET, "127.0.0.1", "255.0.0.0", None, None)],
    "eth0": [
        snicaddr(socket.AF_INET6, "fe80::1", None, None, None),
        snicaddr(socket.AF_INET, "192.0.2.10", "255.255.255.0", None, None),
    ],
}


class TestUdpEndpoint(unittest.IsolatedAsyncioTestCase):

    async def test_loopback_roundtrip(self):
        a = await UdpEndpoint.bind("127.0.0.1")
        b = await UdpEndpoint.bind("127.0.0.1")
        try:
            self.assertNotEqual(a.local_addr[1], 0)
            self.assertTrue(a.send(b"ping", b.local_addr))

            data, source = await asyncio.wait_for(b.recv(), timeout=2)

            self.assertEqual(data, b"ping")
            self.assertEqual(source, a.local_addr)
        finally:
            a.close()
            b.close()

    async def test_socket_errors_are_not_receive_failures(self):
        endpoint = await UdpEndpoint.bind("127.0.0.1")
        try:
            endpoint._transport.get_protocol().error_received(OSError(111, "Connection refused"))

            with self.assertRaises(asyncio.TimeoutError):
                await asyncio.wait_for(endpoint.recv(), timeout=0.05)
        finally:
            endpoint.close()

    async def test_failed_send_does_not_fail_session(self):
        endpoint = await UdpEndpoint.bind("127.0.0.1")
        port = endpoint.local_addr[1]
        # Broadcast without SO_BROADCAST is refused by the kernel
        engine = ScriptedEngine([Transmit(b"stun", ("127.0.0.1", port), ("255.255.255.255", 9))])
        driver = SessionDriver(engine, endpoint, SignalingClient(URL, TOKEN))
        try:
            first = await driver.recv()
            second = await asyncio.wait_for(driver.recv(), timeout=2)

            self.assertIs(first.kind, WhepEventKind.CONTINUE)
            self.assertIs(second.kind, WhepEventKind.CONTINUE)
            self.assertIsNot(driver.state, SessionState.FAILED)
            self.assertIsInstance(engine.inputs[-1], TimeoutElapsed)
        finally:
            await driver.close()

    def test_local_addresses_are_ipv4_only(self):
        with patch("whep_bench.udp.psutil.net_if_addrs", return_value=INTERFACES):
            self.assertEqual(local_ipv4_addresses(), ["127.0.0.1", "192.0.2.10"])


class TestSessionDriverOpen(unittest.IsolatedAsyncioTestCase):

    async def test_registers_host_candidates(self):
        engines = []

        def factory(options):
            engines.append(ScriptedEngine())
            return engines[-1]

        with patch("whep_bench.udp.psutil.net_if_addrs", return_value=INTERFACES):
            driver = await SessionDriver.open(URL, TOKEN, factory)
        try:
            port = driver.endpoint.local_addr[1]
            self.assertEqual(engines[0].candidates, [("127.0.0.1", port), ("192.0.2.10", port)])
        finally:
            await driver.close()

    async def test_explicit_bind_host(self):
        engine = ScriptedEngine()
        driver = await SessionDriver.open(URL, TOKEN, lambda options: engine, bind_host="127.0.0.1")
        try:
            self.assertEqual(engine.candidates, [("127.0.0.1", driver.endpoint.local_addr[1])])
        finally:
            await driver.close()

    async def test_bad_url(self):
        with self.assertRaises(UrlError):
            await SessionDriver.open("whep://nowhere", TOKEN, lambda options: ScriptedEngine())

    async def test_engine_setup_failure(self):
        def factory(options):
            raise EngineError("no codecs")

        with self.assertRaises(TransportError):
            await SessionDriver.open(URL, TOKEN, factory, bind_host="127.0.0.1")

    async def test_options_reach_factory(self):
        received = []

        def factory(options):
            received.append(options)
            return ScriptedEngine()

        options = EngineOptions(stats_interval=1.0)
        driver = await SessionDriver.open(URL, TOKEN, factory, options=options, bind_host="127.0.0.1")
        await driver.close()
        self.assertEqual(received, [options])


class TestLoadEngineFactory(unittest.TestCase):

    def test_resolves_callable(self):
        self.assertIs(load_engine_factory("fakes:ScriptedEngine"), ScriptedEngine)

    def test_rejects_bad_paths(self):
        for path in ("fakes", "fakes:", ":ScriptedEngine", "no_such_module_xyz:create", "fakes:URL"):
            with self.subTest(path=path):
                with self.assertRaises(ValueError):
                    load_engine_factory(path)


if __name__ == '__main__':
    unittest.main()
