# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Listener lifecycle: real sockets, graceful stop, bind failures."""

import asyncio
import os
import socket
import sys

import aiohttp
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "proxy"))

from power_switch.http_client import PDUHttpClient
from power_switch.proxy import ProxyServer, create_listener
from power_switch.transport import TransportError

OFF_1 = "/control_outlet.htm?outlet0=1&op=1"
ON_1 = "/control_outlet.htm?outlet0=1&op=0"


def _ipv6_available() -> bool:
    if not socket.has_ipv6:
        return False
    try:
        sock = socket.socket(socket.AF_INET6, socket.SOCK_STREAM)
        sock.bind(("::1", 0))
        sock.close()
        return True
    except OSError:
        return False


# ---------------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------------

class TestCreateListener:
    def test_ipv4(self):
        sock = create_listener("127.0.0.1", 0)
        try:
            assert sock.family == socket.AF_INET
            assert sock.getsockname()[1] > 0
            assert sock.getsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR)
        finally:
            sock.close()

    @pytest.mark.skipif(not _ipv6_available(), reason="IPv6 not available")
    def test_ipv6_is_v6_only(self):
        sock = create_listener("::1", 0)
        try:
            assert sock.family == socket.AF_INET6
            assert sock.getsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY) == 1
        finally:
            sock.close()

    def test_address_in_use(self):
        taken = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        taken.bind(("127.0.0.1", 0))
        taken.listen(1)
        try:
            with pytest.raises(OSError):
                create_listener("127.0.0.1", taken.getsockname()[1])
        finally:
            taken.close()

    def test_unresolvable_host(self):
        with pytest.raises(OSError):
            create_listener("no-such-host.invalid", 0)


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------

class TestProxyLifecycle:
    @pytest.mark.asyncio
    async def test_serves_on_bound_port(self, registry, upstream):
        proxy = ProxyServer(registry, upstream, host="127.0.0.1", port=0)
        await proxy.start()
        try:
            assert proxy.listening
            assert proxy.port > 0
            async with aiohttp.ClientSession() as s:
                async with s.get(f"http://127.0.0.1:{proxy.port}/ch3?off") as resp:
                    assert resp.status == 200
                    assert await resp.text() == "ch3: off"
        finally:
            await proxy.cleanup()
        assert not proxy.listening
        assert upstream.calls == ["/control_outlet.htm?outlet2=1&op=1"]

    @pytest.mark.asyncio
    async def test_start_fails_when_port_taken(self, registry, upstream):
        first = ProxyServer(registry, upstream, host="127.0.0.1", port=0)
        await first.start()
        try:
            second = ProxyServer(registry, upstream, host="127.0.0.1", port=first.port)
            with pytest.raises(OSError):
                await second.start()
            assert not second.listening
        finally:
            await first.cleanup()

    @pytest.mark.asyncio
    async def test_stop_refuses_new_connections(self, registry, upstream):
        proxy = ProxyServer(registry, upstream, host="127.0.0.1", port=0)
        await proxy.start()
        port = proxy.port
        await proxy.stop()
        try:
            async with aiohttp.ClientSession() as s:
                with pytest.raises(aiohttp.ClientConnectionError):
                    await s.get(f"http://127.0.0.1:{port}/show")
        finally:
            await proxy.cleanup()

    @pytest.mark.asyncio
    async def test_in_flight_cycle_completes_after_stop(self, registry, upstream):
        proxy = ProxyServer(registry, upstream, host="127.0.0.1", port=0,
                            cycle_delay=0.3)
        await proxy.start()

        async def cycle():
            async with aiohttp.ClientSession() as s:
                async with s.get(f"http://127.0.0.1:{proxy.port}/ch1?cycle") as resp:
                    return resp.status, await resp.text()

        task = asyncio.create_task(cycle())
        while not upstream.calls:
            await asyncio.sleep(0.01)
        assert proxy.active_sessions == 1

        await proxy.cleanup()
        status, text = await task
        assert status == 200
        assert text == "ch1: power cycled"
        assert upstream.calls == ["/control_outlet.htm?outlet0=1&op=1",
                                  "/control_outlet.htm?outlet0=1&op=0"]
        assert proxy.active_sessions == 0

    @pytest.mark.asyncio
    async def test_against_mock_pdu(self, registry, mock_pdu):
        client = PDUHttpClient("127.0.0.1", mock_pdu.port, "admin", "secret")
        proxy = ProxyServer(registry, client, host="127.0.0.1", port=0)
        await proxy.start()
        try:
            async with aiohttp.ClientSession() as s:
                base = f"http://127.0.0.1:{proxy.port}"
                async with s.get(base + "/set/scene2") as resp:
                    assert await resp.text() == "Ok"
                async with s.get(base + "/show") as resp:
                    text = await resp.text()
        finally:
            await proxy.cleanup()
        assert "ch1: off\nch2: on\n" in text
        assert mock_pdu.control_requests() == [
            "/control_outlet.htm?outlet0=1&op=1",
            "/control_outlet.htm?outlet1=1&op=0",
        ]


# ---------------------------------------------------------------------------
# Failures and disconnects
# ---------------------------------------------------------------------------

async def _wait_idle(proxy: ProxyServer, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while proxy.active_sessions and loop.time() < deadline:
        await asyncio.sleep(0.01)


class TestFailuresAndDisconnects:
    @pytest.mark.asyncio
    async def test_accepts_after_status_failure(self, registry, upstream):
        upstream.failures["/status.xml"] = TransportError("connection refused")
        proxy = ProxyServer(registry, upstream, host="127.0.0.1", port=0)
        await proxy.start()
        try:
            async with aiohttp.ClientSession() as s:
                base = f"http://127.0.0.1:{proxy.port}"
                async with s.get(base + "/show") as resp:
                    assert resp.status == 500
                    assert "http-transaction status failed" in await resp.text()
                async with s.get(base + "/ch1?on") as resp:
                    assert resp.status == 200
                    assert await resp.text() == "ch1: on"
        finally:
            await proxy.cleanup()
        assert upstream.calls == ["/status.xml", ON_1]

    @pytest.mark.asyncio
    async def test_cycle_completes_after_client_disconnects(self, registry, upstream):
        proxy = ProxyServer(registry, upstream, host="127.0.0.1", port=0,
                            cycle_delay=0.3)
        await proxy.start()
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", proxy.port)
            writer.write(b"GET /ch1?cycle HTTP/1.1\r\nHost: localhost\r\n\r\n")
            await writer.drain()
            while not upstream.calls:
                await asyncio.sleep(0.01)
            writer.close()
            await writer.wait_closed()

            await _wait_idle(proxy)
            assert proxy.active_sessions == 0
            assert upstream.calls == [OFF_1, ON_1]
        finally:
            await proxy.cleanup()

    @pytest.mark.asyncio
    async def test_post_gets_no_bytes(self, registry, upstream):
        proxy = ProxyServer(registry, upstream, host="127.0.0.1", port=0)
        await proxy.start()
        try:
            reader, writer = await asyncio.open_connection("127.0.0.1", proxy.port)
            writer.write(b"POST /ch1?on HTTP/1.1\r\nHost: localhost\r\n"
                         b"Content-Length: 0\r\n\r\n")
            await writer.drain()
            data = await asyncio.wait_for(reader.read(), 2)
            writer.close()
        finally:
            await proxy.cleanup()
        assert data == b""
        assert upstream.calls == []
