# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""HTTP proxy server: owns the listening socket and spawns one Session per request.

All sessions share the event loop. ``stop()`` only closes the listening
socket; requests already accepted run to their own completion, and
``cleanup()`` waits for them (up to the shutdown timeout) before tearing
the runner down.
"""

import ipaddress
import logging
import socket

from aiohttp import web

from .config import Config
from .registry import Registry
from .session import DEFAULT_CYCLE_DELAY, Session
from .transport import UpstreamTransport

logger = logging.getLogger(__name__)

LISTEN_BACKLOG = 128


def _is_ipv6_literal(host: str) -> bool:
    try:
        return ipaddress.ip_address(host).version == 6
    except ValueError:
        return False


def create_listener(host: str, port: int) -> socket.socket:
    """Bind a listening TCP socket with address reuse.

    IPv4 unless *host* is an IPv6 literal; an IPv6 listener is v6-only.
    """
    if _is_ipv6_literal(host):
        sock = socket.socket(socket.AF_INET6, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        except OSError as e:
            logger.warning("setsockopt(IPV6_V6ONLY) failed: %s", e)
    else:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        host = host or "0.0.0.0"

    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    except OSError as e:
        logger.warning("setsockopt(SO_REUSEADDR) failed: %s", e)

    try:
        sock.bind((host, port))
        sock.listen(LISTEN_BACKLOG)
    except OSError as e:
        sock.close()
        logger.error("bind(%s, %d) failed: %s", host, port, e)
        raise
    sock.setblocking(False)
    return sock


class ProxyServer:
    def __init__(self, registry: Registry, upstream: UpstreamTransport,
                 host: str = "localhost", port: int = 8192,
                 cycle_delay: float = DEFAULT_CYCLE_DELAY,
                 shutdown_timeout: float = 60.0):
        self._registry = registry
        self._upstream = upstream
        self._host = host
        self._port = port
        self._cycle_delay = cycle_delay
        self._shutdown_timeout = shutdown_timeout

        self._sessions: set[Session] = set()
        self._sock: socket.socket | None = None
        self._bound_port = 0
        self._site: web.SockSite | None = None
        self._runner: web.AppRunner | None = None

        self._app = web.Application()
        self._app.router.add_route("*", "/{tail:.*}", self._handle)

    @classmethod
    def from_config(cls, config: Config, registry: Registry,
                    upstream: UpstreamTransport) -> "ProxyServer":
        return cls(registry, upstream,
                   host=config.bind_addr, port=config.bind_port,
                   cycle_delay=config.cycle_delay,
                   shutdown_timeout=config.shutdown_timeout)

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def port(self) -> int:
        """Bound port (useful when constructed with port 0)."""
        return self._bound_port or self._port

    @property
    def listening(self) -> bool:
        return self._site is not None

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    async def _handle(self, request: web.BaseRequest) -> web.StreamResponse:
        session = Session(request, self._registry, self._upstream,
                          cycle_delay=self._cycle_delay)
        self._sessions.add(session)
        try:
            return await session.run()
        finally:
            self._sessions.discard(session)

    async def start(self):
        """Bind, listen and begin accepting. Raises OSError on failure."""
        self._runner = web.AppRunner(self._app, handle_signals=False,
                                     shutdown_timeout=self._shutdown_timeout)
        await self._runner.setup()
        try:
            self._sock = create_listener(self._host, self._port)
            self._bound_port = self._sock.getsockname()[1]
        except OSError:
            await self._runner.cleanup()
            self._runner = None
            raise
        self._site = web.SockSite(self._runner, self._sock)
        await self._site.start()
        logger.info("Proxy listening on http://%s:%d",
                    f"[{self._host}]" if _is_ipv6_literal(self._host) else self._host,
                    self.port)

    async def stop(self):
        """Stop accepting; sessions already running are left alone."""
        if self._site is None:
            return
        await self._site.stop()
        self._site = None
        if self._sock is not None:
            self._sock.close()
        logger.info("Proxy stopped accepting (%d session(s) in flight)",
                    len(self._sessions))

    async def cleanup(self):
        """Wait for in-flight sessions, then release the runner."""
        await self.stop()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
