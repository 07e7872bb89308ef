# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Simulated Argus PDU for testing without real hardware.

Serves the two endpoints the proxy uses, checks Basic auth the way the
device does, and keeps a log of every request in arrival order.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from http import HTTPStatus

from aiohttp import BasicAuth, web

from .pdu_model import CONTROL_PATH, OUTLET_COUNT, STATUS_PATH, Op, status_element

logger = logging.getLogger(__name__)


@dataclass
class LoggedRequest:
    path_qs: str
    authorization: str
    received: float   # time.monotonic() on arrival
    answered: float | None = None


class MockPDU:
    """Eight outlets, all on at start."""

    def __init__(self, username: str = "admin", password: str = "admin",
                 num_outlets: int = OUTLET_COUNT):
        self._username = username
        self._password = password
        self.outlets: dict[int, bool] = {n: True for n in range(num_outlets)}
        self.requests: list[LoggedRequest] = []

        # Fault injection
        self.latency: dict[str, float] = {}     # path -> seconds
        self.fail_status: int | None = None     # answer everything with this
        self.status_body: bytes | None = None   # replace /status.xml body

        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._port = 0

        self.app = web.Application()
        self.app.router.add_get(STATUS_PATH, self._handle_status)
        self.app.router.add_get(CONTROL_PATH, self._handle_control)

    @property
    def port(self) -> int:
        return self._port

    # --- Request handling ---

    def _authorized(self, request: web.Request) -> bool:
        try:
            auth = BasicAuth.decode(request.headers.get("Authorization", ""))
        except ValueError:
            return False
        return auth.login == self._username and auth.password == self._password

    async def _begin(self, request: web.Request) -> tuple[LoggedRequest, web.Response | None]:
        entry = LoggedRequest(request.path_qs,
                              request.headers.get("Authorization", ""),
                              time.monotonic())
        self.requests.append(entry)
        delay = self.latency.get(request.path, 0)
        if delay:
            await asyncio.sleep(delay)
        if not self._authorized(request):
            return entry, web.Response(status=HTTPStatus.UNAUTHORIZED,
                                       headers={"WWW-Authenticate": 'Basic realm="PDU"'})
        if self.fail_status is not None:
            return entry, web.Response(status=self.fail_status)
        return entry, None

    async def _handle_status(self, request: web.Request) -> web.Response:
        entry, error = await self._begin(request)
        entry.answered = time.monotonic()
        if error is not None:
            return error
        return web.Response(body=self.status_body or self.render_status(),
                            content_type="text/xml")

    async def _handle_control(self, request: web.Request) -> web.Response:
        entry, error = await self._begin(request)
        entry.answered = time.monotonic()
        if error is not None:
            return error
        try:
            op = Op(int(request.query["op"]))
        except (KeyError, ValueError):
            return web.Response(status=HTTPStatus.BAD_REQUEST)
        for key, value in request.query.items():
            if not key.startswith("outlet") or value != "1":
                continue
            try:
                index = int(key[len("outlet"):])
            except ValueError:
                continue
            if index in self.outlets:
                self.outlets[index] = op is Op.ON
                logger.info("Mock outlet %d -> %s", index, op)
        return web.Response(text="<html><body>OK</body></html>",
                            content_type="text/html")

    def render_status(self) -> bytes:
        items = "".join(
            f"<{status_element(n)}>{'on' if on else 'off'}</{status_element(n)}>"
            for n, on in sorted(self.outlets.items())
        )
        return f"<?xml version='1.0'?><response>{items}</response>".encode()

    def control_requests(self) -> list[str]:
        return [r.path_qs for r in self.requests if r.path_qs.startswith(CONTROL_PATH)]

    # --- Lifecycle ---

    async def start(self, host: str = "127.0.0.1", port: int = 0):
        self._runner = web.AppRunner(self.app, handle_signals=False)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()
        self._port = self._runner.addresses[0][1]
        logger.info("Mock PDU listening on %s:%d", host, self._port)

    async def stop(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
