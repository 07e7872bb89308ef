# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""One proxy session per inbound connection.

A session reads exactly one request, routes it, issues the upstream calls it
needs strictly one after another, and writes exactly one response:

    READING -> ROUTING -> DISPATCHING -> RESPONDING -> CLOSED

Unsupported methods and clients that disconnect while the request is read
are closed without a response. Upstream failures at any step end the
session with a 500 that names the failing step; nothing already sent to the
PDU is retried or rolled back.
"""

import asyncio
import enum
import itertools
import logging
import time
from dataclasses import dataclass
from http import HTTPStatus

from aiohttp import web

from .pages import render_internal_error, render_root_document, render_status_text
from .pdu_model import STATUS_PATH, Channel, ChannelStatus, Op, Scene, switch_request_path
from .registry import Registry
from .router import (
    Action,
    BadRequest,
    Command,
    RootDocument,
    SetChannels,
    SetScene,
    ShowStatus,
    route,
)
from .status_parser import StatusParseError, parse_status_body
from .transport import UpstreamError, UpstreamResponse, UpstreamTransport

logger = logging.getLogger(__name__)

DEFAULT_CYCLE_DELAY = 5.0

_session_ids = itertools.count(1)


class SessionState(enum.Enum):
    READING = "reading"
    ROUTING = "routing"
    DISPATCHING = "dispatching"
    RESPONDING = "responding"
    CLOSED = "closed"


@dataclass
class Reply:
    status: int
    content_type: str
    text: str


class StepFailed(Exception):
    """An upstream step failed; *operation* names it on the 500 page."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.message = message
        super().__init__(f"{operation} failed: {message}")


class Session:
    def __init__(self, request: web.BaseRequest, registry: Registry,
                 upstream: UpstreamTransport,
                 cycle_delay: float = DEFAULT_CYCLE_DELAY):
        self.id = next(_session_ids)
        self.request = request
        self.state = SessionState.READING
        self.command: Command | None = None
        self.reply: Reply | None = None
        self._registry = registry
        self._upstream = upstream
        self._cycle_delay = cycle_delay
        self._started = time.monotonic()

    def __repr__(self):
        return f"<Session {self.id} {self.state.value}>"

    async def run(self) -> web.StreamResponse:
        """Drive the session to CLOSED and hand the response back to aiohttp.

        The response is written here; aiohttp only finds it already sent.
        """
        try:
            if not await self._read():
                return self._drop()

            self._transition(SessionState.ROUTING)
            self.command = route(self.request.path, self.request.query_string,
                                 self._registry)

            self._transition(SessionState.DISPATCHING)
            self.reply = await self._dispatch(self.command)

            self._transition(SessionState.RESPONDING)
            return await self._respond(self.reply)
        finally:
            self._transition(SessionState.CLOSED)
            logger.debug("[session %d] closed after %.0f ms", self.id,
                         (time.monotonic() - self._started) * 1000)

    def _transition(self, state: SessionState):
        if self.state is SessionState.CLOSED:
            return
        self.state = state

    # --- READING ---

    async def _read(self) -> bool:
        request = self.request
        if request.method != "GET":
            logger.warning("[session %d] %s %s from %s: bad method", self.id,
                           request.method, request.path_qs, request.remote)
            return False
        try:
            await request.read()
        except ConnectionError as e:
            logger.debug("[session %d] client went away while reading: %s", self.id, e)
            return False
        logger.debug("[session %d] GET %s from %s", self.id, request.path_qs, request.remote)
        return True

    def _drop(self) -> web.StreamResponse:
        transport = self.request.transport
        if transport is not None:
            transport.close()
        # never sent: the transport is already closing
        return web.StreamResponse()

    # --- DISPATCHING ---

    async def _dispatch(self, command: Command) -> Reply:
        try:
            if isinstance(command, RootDocument):
                statuses = await self._query_status()
                return Reply(HTTPStatus.OK, "text/html",
                             render_root_document(self._registry, statuses))
            if isinstance(command, ShowStatus):
                statuses = await self._query_status()
                shown = [s for s in statuses if s.channel in command.channels]
                return Reply(HTTPStatus.OK, "text/plain", render_status_text(shown))
            if isinstance(command, SetChannels):
                return await self._set_channels(command.channels, command.action)
            if isinstance(command, SetScene):
                return await self._set_scene(command.scene)
        except StepFailed as e:
            logger.error("[session %d] %s", self.id, e)
            return Reply(HTTPStatus.INTERNAL_SERVER_ERROR, "text/html",
                         render_internal_error(e.operation, e.message))

        if isinstance(command, BadRequest):
            logger.debug("[session %d] bad request: %s", self.id, command.reason)
            return Reply(HTTPStatus.BAD_REQUEST, "text/plain", command.reason)
        logger.debug("[session %d] not found: %s", self.id, self.request.path)
        return Reply(HTTPStatus.NOT_FOUND, "text/plain", "not found")

    async def _call(self, operation: str, path: str) -> UpstreamResponse:
        logger.debug("[session %d] %s: GET %s", self.id, operation, path)
        try:
            return await self._upstream.transact(path)
        except UpstreamError as e:
            raise StepFailed(f"http-transaction {operation}", str(e)) from e

    async def _query_status(self) -> list[ChannelStatus]:
        response = await self._call("status", STATUS_PATH)
        try:
            return parse_status_body(response.body, self._registry)
        except StatusParseError as e:
            raise StepFailed("xml parsing", str(e)) from e

    async def _set_channels(self, channels: frozenset[Channel], action: Action) -> Reply:
        label = self._registry.format_channels(channels)
        if action is Action.CYCLE:
            await self._call("off", switch_request_path(channels, Op.OFF))
            # on is never issued before the delay has fully elapsed
            await asyncio.sleep(self._cycle_delay)
            await self._call("on", switch_request_path(channels, Op.ON))
            text = f"{label}: power cycled"
        else:
            op = Op.ON if action is Action.ON else Op.OFF
            await self._call(str(op), switch_request_path(channels, op))
            text = f"{label}: {op}"
        logger.info("[session %d] %s", self.id, text)
        return Reply(HTTPStatus.OK, "text/plain", text)

    async def _set_scene(self, scene: Scene) -> Reply:
        if scene.off:
            await self._call("off", switch_request_path(scene.off, Op.OFF))
        if scene.on:
            await self._call("on", switch_request_path(scene.on, Op.ON))
        logger.info("[session %d] scene %s applied", self.id, scene.name)
        return Reply(HTTPStatus.OK, "text/plain", "Ok")

    # --- RESPONDING ---

    async def _respond(self, reply: Reply) -> web.StreamResponse:
        response = web.Response(status=reply.status, text=reply.text,
                                content_type=reply.content_type)
        response.force_close()
        try:
            await response.prepare(self.request)
            await response.write_eof()
        except ConnectionError as e:
            logger.debug("[session %d] response not delivered: %s", self.id, e)
        return response
