# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Authenticated HTTP client for the PDU with health tracking.

Every transaction opens its own TCP connection (IPv4 only, like the
device) and closes it once the response has been read. There is no
pooling and no retry.
"""

import asyncio
import logging
import socket
import time
from http import HTTPStatus

import aiohttp
from aiohttp.http import SERVER_SOFTWARE

from .config import Config, ConfigError
from .transport import TransportError, UnexpectedStatus, UpstreamResponse

logger = logging.getLogger(__name__)

USER_AGENT = SERVER_SOFTWARE


def authorization_header(username: str, password: str) -> str:
    """Value for the ``Authorization`` header (HTTP Basic)."""
    return aiohttp.BasicAuth(username, password).encode()


class PDUHttpClient:
    """UpstreamTransport implementation speaking the device's HTTP API."""

    def __init__(self, host: str, port: int = 80, username: str = "",
                 password: str = "", timeout: float = 10.0):
        self._host = host
        self._port = port
        self._username = username
        self._headers = {
            "Host": host,
            "User-Agent": USER_AGENT,
            "Authorization": authorization_header(username, password),
        }
        self._timeout_s = timeout
        self._timeout = aiohttp.ClientTimeout(total=timeout or None)

        # Health tracking
        self._total_requests = 0
        self._failed_requests = 0
        self._consecutive_failures = 0
        self._last_success_time: float | None = None
        self._last_error_time: float | None = None
        self._last_error_msg: str | None = None
        self._last_duration: float | None = None

    @classmethod
    def from_config(cls, config: Config) -> "PDUHttpClient":
        try:
            return cls(config.pdu_host, config.pdu_http_port,
                       config.pdu_username, config.pdu_password,
                       timeout=config.http_timeout)
        except ValueError as e:
            raise ConfigError(f"invalid PDU credentials: {e}")

    @property
    def base_url(self) -> str:
        return f"http://{self._host}:{self._port}"

    async def transact(self, path: str,
                       expected_status: int = HTTPStatus.OK) -> UpstreamResponse:
        """GET *path* from the PDU; succeed only on *expected_status*."""
        self._total_requests += 1
        start = time.monotonic()
        connector = aiohttp.TCPConnector(family=socket.AF_INET, force_close=True)
        try:
            async with aiohttp.ClientSession(connector=connector,
                                             timeout=self._timeout) as session:
                async with session.get(self.base_url + path,
                                       headers=self._headers,
                                       allow_redirects=False) as resp:
                    status = resp.status
                    body = await resp.read()
        except asyncio.TimeoutError as e:
            msg = f"no response within {self._timeout_s:g}s"
            self._record_failure(f"GET {path}: {msg}")
            raise TransportError(msg) from e
        except (aiohttp.ClientError, OSError) as e:
            msg = str(e) or type(e).__name__
            self._record_failure(f"GET {path}: {msg}")
            raise TransportError(msg) from e
        finally:
            self._last_duration = time.monotonic() - start

        logger.debug("GET %s -> %d (%.0f ms)", path, status,
                     self._last_duration * 1000)
        if status != expected_status:
            error = UnexpectedStatus(status, expected_status)
            self._record_failure(f"GET {path}: {error}")
            raise error

        self._record_success()
        return UpstreamResponse(status, body)

    def get_health(self) -> dict:
        """Return upstream connection health metrics."""
        return {
            "target": f"{self._host}:{self._port}",
            "total_requests": self._total_requests,
            "failed_requests": self._failed_requests,
            "consecutive_failures": self._consecutive_failures,
            "last_success": self._last_success_time,
            "last_error": self._last_error_time,
            "last_error_msg": self._last_error_msg,
            "last_duration_ms": (
                round(self._last_duration * 1000, 1)
                if self._last_duration is not None else None
            ),
            "reachable": self._consecutive_failures < 10,
        }

    def _record_success(self):
        self._consecutive_failures = 0
        self._last_success_time = time.time()

    def _record_failure(self, msg: str):
        self._failed_requests += 1
        self._consecutive_failures += 1
        self._last_error_time = time.time()
        self._last_error_msg = msg
        # Log at different levels based on consecutive failures
        if self._consecutive_failures == 1:
            logger.warning("PDU: %s", msg)
        elif self._consecutive_failures <= 5:
            logger.error("PDU: %s (failure %d)", msg, self._consecutive_failures)
        elif self._consecutive_failures % 30 == 0:
            logger.error(
                "PDU: unreachable for %d consecutive failures: %s",
                self._consecutive_failures, msg,
            )
