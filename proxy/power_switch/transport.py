# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Upstream transport protocol and its error types.

Sessions talk to the PDU only through this interface, so tests (and the
one-shot CLI) can swap in any object with a matching ``transact``.
"""

from dataclasses import dataclass
from http import HTTPStatus
from typing import Protocol, runtime_checkable


class UpstreamError(Exception):
    """A single upstream transaction failed."""


class TransportError(UpstreamError):
    """Resolve, connect, write or read against the PDU failed."""


class UnexpectedStatus(UpstreamError):
    """The PDU answered, but not with the expected status code."""

    def __init__(self, status: int, expected: int = HTTPStatus.OK):
        self.status = status
        self.expected = expected
        super().__init__(
            f"unexpected HTTP status {_describe(status)} "
            f"(expected {_describe(expected)})"
        )


def _describe(status: int) -> str:
    try:
        return f"{status} {HTTPStatus(status).phrase}"
    except ValueError:
        return str(status)


@dataclass
class UpstreamResponse:
    status: int
    body: bytes = b""


@runtime_checkable
class UpstreamTransport(Protocol):
    """Protocol for PDU request/response exchanges.

    Implementations: PDUHttpClient (tests provide their own fakes).
    """

    async def transact(self, path: str,
                       expected_status: int = HTTPStatus.OK) -> UpstreamResponse:
        """Issue one GET for *path* and return the response.

        Raises TransportError or UnexpectedStatus; never retries.
        """
        ...

    def get_health(self) -> dict:
        """Return transport health metrics."""
        ...
