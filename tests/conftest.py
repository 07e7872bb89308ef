# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Shared fixtures and report metadata for the proxy test suite."""

import asyncio
import os
import platform
import subprocess
import sys
from datetime import datetime

import pytest
import pytest_asyncio

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "proxy"))

from power_switch.mock_pdu import MockPDU
from power_switch.registry import Registry
from power_switch.transport import UpstreamResponse


def _git(cmd: str) -> str:
    """Run a git command and return stripped output, or '' on failure."""
    try:
        return subprocess.check_output(
            ["git"] + cmd.split(), stderr=subprocess.DEVNULL
        ).decode().strip()
    except (OSError, subprocess.CalledProcessError):
        return ""


def pytest_configure(config):
    """Add project metadata to HTML report (only if pytest-metadata installed)."""
    try:
        from pytest_metadata.plugin import metadata_key
    except ImportError:
        return

    config.stash[metadata_key]["Project"] = "Power Switch Proxy"
    config.stash[metadata_key]["Author"] = "Matthew Valancy, Valpatel Software LLC"
    config.stash[metadata_key]["Git Commit"] = _git("rev-parse --short HEAD")
    config.stash[metadata_key]["Python"] = platform.python_version()
    config.stash[metadata_key]["Timestamp"] = datetime.now().isoformat(timespec="seconds")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

STATUS_ALL_ON = (
    b"<?xml version='1.0'?><response>"
    + b"".join(f"<outletStat{i}>on</outletStat{i}>".encode() for i in range(8))
    + b"</response>"
)


class FakeUpstream:
    """Records every path in order; can delay or fail selected paths."""

    def __init__(self, status_body: bytes = STATUS_ALL_ON):
        self.status_body = status_body
        self.calls: list[str] = []
        self.finished: list[tuple[str, float]] = []
        self.delays: dict[str, float] = {}    # path prefix -> seconds
        self.failures: dict[str, Exception] = {}  # path prefix -> exception

    def _match(self, table: dict, path: str):
        for prefix, value in table.items():
            if path.startswith(prefix):
                return value
        return None

    async def transact(self, path, expected_status=200):
        self.calls.append(path)
        loop = asyncio.get_running_loop()
        delay = self._match(self.delays, path)
        if delay:
            await asyncio.sleep(delay)
        self.finished.append((path, loop.time()))
        error = self._match(self.failures, path)
        if error is not None:
            raise error
        if path.startswith("/status.xml"):
            return UpstreamResponse(200, self.status_body)
        return UpstreamResponse(200, b"")

    def get_health(self):
        return {"calls": len(self.calls)}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def registry():
    return Registry.default()


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest_asyncio.fixture
async def mock_pdu():
    pdu = MockPDU("admin", "secret")
    await pdu.start()
    yield pdu
    await pdu.stop()
