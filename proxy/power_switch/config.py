# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Configuration from environment variables with validation.

The channel and scene table lives in a separate JSON file (see registry.py);
everything else is read from the environment once at startup.
"""

import logging
import os

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid."""


class Config:
    def __init__(self):
        self.pdu_host = os.environ.get("PDU_HOST", "192.168.1.100")
        self.pdu_http_port = self._int("PDU_HTTP_PORT", "80", 1, 65535)
        self.pdu_username = os.environ.get("PDU_USERNAME", "admin")
        self.pdu_password = os.environ.get("PDU_PASSWORD", "admin")
        # 0 disables the timeout (a hung PDU then stalls its session forever)
        self.http_timeout = self._float("PDU_HTTP_TIMEOUT", "10.0", 0, 300)

        self.bind_addr = os.environ.get("PROXY_BIND_ADDR", "localhost")
        self.bind_port = self._int("PROXY_BIND_PORT", "8192", 0, 65535)
        self.shutdown_timeout = self._float("PROXY_SHUTDOWN_TIMEOUT", "60.0", 0, 3600)

        self.channels_file = os.environ.get("SWITCH_CHANNELS_FILE", "/data/channels.json")
        self.cycle_delay = self._float("SWITCH_CYCLE_DELAY", "5.0", 0, 3600)
        self.log_level = os.environ.get("SWITCH_LOG_LEVEL", "INFO").upper()
        self.mock_mode = os.environ.get("SWITCH_MOCK_MODE", "false").lower() in ("true", "1", "yes")

        if not self.pdu_host and not self.mock_mode:
            raise ConfigError("PDU_HOST must not be empty")
        if any(c in self.pdu_host for c in "/?# "):
            raise ConfigError(f"PDU_HOST contains invalid characters: {self.pdu_host!r}")

    @staticmethod
    def _int(env: str, default: str, min_val: int, max_val: int) -> int:
        raw = os.environ.get(env, default)
        try:
            val = int(raw)
        except (ValueError, TypeError):
            raise ConfigError(f"{env}={raw!r} is not a valid integer")
        if not (min_val <= val <= max_val):
            raise ConfigError(f"{env}={val} out of range [{min_val}, {max_val}]")
        return val

    @staticmethod
    def _float(env: str, default: str, min_val: float, max_val: float) -> float:
        raw = os.environ.get(env, default)
        try:
            val = float(raw)
        except (ValueError, TypeError):
            raise ConfigError(f"{env}={raw!r} is not a valid number")
        if not (min_val <= val <= max_val):
            raise ConfigError(f"{env}={val} out of range [{min_val}, {max_val}]")
        return val

    @property
    def proxy_address(self) -> str:
        if ":" in self.bind_addr:
            return f"[{self.bind_addr}]:{self.bind_port}"
        return f"{self.bind_addr}:{self.bind_port}"

    def log_config(self):
        logger.info(
            "Config: pdu=%s:%d user=%s timeout=%.1fs proxy=%s cycle=%.1fs mock=%s",
            self.pdu_host, self.pdu_http_port, self.pdu_username,
            self.http_timeout, self.proxy_address, self.cycle_delay,
            self.mock_mode,
        )
