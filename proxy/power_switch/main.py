# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Entry point: one-shot outlet commands and the HTTP proxy.

    power-switch on    <channel>...   turn on channel(s)
    power-switch off   <channel>...   turn off channel(s)
    power-switch cycle <channel>...   power cycle channel(s)
    power-switch set   <scene>...     apply scene(s)
    power-switch show [<channel>...]  show current switch state
    power-switch info                 show device and proxy settings
    power-switch proxy                run the HTTP proxy

A channel argument is a configured name, ``all``, or a string of outlet
digits (``153`` = outlets 1, 3 and 5).
"""

__version__ = "1.0.0"

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import AsyncIterator, Iterable

from .config import Config, ConfigError
from .http_client import PDUHttpClient
from .mock_pdu import MockPDU
from .pdu_model import OUTLET_COUNT, STATUS_PATH, Channel, Op, switch_request_path
from .proxy import ProxyServer
from .registry import Registry, load_registry
from .status_parser import StatusParseError, parse_status_body
from .transport import UpstreamError, UpstreamTransport

logger = logging.getLogger("power_switch")

LICENSE_INFO = (
    "Copyright (C) 2025 Mario Klebsch, DG1AM\n"
    "Created by Matthew Valancy, Valpatel Software LLC\n"
    "License GPL-3.0: GNU GPL version 3 <https://gnu.org/licenses/gpl.html>.\n"
    "There is NO WARRANTY, to the extent permitted by law.\n"
)


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------

def parse_channels(args: Iterable[str], registry: Registry) -> tuple[frozenset[Channel], list[str]]:
    """Resolve channel arguments; returns (channels, unrecognised args)."""
    channels: set[Channel] = set()
    unknown = []
    for arg in args:
        channel = registry.channel(arg)
        if channel is not None:
            channels.add(channel)
        elif arg.lower() == "all":
            channels.update(registry.all_channels())
        elif arg and all("1" <= c <= str(OUTLET_COUNT) for c in arg):
            channels.update(Channel.from_number(int(c)) for c in arg)
        else:
            unknown.append(arg)
    return frozenset(channels), unknown


@contextlib.asynccontextmanager
async def open_upstream(config: Config) -> AsyncIterator[PDUHttpClient]:
    """PDU client for *config*; in mock mode backed by an in-process MockPDU."""
    if not config.mock_mode:
        yield PDUHttpClient.from_config(config)
        return

    mock = MockPDU(config.pdu_username, config.pdu_password)
    await mock.start()
    logger.info("Mock mode: simulated PDU on 127.0.0.1:%d", mock.port)
    try:
        yield PDUHttpClient("127.0.0.1", mock.port, config.pdu_username,
                            config.pdu_password, timeout=config.http_timeout)
    finally:
        await mock.stop()


# ---------------------------------------------------------------------------
# One-shot commands
# ---------------------------------------------------------------------------

def list_channels(registry: Registry) -> int:
    print("Available channels:")
    for name in registry.channel_names():
        print(f"- {name}")
    print("- all")
    return 0


def list_scenes(registry: Registry) -> int:
    print("Available scenes:")
    for scene in registry.scenes():
        line = f"- {scene.name}"
        if scene.off:
            line += " off: " + " ".join(registry.format_channels([ch]) for ch in sorted(scene.off))
        if scene.on:
            line += " on: " + " ".join(registry.format_channels([ch]) for ch in sorted(scene.on))
        print(line)
    return 0


async def switch(upstream: UpstreamTransport, channels: Iterable[Channel], op: Op) -> int:
    try:
        await upstream.transact(switch_request_path(channels, op))
    except UpstreamError as e:
        logger.error("GET %s failed: %s", switch_request_path(channels, op), e)
        return 1
    return 0


async def power_cycle(upstream: UpstreamTransport, channels: frozenset[Channel],
                      delay: float) -> int:
    ret = await switch(upstream, channels, Op.OFF)
    if ret:
        return ret
    await asyncio.sleep(delay)
    return await switch(upstream, channels, Op.ON)


async def apply_scenes(upstream: UpstreamTransport, registry: Registry,
                       names: list[str]) -> int:
    for name in names:
        scene = registry.scene(name)
        if scene is None:
            logger.error("unknown scene: %s", name)
            return 1
        if scene.off and (ret := await switch(upstream, scene.off, Op.OFF)):
            return ret
        if scene.on and (ret := await switch(upstream, scene.on, Op.ON)):
            return ret
    return 0


async def show(upstream: UpstreamTransport, registry: Registry,
               channels: frozenset[Channel]) -> int:
    try:
        response = await upstream.transact(STATUS_PATH)
        statuses = parse_status_body(response.body, registry)
    except UpstreamError as e:
        logger.error("GET %s failed: %s", STATUS_PATH, e)
        return 1
    except StatusParseError as e:
        logger.error("XML parsing failed: %s", e)
        return 1
    for status in statuses:
        if status.channel in channels:
            print(f"{status.name}: {status.state_text}")
    return 0


def info(config: Config) -> int:
    print("control Argus PDU SW-0816")
    print(f"address: {config.pdu_host}:{config.pdu_http_port}")
    print(f"user: {config.pdu_username}")
    print(f"proxy: {config.bind_addr} port {config.bind_port}")
    print()
    print(LICENSE_INFO, end="")
    return 0


# ---------------------------------------------------------------------------
# Proxy
# ---------------------------------------------------------------------------

async def run_proxy(config: Config, registry: Registry,
                    stop: asyncio.Event | None = None,
                    install_signals: bool = True) -> int:
    """Serve until *stop* is set (or SIGINT/SIGTERM), then drain sessions."""
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()

    async with open_upstream(config) as upstream:
        proxy = ProxyServer.from_config(config, registry, upstream)
        try:
            await proxy.start()
        except OSError as e:
            logger.error("Cannot start proxy on %s: %s", config.proxy_address, e)
            return 1

        if install_signals:
            def _shutdown(sig, frame):
                logger.info("Received signal %s, shutting down...", sig)
                loop.call_soon_threadsafe(stop.set)

            signal.signal(signal.SIGTERM, _shutdown)
            signal.signal(signal.SIGINT, _shutdown)

        try:
            await stop.wait()
        finally:
            await proxy.cleanup()

    logger.info("Proxy stopped.")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="power-switch",
        description="Control Argus PDU SW-0816 outlets, or run the HTTP proxy",
        epilog=LICENSE_INFO,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("on", help="turn on channel(s)").add_argument("channels", nargs="*")
    sub.add_parser("off", help="turn off channel(s)").add_argument("channels", nargs="*")
    sub.add_parser("cycle", help="power cycle channel(s)").add_argument("channels", nargs="*")
    sub.add_parser("set", help="turn off/on according to scene(s)").add_argument("scenes", nargs="*")
    sub.add_parser("show", help="show current switch state").add_argument("channels", nargs="*")
    sub.add_parser("info", help="show software info")
    sub.add_parser("proxy", help="run the HTTP proxy server")
    return parser


async def run_command(args: argparse.Namespace, config: Config, registry: Registry) -> int:
    if args.command == "set":
        if not args.scenes:
            return list_scenes(registry)
        async with open_upstream(config) as upstream:
            return await apply_scenes(upstream, registry, args.scenes)

    if args.command == "show" and not args.channels:
        channels = registry.all_channels()
    else:
        if not args.channels:
            return list_channels(registry)
        channels, unknown = parse_channels(args.channels, registry)
        for arg in unknown:
            logger.warning("unknown channel %s", arg)
        if not channels:
            logger.error("no valid channel given")
            return 1

    async with open_upstream(config) as upstream:
        if args.command == "show":
            return await show(upstream, registry, channels)
        if args.command == "cycle":
            return await power_cycle(upstream, channels, config.cycle_delay)
        return await switch(upstream, channels, Op.ON if args.command == "on" else Op.OFF)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = Config()
        registry = load_registry(config.channels_file)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if args.command == "info":
        return info(config)
    if args.command == "proxy":
        config.log_config()
        try:
            return asyncio.run(run_proxy(config, registry))
        except KeyboardInterrupt:
            return 0

    try:
        return asyncio.run(run_command(args, config, registry))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
