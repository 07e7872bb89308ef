# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Maps an inbound request path and query string to a proxy command.

Routing order matters: ``""``, ``show`` and ``all`` first, then channel
names, and only then the ``set/<scene>`` prefix. A channel name therefore
always wins over a scene of the same name.
"""

import enum
from dataclasses import dataclass

from .pdu_model import Channel, Scene
from .registry import Registry


class Action(enum.Enum):
    ON = "on"
    OFF = "off"
    CYCLE = "cycle"


@dataclass(frozen=True)
class RootDocument:
    pass


@dataclass(frozen=True)
class ShowStatus:
    channels: frozenset[Channel]


@dataclass(frozen=True)
class SetChannels:
    channels: frozenset[Channel]
    action: Action


@dataclass(frozen=True)
class SetScene:
    scene: Scene


@dataclass(frozen=True)
class BadRequest:
    reason: str


@dataclass(frozen=True)
class NotFound:
    pass


Command = RootDocument | ShowStatus | SetChannels | SetScene | BadRequest | NotFound


def parse_action(query: str) -> Action | None:
    try:
        return Action(query.lower())
    except ValueError:
        return None


def strip_path_element(path: str) -> tuple[str, str]:
    """Split off the first ``/``-delimited segment.

    Leading slashes are skipped on both sides, so ``"//set//x"`` gives
    ``("set", "x")``.
    """
    path = path.lstrip("/")
    head, sep, rest = path.partition("/")
    if not sep:
        return head, ""
    return head, rest.lstrip("/")


def _set_channels(channels: frozenset[Channel], query: str) -> Command:
    action = parse_action(query)
    if action is None:
        return BadRequest("request error: illegal request")
    return SetChannels(channels, action)


def route(path: str, query: str, registry: Registry) -> Command:
    if not path:
        return BadRequest("request error: path is empty")
    if not path.startswith("/"):
        return BadRequest("request error: path is not absolute")
    path = path[1:]

    target = path.lower()
    if target == "":
        return RootDocument()
    if target == "show":
        return ShowStatus(registry.all_channels())
    if target == "all":
        return _set_channels(registry.all_channels(), query)

    channel = registry.channel(path)
    if channel is not None:
        return _set_channels(frozenset({channel}), query)

    root, rest = strip_path_element(path)
    if root.lower() == "set":
        scene = registry.scene(rest)
        if scene is None:
            return NotFound()
        return SetScene(scene)

    return NotFound()
