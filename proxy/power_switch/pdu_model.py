# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Outlet constants and data models for the Argus PDU SW-0816 HTTP API."""

import enum
from dataclasses import dataclass, field
from typing import Iterable

OUTLET_COUNT = 8

# Device HTTP endpoints
STATUS_PATH = "/status.xml"
CONTROL_PATH = "/control_outlet.htm"


def status_element(index: int) -> str:
    return f"outletStat{index}"


class Channel(enum.IntEnum):
    """One switchable outlet; the value is the device's zero-based index."""
    CH1 = 0
    CH2 = 1
    CH3 = 2
    CH4 = 3
    CH5 = 4
    CH6 = 5
    CH7 = 6
    CH8 = 7

    @property
    def number(self) -> int:
        """Outlet number as printed on the device (1-based)."""
        return self.value + 1

    @property
    def label(self) -> str:
        return f"ch{self.number}"

    @classmethod
    def from_number(cls, number: int) -> "Channel":
        if not 1 <= number <= OUTLET_COUNT:
            raise ValueError(f"outlet number out of range: {number}")
        return cls(number - 1)


class Op(enum.IntEnum):
    """Switch operation as encoded on the wire (0 switches on, 1 off)."""
    ON = 0
    OFF = 1

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class Scene:
    """Named pair of channel sets: turn ``off`` off first, then ``on`` on."""
    name: str
    off: frozenset[Channel] = field(default_factory=frozenset)
    on: frozenset[Channel] = field(default_factory=frozenset)


@dataclass(frozen=True)
class ChannelStatus:
    channel: Channel
    name: str
    state: bool  # True = on

    @property
    def state_text(self) -> str:
        return "on" if self.state else "off"


def switch_request_path(channels: Iterable[Channel], op: Op) -> str:
    """Build the control URL target, outlets in ascending order.

    >>> switch_request_path({Channel.CH3, Channel.CH1}, Op.OFF)
    '/control_outlet.htm?outlet0=1&outlet2=1&op=1'
    """
    outlets = "".join(f"outlet{int(ch)}=1&" for ch in sorted(set(channels)))
    return f"{CONTROL_PATH}?{outlets}op={int(op)}"
