# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Parser for the PDU's /status.xml document.

The device answers with a flat document such as::

    <response>
      <outletStat0>on</outletStat0>
      <outletStat1>off</outletStat1>
      ...
    </response>

Only outlets with a registered name are reported.
"""

import xml.etree.ElementTree as ET

from .pdu_model import OUTLET_COUNT, Channel, ChannelStatus, status_element
from .registry import Registry


class StatusParseError(Exception):
    """Status body is not valid XML."""


def parse_status_body(body: bytes | str, registry: Registry) -> list[ChannelStatus]:
    """Return the on/off state of every named outlet, ascending by channel."""
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise StatusParseError(str(e)) from e

    result = []
    for index in range(OUTLET_COUNT):
        node = root.find(status_element(index))
        if node is None:
            continue
        channel = Channel(index)
        name = registry.name_of(channel)
        if name is None:
            continue
        state = (node.text or "").strip().lower() == "on"
        result.append(ChannelStatus(channel, name, state))
    return result
