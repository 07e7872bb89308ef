# Power Switch Proxy
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License
# https://github.com/mvalancy/CyberPower-PDU

"""Channel and scene names, loaded once at startup and read-only afterwards.

File format (all names case-insensitive)::

    {
      "channels": {"red": 1, "green": 2, "blue": 3},
      "scenes": {
        "black": {"off": ["red", "green", "blue"], "on": []},
        "cyan":  {"off": ["red"], "on": ["green", "blue"]}
      }
    }

Channel numbers are the 1-based outlet numbers printed on the device.
"""

import json
import logging
from pathlib import Path
from typing import Iterable, Iterator

from .config import ConfigError
from .pdu_model import Channel, Scene

logger = logging.getLogger(__name__)


def _key(name: str) -> str:
    return name.lower()


class Registry:
    """Case-insensitive name lookup for channels and scenes."""

    def __init__(self, channels: dict[str, Channel],
                 scenes: Iterable[Scene] = ()):
        self._channels: dict[str, tuple[str, Channel]] = {}
        self._names: dict[Channel, str] = {}
        for name, channel in channels.items():
            if not name or "/" in name or "?" in name:
                raise ConfigError(f"invalid channel name: {name!r}")
            if _key(name) in ("all", "show"):
                raise ConfigError(f"channel name {name!r} is reserved")
            if _key(name) in self._channels:
                raise ConfigError(f"duplicate channel name: {name!r}")
            self._channels[_key(name)] = (name, Channel(channel))
            # first name registered for an outlet is its display name
            self._names.setdefault(Channel(channel), name)

        self._scenes: dict[str, Scene] = {}
        for scene in scenes:
            if not scene.name:
                raise ConfigError("scene name must not be empty")
            if _key(scene.name) in self._scenes:
                raise ConfigError(f"duplicate scene name: {scene.name!r}")
            unknown = (scene.off | scene.on) - self._names.keys()
            if unknown:
                raise ConfigError(
                    f"scene {scene.name!r} uses unregistered outlet(s): "
                    f"{', '.join(ch.label for ch in sorted(unknown))}"
                )
            self._scenes[_key(scene.name)] = scene

    # --- Lookup ---

    def channel(self, name: str) -> Channel | None:
        entry = self._channels.get(_key(name))
        return entry[1] if entry else None

    def name_of(self, channel: Channel) -> str | None:
        return self._names.get(channel)

    def scene(self, name: str) -> Scene | None:
        return self._scenes.get(_key(name))

    def all_channels(self) -> frozenset[Channel]:
        return frozenset(self._names)

    def channels(self) -> Iterator[tuple[Channel, str]]:
        """Registered channels in ascending channel order."""
        for channel in sorted(self._names):
            yield channel, self._names[channel]

    def channel_names(self) -> list[str]:
        return [name for name, _ch in self._channels.values()]

    def scenes(self) -> list[Scene]:
        """Scenes in case-insensitive name order."""
        return [self._scenes[k] for k in sorted(self._scenes)]

    def format_channels(self, channels: Iterable[Channel]) -> str:
        """Render a channel set as ``"ch1, ch3"`` in ascending order."""
        return ", ".join(
            self._names.get(ch, ch.label) for ch in sorted(set(channels))
        )

    # --- Construction ---

    @classmethod
    def default(cls) -> "Registry":
        channels = {ch.label: ch for ch in Channel}
        return cls(channels, [
            Scene("scene0", off=frozenset({Channel.CH1, Channel.CH2})),
            Scene("scene1", off=frozenset({Channel.CH2}), on=frozenset({Channel.CH1})),
            Scene("scene2", off=frozenset({Channel.CH1}), on=frozenset({Channel.CH2})),
        ])

    @classmethod
    def from_dict(cls, d: dict) -> "Registry":
        raw_channels = d.get("channels")
        if not isinstance(raw_channels, dict) or not raw_channels:
            raise ConfigError("'channels' must be a non-empty object")

        channels: dict[str, Channel] = {}
        for name, number in raw_channels.items():
            try:
                channels[name] = Channel.from_number(int(number))
            except (TypeError, ValueError) as e:
                raise ConfigError(f"channel {name!r}: {e}")
        lookup = {_key(n): ch for n, ch in channels.items()}

        def resolve(scene_name: str, names) -> frozenset[Channel]:
            if not isinstance(names, list):
                raise ConfigError(f"scene {scene_name!r}: channel list expected")
            resolved = set()
            for n in names:
                ch = lookup.get(_key(str(n)))
                if ch is None:
                    raise ConfigError(f"scene {scene_name!r}: unknown channel {n!r}")
                resolved.add(ch)
            return frozenset(resolved)

        scenes = []
        for name, entry in (d.get("scenes") or {}).items():
            if not isinstance(entry, dict):
                raise ConfigError(f"scene {name!r} must be an object")
            scenes.append(Scene(
                name,
                off=resolve(name, entry.get("off", [])),
                on=resolve(name, entry.get("on", [])),
            ))
        return cls(channels, scenes)


def load_registry(path: str) -> Registry:
    """Load the channel/scene table, or the built-in table if *path* is absent."""
    p = Path(path)
    if not p.exists():
        logger.info("No channel file at %s, using built-in ch1..ch8 table", p)
        return Registry.default()
    try:
        data = json.loads(p.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"cannot read {p}: {e}")
    if not isinstance(data, dict):
        raise ConfigError(f"{p}: top level must be an object")
    registry = Registry.from_dict(data)
    logger.info("Loaded %d channel(s) and %d scene(s) from %s",
                len(registry.channel_names()), len(registry.scenes()), p)
    return registry
