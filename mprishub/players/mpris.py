# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
MprisPlayer - local mirror of one MPRIS endpoint on the bus.

Lifecycle:
    player = MprisPlayer(bus, "org.mpris.MediaPlayer2.mpv", covers=cache)
    await player.setup()      # raises PlayerGone if the endpoint vanished
    ...
    player.close()            # emits "closed", then the object is inert

Signals (see Observable):
    notify::<attr>(value) / notify(attr)  - one attribute changed
    changed()          - a property batch touched anything but the position
    position(seconds)  - the playback cursor moved (polled or seeked)
    closed()           - teardown

Position is tracked two ways: a timer polls ``Position`` while the player is
Playing, and the ``Seeked`` signal applies explicit jumps immediately.  A
seek bumps the position epoch and restarts the timer phase; a poll reply
that was requested under an older epoch is dropped.

Capabilities, shuffle, loop and volume that the endpoint does not expose are
set to UNSUPPORTED, which is distinct from False.
"""

import asyncio
import logging
from typing import Callable

from ..artwork import ArtworkError, CoverArtCache
from ..lib.bus import (
    MPRIS_IFACE,
    MPRIS_PATH,
    MPRIS_PREFIX,
    PLAYER_IFACE,
    PROPERTIES_IFACE,
    BusError,
    PlayerGone,
)
from ..lib.observable import Observable
from ..lib.timer import Interval
from .metadata import MICROSECONDS, NO_TRACK, TrackMetadata, us_to_seconds

log = logging.getLogger(__name__)

UNSUPPORTED = "unsupported"

PLAYING = "Playing"
PAUSED = "Paused"
STOPPED = "Stopped"
PLAYBACK_STATUSES = (PLAYING, PAUSED, STOPPED)

LOOP_STATUSES = ("None", "Track", "Playlist")
LOOP_CYCLE = {"None": "Track", "Track": "Playlist", "Playlist": "None"}

POSITION_POLL_INTERVAL = 1.0  # seconds

# MPRIS property name -> attribute name
_CAPABILITIES = {
    "CanGoNext": "can_go_next",
    "CanGoPrevious": "can_go_prev",
    "CanPlay": "can_play",
}


class MprisPlayer(Observable):

    def __init__(self, bus, bus_name: str, *,
                 covers: CoverArtCache | None = None,
                 cache_covers: Callable[[], bool] = lambda: True,
                 poll_interval: float = POSITION_POLL_INTERVAL):
        super().__init__()
        self._bus = bus
        self._covers = covers
        self._cache_covers = cache_covers

        self.bus_name = bus_name
        self.name = bus_name[len(MPRIS_PREFIX):] if bus_name.startswith(MPRIS_PREFIX) else bus_name
        self.owner = ""
        self.identity = ""
        self.entry: str | None = None

        self.metadata = TrackMetadata()
        self.track_id = ""
        self.track_artists: list[str] = []
        self.track_title = ""
        self.track_album = ""
        self.track_cover_url = ""
        self.cover_path: str | None = None

        self.playback_status = STOPPED
        self.can_go_next = UNSUPPORTED
        self.can_go_prev = UNSUPPORTED
        self.can_play = UNSUPPORTED
        self.shuffle_status = UNSUPPORTED
        self.loop_status = UNSUPPORTED
        self.volume = UNSUPPORTED
        self.length = -1.0
        self.position = 0.0

        self._alive = False
        self._closed = False
        self._subscriptions = []
        self._tasks: set[asyncio.Task] = set()
        self._position_epoch = 0
        self._timer = Interval(poll_interval, self._poll_position)

    def __repr__(self):
        return f"<MprisPlayer {self.bus_name} {self.playback_status}>"

    @property
    def alive(self) -> bool:
        return self._alive

    # ── Lifecycle ──

    async def setup(self):
        """Subscribe to the endpoint's signals and fetch all properties."""
        try:
            self.owner = await self._bus.get_name_owner(self.bus_name)
            self._subscriptions.append(await self._bus.subscribe(
                self.owner, MPRIS_PATH, PROPERTIES_IFACE, "PropertiesChanged",
                self._on_properties_changed))
            self._subscriptions.append(await self._bus.subscribe(
                self.owner, MPRIS_PATH, PLAYER_IFACE, "Seeked", self._on_seeked))
            root = await self._bus.get_all(self.bus_name, MPRIS_IFACE)
            props = await self._bus.get_all(self.bus_name, PLAYER_IFACE)
        except BusError as e:
            self._drop_subscriptions()
            raise PlayerGone(e.name, f"{self.bus_name} vanished during setup") from e
        except asyncio.CancelledError:
            self._drop_subscriptions()
            raise

        self._alive = True
        self._apply_root(root)
        self._apply(props, initial=True)
        self._timer.start()
        log.info("Player %s ready (%s, %s)", self.name, self.identity or "?", self.playback_status)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._alive = False
        self._timer.cancel()
        self._drop_subscriptions()
        log.info("Player %s closed", self.name)
        self.emit("closed")
        self.disconnect_all()

    def _drop_subscriptions(self):
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions.clear()

    def _spawn(self, coro):
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ── Property mirroring ──

    def _set(self, attr: str, value) -> bool:
        current = getattr(self, attr)
        if type(current) is type(value) and current == value:
            return False
        setattr(self, attr, value)
        self.notify(attr, value)
        return True

    def _set_position(self, seconds: float):
        if seconds == self.position:
            return
        self.position = seconds
        self.notify("position", seconds)
        self.emit("position", seconds)

    def _apply_root(self, root: dict):
        changed = False
        if "Identity" in root:
            changed |= self._set("identity", str(root["Identity"]))
        if "DesktopEntry" in root:
            changed |= self._set("entry", str(root["DesktopEntry"]) or None)
        return changed

    def _apply(self, props: dict, initial: bool = False):
        changed = False

        if "PlaybackStatus" in props:
            status = props["PlaybackStatus"]
            changed |= self._set("playback_status", status if status in PLAYBACK_STATUSES else STOPPED)

        for prop, attr in _CAPABILITIES.items():
            if prop in props:
                changed |= self._set(attr, bool(props[prop]))
            elif initial:
                changed |= self._set(attr, UNSUPPORTED)

        if "Shuffle" in props:
            changed |= self._set("shuffle_status", bool(props["Shuffle"]))
        elif initial:
            changed |= self._set("shuffle_status", UNSUPPORTED)

        if "LoopStatus" in props:
            loop = props["LoopStatus"]
            changed |= self._set("loop_status", loop if loop in LOOP_STATUSES else UNSUPPORTED)
        elif initial:
            changed |= self._set("loop_status", UNSUPPORTED)

        if "Volume" in props:
            try:
                changed |= self._set("volume", float(props["Volume"]))
            except (TypeError, ValueError):
                changed |= self._set("volume", UNSUPPORTED)
        elif initial:
            changed |= self._set("volume", UNSUPPORTED)

        if "Metadata" in props:
            changed |= self._apply_metadata(TrackMetadata(props["Metadata"]))

        if "Position" in props:
            self._set_position(us_to_seconds(props["Position"]))
            if not initial:
                self._position_epoch += 1
                self._timer.reset()

        if changed:
            self.emit("changed")

    def _apply_metadata(self, meta: TrackMetadata) -> bool:
        if meta == self.metadata:
            return False
        self.metadata = meta
        self.notify("metadata", meta)
        self._set("track_id", meta.track_id)
        self._set("track_artists", meta.artists)
        self._set("track_title", meta.title)
        self._set("track_album", meta.album)
        self._set("length", meta.length)
        if self._set("track_cover_url", meta.art_url):
            self._set("cover_path", None)
            self._request_cover()
        return True

    # ── Bus signals ──

    def _on_properties_changed(self, interface: str, changed: dict, invalidated: list):
        if not self._alive:
            return
        if interface == MPRIS_IFACE:
            if self._apply_root(changed):
                self.emit("changed")
            return
        if interface != PLAYER_IFACE:
            return
        self._apply(changed)
        if invalidated:
            self._spawn(self._refresh(list(invalidated)))

    async def _refresh(self, names: list[str]):
        """Re-fetch properties the endpoint invalidated without sending values."""
        for prop in names:
            try:
                value = await self._bus.get_property(self.bus_name, PLAYER_IFACE, prop)
            except BusError as e:
                log.debug("%s: cannot refresh %s: %s", self.name, prop, e)
                continue
            if not self._alive:
                return
            self._apply({prop: value})

    def _on_seeked(self, position_us: int):
        if not self._alive:
            return
        self._position_epoch += 1
        self._set_position(us_to_seconds(position_us))
        # Restart the phase so the next poll can't race the seek just applied.
        self._timer.reset()

    async def _poll_position(self):
        if not self._alive or self.playback_status != PLAYING:
            return
        epoch = self._position_epoch
        try:
            value = await self._bus.get_property(self.bus_name, PLAYER_IFACE, "Position")
        except BusError as e:
            log.debug("%s: position poll failed: %s", self.name, e)
            return
        if not self._alive or epoch != self._position_epoch or self.playback_status != PLAYING:
            return
        self._set_position(us_to_seconds(value))

    # ── Cover art ──

    def _request_cover(self):
        url = self.track_cover_url
        if not url or self._covers is None or not self._cache_covers():
            return
        self._spawn(self._resolve_cover(url))

    async def _resolve_cover(self, url: str):
        try:
            path = await self._covers.resolve(url)
        except ArtworkError as e:
            log.warning("%s: cover art unavailable: %s", self.name, e)
            return
        if not self._alive or url != self.track_cover_url:
            return
        if self._set("cover_path", path):
            self.emit("changed")

    # ── Playback control ──

    async def _call(self, member: str, signature: str = "", body: list | None = None) -> bool:
        if not self._alive:
            return False
        try:
            await self._bus.call(self.bus_name, MPRIS_PATH, PLAYER_IFACE, member, signature, body)
        except BusError as e:
            log.warning("%s: %s failed: %s", self.name, member, e)
            return False
        log.debug("%s: %s", self.name, member)
        return True

    async def _set_remote(self, prop: str, signature: str, value) -> bool:
        if not self._alive:
            return False
        try:
            await self._bus.set_property(self.bus_name, PLAYER_IFACE, prop, signature, value)
        except BusError as e:
            log.warning("%s: setting %s failed: %s", self.name, prop, e)
            return False
        return True

    async def play_pause(self) -> bool:
        return await self._call("PlayPause")

    async def play(self) -> bool:
        return await self._call("Play")

    async def pause(self) -> bool:
        return await self._call("Pause")

    async def stop(self) -> bool:
        return await self._call("Stop")

    async def next(self) -> bool:
        return await self._call("Next")

    async def previous(self) -> bool:
        return await self._call("Previous")

    async def shuffle(self) -> bool:
        """Toggle shuffle."""
        if self.shuffle_status == UNSUPPORTED:
            log.debug("%s: shuffle not supported", self.name)
            return False
        return await self._set_remote("Shuffle", "b", not self.shuffle_status)

    async def loop(self) -> bool:
        """Cycle loop status None -> Track -> Playlist -> None."""
        if self.loop_status == UNSUPPORTED:
            log.debug("%s: loop not supported", self.name)
            return False
        return await self._set_remote("LoopStatus", "s", LOOP_CYCLE[self.loop_status])

    async def set_volume(self, volume: float) -> bool:
        if self.volume == UNSUPPORTED:
            log.debug("%s: volume not supported", self.name)
            return False
        return await self._set_remote("Volume", "d", float(volume))

    async def set_position(self, seconds: float) -> bool:
        if not self.track_id or self.track_id == NO_TRACK:
            log.debug("%s: no track to seek in", self.name)
            return False
        return await self._call("SetPosition", "ox",
                                [self.track_id, int(seconds * MICROSECONDS)])

    # ── Serialisation ──

    def to_dict(self) -> dict:
        return {
            "bus_name": self.bus_name,
            "name": self.name,
            "identity": self.identity,
            "entry": self.entry,
            "track_id": self.track_id,
            "track_artists": list(self.track_artists),
            "track_title": self.track_title,
            "track_album": self.track_album,
            "track_cover_url": self.track_cover_url,
            "cover_path": self.cover_path,
            "metadata": self.metadata.as_dict(),
            "playback_status": self.playback_status,
            "can_go_next": self.can_go_next,
            "can_go_prev": self.can_go_prev,
            "can_play": self.can_play,
            "shuffle_status": self.shuffle_status,
            "loop_status": self.loop_status,
            "volume": self.volume,
            "length": self.length,
            "position": self.position,
        }
