# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
MprisService - registry of every MPRIS player on the bus.

Constructed explicitly and handed to whatever needs it; there is no
process-wide instance.

    service = MprisService(BusConnection(), covers=CoverArtCache(cache_dir))
    service.connect("player-added", on_added)
    await service.start()
    player = service.get_player("spotify")
    await service.stop()

Signals:
    player-added(bus_name)    - a player finished setup and is listed
    player-removed(bus_name)  - a player left the bus
    player-changed(bus_name)  - a player changed anything but its position
    changed()                 - any of the three above
    error(exc)                - the bus is unavailable; no players will appear
"""

import asyncio
import logging

from .artwork import CoverArtCache
from .bus_watcher import BusWatcher
from .lib.bus import MPRIS_PREFIX, PlayerGone
from .lib.observable import Observable
from .players.mpris import POSITION_POLL_INTERVAL, MprisPlayer

log = logging.getLogger(__name__)


class MprisService(Observable):

    def __init__(self, bus, covers: CoverArtCache | None = None, *,
                 cache_covers: bool = True,
                 poll_interval: float = POSITION_POLL_INTERVAL,
                 prefix: str = MPRIS_PREFIX):
        super().__init__()
        self._bus = bus
        self.covers = covers
        self.cache_covers = cache_covers
        self.poll_interval = poll_interval
        self.available = False
        self._players: dict[str, MprisPlayer] = {}
        self._pending: dict[str, asyncio.Task] = {}
        self._watcher = BusWatcher(bus, prefix)
        self._watcher.connect("added", self._on_added)
        self._watcher.connect("removed", self._on_removed)
        self._watcher.connect("error", self._on_error)

    @property
    def players(self) -> list[MprisPlayer]:
        """Snapshot of the live players."""
        return list(self._players.values())

    def get_player(self, fragment: str) -> MprisPlayer | None:
        """First player whose bus name contains *fragment*."""
        for bus_name, player in self._players.items():
            if fragment in bus_name:
                return player
        return None

    # ── Lifecycle ──

    async def start(self) -> bool:
        self.available = await self._watcher.start()
        return self.available

    async def stop(self):
        self._watcher.stop()
        pending = list(self._pending.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()
        for bus_name in list(self._players):
            self._drop(bus_name)
        if self.covers:
            await self.covers.close()
        self.available = False
        log.info("MPRIS service stopped")

    # ── Watcher events ──

    def _on_error(self, exc: Exception):
        self.available = False
        self.emit("error", exc)

    def _on_added(self, bus_name: str):
        if bus_name in self._players or bus_name in self._pending:
            return
        self._pending[bus_name] = asyncio.ensure_future(self._add_player(bus_name))

    def _on_removed(self, bus_name: str):
        task = self._pending.pop(bus_name, None)
        if task:
            log.debug("Player %s left during setup", bus_name)
            task.cancel()
        self._drop(bus_name)

    async def _add_player(self, bus_name: str):
        player = MprisPlayer(
            self._bus, bus_name,
            covers=self.covers,
            cache_covers=lambda: self.cache_covers,
            poll_interval=self.poll_interval,
        )
        try:
            await player.setup()
        except PlayerGone as e:
            log.info("Player %s vanished before setup: %s", bus_name, e)
            return
        except asyncio.CancelledError:
            player.close()
            raise
        except Exception:
            log.exception("Setting up player %s failed", bus_name)
            player.close()
            return
        finally:
            if self._pending.get(bus_name) is asyncio.current_task():
                del self._pending[bus_name]

        self._players[bus_name] = player
        player.connect("changed", lambda: self._on_player_changed(bus_name))
        log.info("Player added: %s (%d total)", bus_name, len(self._players))
        self.emit("player-added", bus_name)
        self.emit("changed")

    def _drop(self, bus_name: str):
        player = self._players.pop(bus_name, None)
        if player is None:
            return
        player.close()
        log.info("Player removed: %s (%d remaining)", bus_name, len(self._players))
        self.emit("player-removed", bus_name)
        self.emit("changed")

    def _on_player_changed(self, bus_name: str):
        if bus_name not in self._players:
            return
        self.emit("player-changed", bus_name)
        self.emit("changed")
