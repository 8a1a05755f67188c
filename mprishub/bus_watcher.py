# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
BusWatcher - reports MPRIS endpoints appearing on and leaving the bus.

Signals:
    added(name)    - a name with the MPRIS prefix gained an owner
    removed(name)  - a known name lost its owner
    error(exc)     - the bus could not be reached; nothing else follows

Delivery is idempotent: a name already reported as added is not reported
again, and removing a name that was never added is a no-op.
"""

import logging

from .lib.bus import (
    DBUS_IFACE,
    DBUS_NAME,
    DBUS_PATH,
    MPRIS_PREFIX,
    BusError,
    BusUnavailable,
)
from .lib.observable import Observable

logger = logging.getLogger(__name__)


class BusWatcher(Observable):

    def __init__(self, bus, prefix: str = MPRIS_PREFIX):
        super().__init__()
        self._bus = bus
        self.prefix = prefix
        self.known: set[str] = set()
        self.failed: Exception | None = None
        self._subscription = None
        self._running = False

    async def start(self) -> bool:
        try:
            await self._bus.connect()
        except BusUnavailable as e:
            self.failed = e
            logger.error("Cannot connect to the message bus: %s", e)
            self.emit("error", e)
            return False

        self._running = True
        try:
            # Subscribe before enumerating so no transition falls in between.
            self._subscription = await self._bus.subscribe(
                DBUS_NAME, DBUS_PATH, DBUS_IFACE, "NameOwnerChanged",
                self._on_name_owner_changed,
                arg0namespace=self.prefix.rstrip("."),
            )
            names = await self._bus.list_names()
        except BusError as e:
            self.stop()
            self.failed = e
            logger.error("Cannot watch the message bus: %s", e)
            self.emit("error", e)
            return False

        for name in names:
            if self._matches(name):
                self._add(name)
        logger.info("Watching %s* (%d present)", self.prefix, len(self.known))
        return True

    def stop(self):
        self._running = False
        if self._subscription:
            self._subscription.cancel()
            self._subscription = None
        self.known.clear()

    def _matches(self, name: str) -> bool:
        return name.startswith(self.prefix) and len(name) > len(self.prefix)

    def _on_name_owner_changed(self, name: str, old_owner: str, new_owner: str):
        if not self._running or not self._matches(name):
            return
        if old_owner:
            self._remove(name)
        if new_owner:
            self._add(name)

    def _add(self, name: str):
        if name in self.known:
            return
        self.known.add(name)
        logger.debug("Endpoint appeared: %s", name)
        self.emit("added", name)

    def _remove(self, name: str):
        if name not in self.known:
            return
        self.known.discard(name)
        logger.debug("Endpoint vanished: %s", name)
        self.emit("removed", name)
