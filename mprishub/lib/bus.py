# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Thin D-Bus access layer for the MPRIS services.

Talks to the bus with raw messages instead of introspected proxies: several
players (Chromium, Electron apps) publish broken or empty introspection data,
so a static vocabulary of interface/method names is more reliable.

Usage:
    bus = BusConnection()
    await bus.connect()
    names = await bus.list_names()
    props = await bus.get_all("org.mpris.MediaPlayer2.mpv", PLAYER_IFACE)
    sub = await bus.subscribe(owner, MPRIS_PATH, PROPERTIES_IFACE,
                              "PropertiesChanged", on_changed)
    sub.cancel()
    bus.disconnect()
"""

import asyncio
import logging

from dbus_fast import BusType, Message, MessageType, Variant
from dbus_fast.aio import MessageBus
from dbus_fast.errors import AuthError

logger = logging.getLogger(__name__)

MPRIS_PREFIX = "org.mpris.MediaPlayer2."
MPRIS_PATH = "/org/mpris/MediaPlayer2"
MPRIS_IFACE = "org.mpris.MediaPlayer2"
PLAYER_IFACE = "org.mpris.MediaPlayer2.Player"
PROPERTIES_IFACE = "org.freedesktop.DBus.Properties"

DBUS_NAME = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"
DBUS_IFACE = "org.freedesktop.DBus"

BUS_TYPES = {
    "session": BusType.SESSION,
    "system": BusType.SYSTEM,
}


class BusError(Exception):
    """A bus call failed (peer vanished, timed out, or returned an error)."""

    def __init__(self, name: str, message: str = ""):
        super().__init__(f"{name}: {message}" if message else name)
        self.name = name
        self.message = message


class BusUnavailable(BusError):
    """The bus connection could not be established."""


class PlayerGone(BusError):
    """A player endpoint vanished before it could be set up."""


def unwrap(value):
    """Recursively strip dbus_fast Variants into plain Python values."""
    if isinstance(value, Variant):
        return unwrap(value.value)
    if isinstance(value, dict):
        return {k: unwrap(v) for k, v in value.items()}
    if isinstance(value, list):
        return [unwrap(v) for v in value]
    return value


class Subscription:
    """Handle for one signal subscription.  ``cancel()`` is idempotent."""

    def __init__(self, bus: "BusConnection", rule: str, key: tuple, callback):
        self._bus = bus
        self.rule = rule
        self.key = key
        self.callback = callback
        self.active = True

    def cancel(self):
        if not self.active:
            return
        self.active = False
        self._bus._drop_subscription(self)


class BusConnection:
    """Owns one dbus_fast MessageBus and dispatches signals to subscribers."""

    def __init__(self, bus_type: str = "session"):
        if bus_type not in BUS_TYPES:
            raise ValueError(f"Unknown bus type '{bus_type}'")
        self.bus_type = bus_type
        self._bus: MessageBus | None = None
        self._subscriptions: list[Subscription] = []
        self._pending: set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._bus is not None and self._bus.connected

    async def connect(self) -> "BusConnection":
        if self.connected:
            return self
        try:
            self._bus = await MessageBus(bus_type=BUS_TYPES[self.bus_type]).connect()
        except (OSError, ValueError, AuthError) as e:
            self._bus = None
            raise BusUnavailable("org.freedesktop.DBus.Error.NoServer", str(e)) from e
        self._bus.add_message_handler(self._on_message)
        logger.info("Connected to %s bus as %s", self.bus_type, self._bus.unique_name)
        return self

    def disconnect(self):
        for sub in list(self._subscriptions):
            sub.active = False
        self._subscriptions.clear()
        if self._bus:
            self._bus.remove_message_handler(self._on_message)
            self._bus.disconnect()
            self._bus = None
            logger.info("Disconnected from %s bus", self.bus_type)

    # ── Method calls ──

    async def call(self, destination: str, path: str, interface: str,
                   member: str, signature: str = "", body: list | None = None) -> list:
        """Invoke a method and return the unwrapped reply body.

        Raises BusError for error replies and when the connection is gone.
        """
        if not self.connected:
            raise BusError("org.freedesktop.DBus.Error.Disconnected", "not connected")
        msg = Message(
            destination=destination,
            path=path,
            interface=interface,
            member=member,
            signature=signature,
            body=body or [],
        )
        try:
            reply = await self._bus.call(msg)
        except (EOFError, OSError) as e:
            raise BusError("org.freedesktop.DBus.Error.Disconnected", str(e)) from e
        if reply.message_type == MessageType.ERROR:
            detail = reply.body[0] if reply.body else ""
            raise BusError(reply.error_name or "org.freedesktop.DBus.Error.Failed", str(detail))
        return unwrap(reply.body)

    async def list_names(self) -> list[str]:
        body = await self.call(DBUS_NAME, DBUS_PATH, DBUS_IFACE, "ListNames")
        return list(body[0])

    async def get_name_owner(self, name: str) -> str:
        body = await self.call(DBUS_NAME, DBUS_PATH, DBUS_IFACE, "GetNameOwner", "s", [name])
        return body[0]

    async def get_all(self, name: str, interface: str) -> dict:
        body = await self.call(name, MPRIS_PATH, PROPERTIES_IFACE, "GetAll", "s", [interface])
        return body[0]

    async def get_property(self, name: str, interface: str, prop: str):
        body = await self.call(name, MPRIS_PATH, PROPERTIES_IFACE, "Get", "ss", [interface, prop])
        return body[0]

    async def set_property(self, name: str, interface: str, prop: str,
                           signature: str, value) -> None:
        await self.call(name, MPRIS_PATH, PROPERTIES_IFACE, "Set", "ssv",
                        [interface, prop, Variant(signature, value)])

    # ── Signals ──

    async def subscribe(self, sender: str, path: str, interface: str, member: str,
                        callback, arg0namespace: str | None = None) -> Subscription:
        """Register *callback(*args)* for a signal and add the bus match rule.

        *sender* should be a unique connection name (or org.freedesktop.DBus):
        signals arrive stamped with the unique name, not the well-known one.
        """
        rule = (f"type='signal',sender='{sender}',path='{path}',"
                f"interface='{interface}',member='{member}'")
        if arg0namespace:
            rule += f",arg0namespace='{arg0namespace}'"
        await self.call(DBUS_NAME, DBUS_PATH, DBUS_IFACE, "AddMatch", "s", [rule])
        sub = Subscription(self, rule, (sender, path, interface, member), callback)
        self._subscriptions.append(sub)
        logger.debug("Subscribed: %s", rule)
        return sub

    def _drop_subscription(self, sub: Subscription):
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)
        if not self.connected:
            return
        task = asyncio.ensure_future(self._remove_match(sub.rule))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _remove_match(self, rule: str):
        try:
            await self.call(DBUS_NAME, DBUS_PATH, DBUS_IFACE, "RemoveMatch", "s", [rule])
        except BusError as e:
            logger.debug("RemoveMatch failed for %s: %s", rule, e)

    def _on_message(self, msg: Message):
        if msg.message_type != MessageType.SIGNAL:
            return None
        key = (msg.sender, msg.path, msg.interface, msg.member)
        args = unwrap(msg.body)
        for sub in list(self._subscriptions):
            if not sub.active or sub.key != key:
                continue
            try:
                sub.callback(*args)
            except Exception:
                logger.exception("Signal handler failed for %s.%s", msg.interface, msg.member)
        return None
