"""In-memory stand-in for BusConnection used across the test suite."""

import asyncio

import pytest

from mprishub.lib.bus import (
    DBUS_IFACE,
    DBUS_NAME,
    DBUS_PATH,
    MPRIS_IFACE,
    MPRIS_PATH,
    PLAYER_IFACE,
    PROPERTIES_IFACE,
    BusError,
    BusUnavailable,
)

NAME_HAS_NO_OWNER = "org.freedesktop.DBus.Error.NameHasNoOwner"
SERVICE_UNKNOWN = "org.freedesktop.DBus.Error.ServiceUnknown"


class FakeSubscription:

    def __init__(self, bus, key, callback, arg0namespace=None):
        self._bus = bus
        self.key = key
        self.callback = callback
        self.arg0namespace = arg0namespace
        self.active = True

    def cancel(self):
        if self.active:
            self.active = False
            self._bus.subscriptions.remove(self)


class FakeBus:

    def __init__(self):
        self.fail_connect = False
        self.connected = False
        self.players: dict[str, dict] = {}
        self.subscriptions: list[FakeSubscription] = []
        self.calls: list[tuple] = []
        self.sets: list[tuple] = []
        self.position_gets = 0
        self.position_gate: asyncio.Event | None = None
        self._next_owner = 100

    # ── BusConnection interface ──

    async def connect(self):
        if self.fail_connect:
            raise BusUnavailable("org.freedesktop.DBus.Error.NoServer", "no bus")
        self.connected = True
        return self

    def disconnect(self):
        self.connected = False

    async def list_names(self):
        return [DBUS_NAME, ":1.1", "org.freedesktop.Notifications", *self.players]

    async def get_name_owner(self, name):
        if name not in self.players:
            raise BusError(NAME_HAS_NO_OWNER, f"{name} has no owner")
        return self.players[name]["owner"]

    async def get_all(self, name, interface):
        player = self._player(name)
        return dict(player[interface])

    async def get_property(self, name, interface, prop):
        player = self._player(name)
        if prop == "Position":
            self.position_gets += 1
            if self.position_gate is not None:
                await self.position_gate.wait()
        if prop not in player[interface]:
            raise BusError("org.freedesktop.DBus.Error.InvalidArgs", f"no property {prop}")
        return player[interface][prop]

    async def set_property(self, name, interface, prop, signature, value):
        self._player(name)
        self.sets.append((name, prop, signature, value))

    async def call(self, destination, path, interface, member, signature="", body=None):
        self._player(destination)
        self.calls.append((destination, member, list(body or [])))
        return []

    async def subscribe(self, sender, path, interface, member, callback, arg0namespace=None):
        sub = FakeSubscription(self, (sender, path, interface, member), callback, arg0namespace)
        self.subscriptions.append(sub)
        return sub

    # ── Test helpers ──

    def _player(self, name):
        if name not in self.players:
            raise BusError(SERVICE_UNKNOWN, f"{name} is not on the bus")
        return self.players[name]

    def _emit(self, sender, path, interface, member, *args):
        for sub in list(self.subscriptions):
            if sub.active and sub.key == (sender, path, interface, member):
                sub.callback(*args)

    def add_player(self, name, player_props=None, root_props=None, announce=True):
        owner = f":1.{self._next_owner}"
        self._next_owner += 1
        self.players[name] = {
            "owner": owner,
            MPRIS_IFACE: dict(root_props if root_props is not None
                              else {"Identity": "Test Player", "DesktopEntry": "testplayer"}),
            PLAYER_IFACE: dict(player_props if player_props is not None else {}),
        }
        if announce:
            self._emit(DBUS_NAME, DBUS_PATH, DBUS_IFACE, "NameOwnerChanged", name, "", owner)
        return owner

    def remove_player(self, name):
        owner = self.players.pop(name)["owner"]
        self._emit(DBUS_NAME, DBUS_PATH, DBUS_IFACE, "NameOwnerChanged", name, owner, "")

    def announce(self, name, old_owner, new_owner):
        self._emit(DBUS_NAME, DBUS_PATH, DBUS_IFACE, "NameOwnerChanged", name, old_owner, new_owner)

    def change(self, name, invalidated=(), interface=PLAYER_IFACE, **props):
        player = self.players[name]
        player[interface].update(props)
        self._emit(player["owner"], MPRIS_PATH, PROPERTIES_IFACE, "PropertiesChanged",
                   interface, props, list(invalidated))

    def seek(self, name, position_us):
        player = self.players[name]
        player[PLAYER_IFACE]["Position"] = position_us
        self._emit(player["owner"], MPRIS_PATH, PLAYER_IFACE, "Seeked", position_us)


def full_player_props(**overrides):
    props = {
        "PlaybackStatus": "Playing",
        "CanGoNext": True,
        "CanGoPrevious": False,
        "CanPlay": True,
        "Shuffle": False,
        "LoopStatus": "None",
        "Volume": 0.5,
        "Position": 0,
        "Metadata": {
            "mpris:trackid": "/org/mpris/MediaPlayer2/Track/1",
            "mpris:length": 180_000_000,
            "xesam:title": "T",
            "xesam:artist": ["A"],
            "xesam:album": "Album",
        },
    }
    props.update(overrides)
    return props


async def settle(rounds: int = 10):
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def bus():
    return FakeBus()
