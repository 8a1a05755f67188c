import asyncio
import random

import pytest

from conftest import full_player_props, settle
from mprishub.service import MprisService

PREFIX = "org.mpris.MediaPlayer2."
NAME = PREFIX + "testplayer"


@pytest.fixture
async def service(bus):
    svc = MprisService(bus, poll_interval=0.01)
    yield svc
    await svc.stop()


def record(obj, signal):
    seen = []
    obj.connect(signal, lambda *args: seen.append(args))
    return seen


@pytest.mark.asyncio
async def test_player_lifecycle_scenario(bus, service):
    added = record(service, "player-added")
    changed_players = record(service, "player-changed")
    removed = record(service, "player-removed")
    await service.start()

    bus.add_player(NAME, {
        "PlaybackStatus": "Playing",
        "Metadata": {"xesam:artist": ["A"], "xesam:title": "T"},
    })
    await settle()

    assert added == [(NAME,)]
    player = service.get_player("testplayer")
    assert player is not None
    assert player.track_title == "T"
    assert player.track_artists == ["A"]

    bus.change(NAME, PlaybackStatus="Paused")
    assert changed_players == [(NAME,)]
    gets = bus.position_gets
    await asyncio.sleep(0.05)
    assert bus.position_gets == gets

    bus.remove_player(NAME)
    await settle()

    assert removed == [(NAME,)]
    assert player not in service.players
    assert service.get_player("testplayer") is None
    assert not player.alive


@pytest.mark.asyncio
async def test_players_present_at_start_are_listed(bus, service):
    bus.add_player(PREFIX + "mpv", full_player_props(), announce=False)
    bus.add_player(PREFIX + "spotify", full_player_props(), announce=False)

    assert await service.start()
    await settle()

    names = sorted(p.bus_name for p in service.players)
    assert names == [PREFIX + "mpv", PREFIX + "spotify"]


@pytest.mark.asyncio
async def test_non_mpris_names_are_ignored(bus, service):
    await service.start()

    bus.announce("org.freedesktop.Notifications", "", ":1.5")
    bus.announce("org.mpris.MediaPlayer2", "", ":1.6")
    await settle()

    assert service.players == []


@pytest.mark.asyncio
async def test_get_player_matches_substring(bus, service):
    await service.start()
    bus.add_player(PREFIX + "firefox.instance_1_42", full_player_props())
    await settle()

    assert service.get_player("firefox").bus_name == PREFIX + "firefox.instance_1_42"
    assert service.get_player("instance_1_42") is not None
    assert service.get_player("chromium") is None


@pytest.mark.asyncio
async def test_duplicate_events_are_idempotent(bus, service):
    added = record(service, "player-added")
    removed = record(service, "player-removed")
    await service.start()

    owner = bus.add_player(NAME, full_player_props())
    bus.announce(NAME, "", owner)
    await settle()
    bus.announce(NAME, "", owner)
    await settle()

    assert len(service.players) == 1
    assert added == [(NAME,)]

    bus.remove_player(NAME)
    bus.announce(NAME, owner, "")
    await settle()

    assert service.players == []
    assert removed == [(NAME,)]


@pytest.mark.asyncio
async def test_removal_during_setup_never_lists_player(bus, service):
    added = record(service, "player-added")
    removed = record(service, "player-removed")
    await service.start()

    bus.add_player(NAME, full_player_props())
    bus.remove_player(NAME)
    await settle()

    assert service.players == []
    assert added == []
    assert removed == []


@pytest.mark.asyncio
async def test_endpoint_gone_before_fetch_is_treated_as_removal(bus, service):
    errors = record(service, "error")
    await service.start()

    bus.announce(NAME, "", ":1.77")
    await settle()

    assert service.players == []
    assert errors == []


@pytest.mark.asyncio
async def test_unexpected_setup_failure_is_contained(bus, service):
    await service.start()
    original = bus.get_all

    async def broken(name, interface):
        raise RuntimeError("malformed reply")

    bus.get_all = broken
    bus.add_player(NAME, full_player_props())
    await settle()

    assert service.players == []
    assert service._pending == {}
    assert len(bus.subscriptions) == 1

    bus.get_all = original
    bus.remove_player(NAME)
    bus.add_player(NAME, full_player_props())
    await settle()
    assert [p.bus_name for p in service.players] == [NAME]


@pytest.mark.asyncio
async def test_owner_replacement_recreates_player(bus, service):
    added = record(service, "player-added")
    removed = record(service, "player-removed")
    await service.start()
    old_owner = bus.add_player(NAME, full_player_props())
    await settle()
    first = service.get_player(NAME)

    new_owner = ":1.999"
    bus.players[NAME]["owner"] = new_owner
    bus.announce(NAME, old_owner, new_owner)
    await settle()

    second = service.get_player(NAME)
    assert second is not first
    assert not first.alive
    assert second.owner == new_owner
    assert len(added) == 2 and len(removed) == 1


@pytest.mark.asyncio
async def test_position_updates_do_not_emit_changed(bus, service):
    await service.start()
    bus.add_player(NAME, full_player_props())
    await settle()
    changed = record(service, "changed")
    player_changed = record(service, "player-changed")

    bus.seek(NAME, 10_000_000)

    assert service.get_player(NAME).position == 10.0
    assert changed == []
    assert player_changed == []

    bus.change(NAME, Volume=0.9)
    assert changed == [()]
    assert player_changed == [(NAME,)]


@pytest.mark.asyncio
async def test_bus_unavailable_is_fatal_and_reported_once(bus, service):
    bus.fail_connect = True
    errors = record(service, "error")

    assert await service.start() is False

    assert len(errors) == 1
    assert service.available is False
    assert service.players == []


@pytest.mark.asyncio
async def test_cover_caching_toggle_is_shared(bus):
    requests = []

    class Covers:
        async def resolve(self, url):
            requests.append(url)
            return "/tmp/cover.jpg"

        async def close(self):
            pass

    svc = MprisService(bus, Covers(), cache_covers=False)
    await svc.start()
    props = full_player_props()
    props["Metadata"]["mpris:artUrl"] = "https://example.com/1.png"
    bus.add_player(NAME, props)
    await settle()
    assert requests == []

    svc.cache_covers = True
    bus.change(NAME, Metadata={"mpris:artUrl": "https://example.com/2.png"})
    await settle()
    assert requests == ["https://example.com/2.png"]
    await svc.stop()


@pytest.mark.asyncio
async def test_stop_closes_every_player(bus, service):
    await service.start()
    bus.add_player(NAME, full_player_props())
    await settle()
    player = service.get_player(NAME)

    await service.stop()

    assert service.players == []
    assert not player.alive
    assert bus.subscriptions == []


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(20))
async def test_player_list_tracks_live_endpoints(bus, service, seed):
    rng = random.Random(seed)
    names = [PREFIX + f"p{i}" for i in range(4)] + ["org.example.Other"]
    await service.start()

    for _ in range(40):
        name = rng.choice(names)
        op = rng.random()
        if name in bus.players and op < 0.4:
            bus.remove_player(name)
        elif name not in bus.players and op < 0.8:
            bus.add_player(name, full_player_props(PlaybackStatus="Paused"))
        elif name in bus.players:
            # Duplicate announcement of the current owner.
            bus.announce(name, "", bus.players[name]["owner"])
        if rng.random() < 0.5:
            await settle()

    await settle(30)
    expected = {n for n in bus.players if n.startswith(PREFIX)}
    assert {p.bus_name for p in service.players} == expected
