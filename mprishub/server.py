#!/usr/bin/env python3
# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
mprishub daemon - MPRIS registry exposed over HTTP + WebSocket.

Watches the session bus for MPRIS players and pushes their state to UI
clients over a WebSocket feed.  Controls are plain HTTP endpoints:

  GET  /players                       - snapshot of every player
  GET  /players/{fragment}            - first player whose bus name matches
  GET  /players/{fragment}/cover      - cached cover art (JPEG)
  POST /players/{fragment}/{action}   - play_pause, play, pause, stop, next,
                                        previous, shuffle, loop
  POST /players/{fragment}/position   - {"position": seconds}
  POST /players/{fragment}/volume     - {"volume": 0.0-1.0}
  GET  /status                        - service status
  GET  /ws                            - push feed (player_added,
                                        player_removed, player_changed,
                                        position)

Usage:
    mprishub                 (console script)
    python3 -m mprishub.server
"""

import asyncio
import json
import logging
import os
import signal

from aiohttp import WSMsgType, web

from .artwork import CoverArtCache
from .lib.bus import BusConnection
from .lib.config import cfg, default_cache_dir
from .lib.watchdog import watchdog_loop
from .service import MprisService

log = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8790

ACTIONS = ("play_pause", "play", "pause", "stop", "next", "previous", "shuffle", "loop")


def _json_default(value):
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _dumps(data) -> str:
    return json.dumps(data, default=_json_default)


class MediaServer:

    def __init__(self, service: MprisService, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT):
        self.service = service
        self.host = host
        self.port = port
        self._ws_clients: set[web.WebSocketResponse] = set()
        self._runner: web.AppRunner | None = None
        self._watchdog_task: asyncio.Task | None = None
        self._position_handlers: dict[str, int] = {}
        self._service_handlers: list[int] = []

    # ── App ──

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws", self._handle_ws)
        app.router.add_get("/status", self._handle_status)
        app.router.add_get("/players", self._handle_players)
        app.router.add_get("/players/{fragment}", self._handle_player)
        app.router.add_get("/players/{fragment}/cover", self._handle_cover)
        app.router.add_post("/players/{fragment}/position", self._handle_position)
        app.router.add_post("/players/{fragment}/volume", self._handle_volume)
        app.router.add_post("/players/{fragment}/{action}", self._handle_action)
        return app

    def attach(self):
        """Forward service events to WebSocket clients."""
        svc = self.service
        self._service_handlers = [
            svc.connect("player-added", self._on_player_added),
            svc.connect("player-removed", self._on_player_removed),
            svc.connect("player-changed", self._on_player_changed),
        ]
        for player in svc.players:
            self._watch_position(player.bus_name)

    def detach(self):
        for handler_id in self._service_handlers:
            self.service.disconnect(handler_id)
        self._service_handlers = []
        self._position_handlers.clear()

    async def start(self):
        self.attach()
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info("HTTP + WebSocket on %s:%d", self.host, self.port)

        if await self.service.start():
            log.info("Watching MPRIS players (%d present)", len(self.service.players))
        else:
            log.error("Message bus unavailable - serving an empty player list")

        self._watchdog_task = asyncio.create_task(watchdog_loop(
            status=lambda: f"{len(self.service.players)} players"))

    async def run(self):
        """Convenience entry-point: start + wait for signal + stop."""
        await self.start()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
        try:
            await stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self):
        if self._watchdog_task:
            self._watchdog_task.cancel()
            try:
                await self._watchdog_task
            except asyncio.CancelledError:
                pass
            self._watchdog_task = None

        self.detach()
        await self.service.stop()

        for ws in list(self._ws_clients):
            await ws.close()
        self._ws_clients.clear()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    # ── Service events → WebSocket ──

    def _watch_position(self, bus_name: str):
        player = self.service.get_player(bus_name)
        if player is None:
            return
        self._position_handlers[bus_name] = player.connect(
            "position", lambda seconds: self._schedule_broadcast(
                {"type": "position", "name": bus_name, "position": seconds}))

    def _on_player_added(self, bus_name: str):
        self._watch_position(bus_name)
        player = self.service.get_player(bus_name)
        self._schedule_broadcast({
            "type": "player_added",
            "name": bus_name,
            "data": player.to_dict() if player else None,
        })

    def _on_player_removed(self, bus_name: str):
        # The player disconnects its own handlers on close.
        self._position_handlers.pop(bus_name, None)
        self._schedule_broadcast({"type": "player_removed", "name": bus_name})

    def _on_player_changed(self, bus_name: str):
        player = self.service.get_player(bus_name)
        if player is None:
            return
        self._schedule_broadcast({
            "type": "player_changed",
            "name": bus_name,
            "data": player.to_dict(),
        })

    def _schedule_broadcast(self, message: dict):
        if not self._ws_clients:
            return
        asyncio.ensure_future(self.broadcast(message))

    async def broadcast(self, message: dict):
        """Push a message to all connected WebSocket clients."""
        if not self._ws_clients:
            return
        payload = _dumps(message)
        disconnected = set()
        for ws in self._ws_clients:
            try:
                await ws.send_str(payload)
            except ConnectionError:
                disconnected.add(ws)
        self._ws_clients -= disconnected
        if message.get("type") != "position":
            log.debug("Broadcast %s to %d clients", message.get("type"), len(self._ws_clients))

    # ── Handlers ──

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        self._ws_clients.add(ws)
        log.info("WebSocket client connected (%d total)", len(self._ws_clients))

        try:
            await ws.send_str(_dumps({
                "type": "players",
                "data": [p.to_dict() for p in self.service.players],
            }))
            # Push-only feed; incoming messages are ignored.
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    log.warning("WebSocket error: %s", ws.exception())
        finally:
            self._ws_clients.discard(ws)
            log.info("WebSocket client disconnected (%d remaining)", len(self._ws_clients))

        return ws

    async def _handle_status(self, request: web.Request) -> web.Response:
        covers = self.service.covers
        return web.json_response({
            "available": self.service.available,
            "players": [p.bus_name for p in self.service.players],
            "cache_covers": self.service.cache_covers,
            "artwork_cache_size": len(covers) if covers else 0,
            "ws_clients": len(self._ws_clients),
        })

    async def _handle_players(self, request: web.Request) -> web.Response:
        return web.json_response(
            [p.to_dict() for p in self.service.players], dumps=_dumps)

    def _lookup(self, request: web.Request):
        fragment = request.match_info["fragment"]
        player = self.service.get_player(fragment)
        if player is None:
            raise web.HTTPNotFound(
                text=_dumps({"status": "error", "reason": f"no player matching '{fragment}'"}),
                content_type="application/json")
        return player

    async def _handle_player(self, request: web.Request) -> web.Response:
        return web.json_response(self._lookup(request).to_dict(), dumps=_dumps)

    async def _handle_cover(self, request: web.Request) -> web.StreamResponse:
        player = self._lookup(request)
        if not player.cover_path or not os.path.exists(player.cover_path):
            raise web.HTTPNotFound(text="no cover art")
        return web.FileResponse(player.cover_path, headers={"Content-Type": "image/jpeg"})

    async def _handle_action(self, request: web.Request) -> web.Response:
        action = request.match_info["action"]
        if action not in ACTIONS:
            raise web.HTTPNotFound(text=f"unknown action '{action}'")
        player = self._lookup(request)
        ok = await getattr(player, action)()
        return web.json_response({"status": "ok" if ok else "error"})

    async def _read_number(self, request: web.Request, key: str) -> float:
        try:
            data = await request.json()
            return float(data[key])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            raise web.HTTPBadRequest(text=f"expected JSON body with numeric '{key}'")

    async def _handle_position(self, request: web.Request) -> web.Response:
        player = self._lookup(request)
        seconds = await self._read_number(request, "position")
        ok = await player.set_position(seconds)
        return web.json_response({"status": "ok" if ok else "error"})

    async def _handle_volume(self, request: web.Request) -> web.Response:
        player = self._lookup(request)
        volume = await self._read_number(request, "volume")
        ok = await player.set_volume(volume)
        return web.json_response({"status": "ok" if ok else "error"})


def create_server() -> MediaServer:
    """Build the bus, artwork cache, service and server from config."""
    covers = None
    if cfg("artwork", "enabled", default=True):
        covers = CoverArtCache(
            cfg("artwork", "cache_dir", default=None) or default_cache_dir(),
            timeout=cfg("artwork", "timeout", default=10),
            max_dimension=cfg("artwork", "max_dimension", default=600),
            max_bytes=cfg("artwork", "max_bytes", default=500 * 1024),
        )
    service = MprisService(
        BusConnection(cfg("bus", "type", default="session")),
        covers,
        cache_covers=covers is not None,
        poll_interval=cfg("mpris", "poll_interval", default=1.0),
    )
    return MediaServer(
        service,
        host=cfg("server", "host", default=DEFAULT_HOST),
        port=cfg("server", "port", default=DEFAULT_PORT),
    )


def main():
    logging.basicConfig(
        level=str(cfg("log", "level", default="INFO")).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    server = create_server()
    asyncio.run(server.run())


if __name__ == "__main__":
    main()
