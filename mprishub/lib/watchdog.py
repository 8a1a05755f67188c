"""Systemd notify/watchdog heartbeat for the mprishub daemon.

Sends READY=1 once, then WATCHDOG=1 plus a STATUS= line at regular
intervals.  Does nothing when NOTIFY_SOCKET is unset (plain terminal or a
user session without Type=notify).

Usage:
    from mprishub.lib.watchdog import watchdog_loop
    asyncio.create_task(watchdog_loop(status=lambda: f"{len(svc.players)} players"))
"""

import asyncio
import logging
import os
import socket
from typing import Callable

logger = logging.getLogger(__name__)


def _socket_address(raw: str) -> str:
    # Leading '@' names an abstract-namespace socket.
    return "\0" + raw[1:] if raw.startswith("@") else raw


def sd_notify(state: str) -> bool:
    """Send *state* to the service manager.  True if it was delivered."""
    raw = os.environ.get("NOTIFY_SOCKET")
    if not raw:
        return False
    with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
        try:
            sock.sendto(state.encode(), _socket_address(raw))
        except OSError as e:
            logger.debug("sd_notify(%r) failed: %s", state.split("\n", 1)[0], e)
            return False
    return True


async def watchdog_loop(interval: float = 20, status: Callable[[], str] | None = None):
    """Report readiness, then ping the watchdog every *interval* seconds."""
    sd_notify("READY=1")
    logger.info("Watchdog started (interval=%ss)", interval)
    while True:
        lines = ["WATCHDOG=1"]
        if status is not None:
            lines.append(f"STATUS={status()}")
        sd_notify("\n".join(lines))
        await asyncio.sleep(interval)
