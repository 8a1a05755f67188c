import asyncio
import socket

import pytest

from mprishub.lib import watchdog


@pytest.fixture
def notify_socket(monkeypatch, tmp_path):
    path = str(tmp_path / "notify")
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    sock.bind(path)
    sock.settimeout(1)
    monkeypatch.setenv("NOTIFY_SOCKET", path)
    yield sock
    sock.close()


def test_sd_notify_without_socket_is_noop(monkeypatch):
    monkeypatch.delenv("NOTIFY_SOCKET", raising=False)

    assert watchdog.sd_notify("READY=1") is False


def test_sd_notify_delivers(notify_socket):
    assert watchdog.sd_notify("READY=1") is True
    assert notify_socket.recv(64) == b"READY=1"


def test_sd_notify_unreachable_socket(monkeypatch, tmp_path):
    monkeypatch.setenv("NOTIFY_SOCKET", str(tmp_path / "missing"))

    assert watchdog.sd_notify("READY=1") is False


@pytest.mark.asyncio
async def test_watchdog_loop_reports_status(notify_socket):
    task = asyncio.ensure_future(watchdog.watchdog_loop(interval=10, status=lambda: "2 players"))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert notify_socket.recv(64) == b"READY=1"
    assert notify_socket.recv(64) == b"WATCHDOG=1\nSTATUS=2 players"
