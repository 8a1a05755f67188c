"""Signal/callback mixin used by the player objects and the service registry.

Signals are plain strings.  Per-attribute changes are published as
``notify::<attr>`` (callback receives the new value) and as ``notify``
(callback receives the attribute name), so a UI binding layer can subscribe
either per attribute or per object.

Usage:
    handler_id = player.connect("changed", on_changed)
    player.subscribe("track_title", lambda title: label.set_text(title))
    player.disconnect(handler_id)
"""

import logging
from typing import Callable

logger = logging.getLogger(__name__)


class Observable:

    def __init__(self):
        self._handlers: dict[int, tuple[str, Callable]] = {}
        self._next_handler_id = 1

    def connect(self, signal: str, callback: Callable) -> int:
        handler_id = self._next_handler_id
        self._next_handler_id += 1
        self._handlers[handler_id] = (signal, callback)
        return handler_id

    def subscribe(self, attr: str, callback: Callable) -> int:
        """Shorthand for ``connect("notify::<attr>", callback)``."""
        return self.connect(f"notify::{attr}", callback)

    def disconnect(self, handler_id: int) -> None:
        self._handlers.pop(handler_id, None)

    def disconnect_all(self) -> None:
        self._handlers.clear()

    def emit(self, signal: str, *args) -> None:
        # Snapshot: handlers may disconnect themselves while being called.
        for sig, callback in list(self._handlers.values()):
            if sig != signal:
                continue
            try:
                callback(*args)
            except Exception:
                logger.exception("Handler for '%s' on %r failed", signal, self)

    def notify(self, attr: str, value) -> None:
        self.emit(f"notify::{attr}", value)
        self.emit("notify", attr)
