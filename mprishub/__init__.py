"""mprishub - aggregates MPRIS media players on the D-Bus session bus."""

from .artwork import ArtworkError, CoverArtCache
from .bus_watcher import BusWatcher
from .players import MprisPlayer, TrackMetadata, UNSUPPORTED
from .service import MprisService

__version__ = "0.1.0"

__all__ = [
    "ArtworkError",
    "BusWatcher",
    "CoverArtCache",
    "MprisPlayer",
    "MprisService",
    "TrackMetadata",
    "UNSUPPORTED",
]
