"""
Players - local mirrors of media players found on the bus.

A player does NOT provide content.  It watches one MPRIS endpoint (mpv,
Spotify, a browser tab, ...) and reports what's happening - track info,
cover art, volume, playback state, position - to whoever observes it.

Current players:
  mpris.py     - MprisPlayer, one per org.mpris.MediaPlayer2.* endpoint
  metadata.py  - TrackMetadata, typed view over the MPRIS metadata map
"""

from .metadata import TrackMetadata
from .mpris import PAUSED, PLAYING, STOPPED, UNSUPPORTED, MprisPlayer

__all__ = ["MprisPlayer", "TrackMetadata", "PLAYING", "PAUSED", "STOPPED", "UNSUPPORTED"]
