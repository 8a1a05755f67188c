"""Typed view over an MPRIS ``Metadata`` dictionary.

Keys follow the MPRIS/xesam vocabulary (``xesam:title``, ``mpris:artUrl``,
...).  Every accessor returns a default for missing or malformed values
instead of raising.
"""

from collections.abc import Mapping

TRACK_ID = "mpris:trackid"
LENGTH = "mpris:length"
ART_URL = "mpris:artUrl"
TITLE = "xesam:title"
ARTIST = "xesam:artist"
ALBUM = "xesam:album"
URL = "xesam:url"
TRACK_NUMBER = "xesam:trackNumber"

NO_TRACK = "/org/mpris/MediaPlayer2/TrackList/NoTrack"

MICROSECONDS = 1_000_000


def us_to_seconds(value) -> float:
    try:
        return float(value) / MICROSECONDS
    except (TypeError, ValueError):
        return 0.0


class TrackMetadata(Mapping):

    def __init__(self, data: Mapping | None = None):
        self._data = dict(data or {})

    def __getitem__(self, key):
        return self._data[key]

    def __iter__(self):
        return iter(self._data)

    def __len__(self):
        return len(self._data)

    def __eq__(self, other):
        if isinstance(other, TrackMetadata):
            return self._data == other._data
        return NotImplemented

    def __repr__(self):
        return f"TrackMetadata({self._data!r})"

    def _str(self, key: str) -> str:
        value = self._data.get(key)
        return value if isinstance(value, str) else ""

    @property
    def track_id(self) -> str:
        return self._str(TRACK_ID)

    @property
    def title(self) -> str:
        return self._str(TITLE)

    @property
    def album(self) -> str:
        return self._str(ALBUM)

    @property
    def art_url(self) -> str:
        return self._str(ART_URL)

    @property
    def url(self) -> str:
        return self._str(URL)

    @property
    def artists(self) -> list[str]:
        value = self._data.get(ARTIST)
        # Some players send a bare string instead of the specified list.
        if isinstance(value, str):
            return [value] if value else []
        if isinstance(value, (list, tuple)):
            return [a for a in value if isinstance(a, str)]
        return []

    @property
    def length(self) -> float:
        """Track length in seconds, -1.0 when the player does not report one."""
        if LENGTH not in self._data:
            return -1.0
        return us_to_seconds(self._data[LENGTH])

    @property
    def track_number(self) -> int:
        value = self._data.get(TRACK_NUMBER)
        return value if isinstance(value, int) and not isinstance(value, bool) else 0

    def as_dict(self) -> dict:
        return dict(self._data)
