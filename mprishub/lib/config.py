"""
Shared configuration loader for mprishub.

Loads a single JSON config file.  Search order:
  1. $MPRISHUB_CONFIG                        (explicit override)
  2. /etc/mprishub/config.json               (system-wide)
  3. config.json                             (CWD, handy for local dev)
  4. $XDG_CONFIG_HOME/mprishub/config.json   (per-user)

The first file that parses to a JSON object wins; unreadable or malformed
files are logged and skipped.

Usage:
    from mprishub.lib.config import cfg

    bus_type      = cfg("bus", "type", default="session")
    poll_interval = cfg("mpris", "poll_interval", default=1.0)
    port          = cfg("server", "port", default=8790)
    artwork       = cfg("artwork")  # returns the whole dict
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None


def _search_paths() -> list[str]:
    xdg = os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")
    paths = [
        "/etc/mprishub/config.json",
        "config.json",
        os.path.join(xdg, "mprishub", "config.json"),
    ]
    override = os.environ.get("MPRISHUB_CONFIG")
    if override:
        paths.insert(0, override)
    return paths


def default_cache_dir() -> str:
    xdg = os.environ.get("XDG_CACHE_HOME") or os.path.expanduser("~/.cache")
    return os.path.join(xdg, "mprishub", "media")


def _check(config: dict, path: str) -> None:
    """Log a warning for each value the daemon will ignore or fall back on."""
    bus_type = (config.get("bus") or {}).get("type", "session")
    if bus_type not in ("session", "system"):
        logger.warning("Config %s: unknown bus.type '%s'", path, bus_type)

    interval = (config.get("mpris") or {}).get("poll_interval", 1.0)
    if not isinstance(interval, (int, float)) or interval <= 0:
        logger.warning("Config %s: mpris.poll_interval must be a positive number", path)

    port = (config.get("server") or {}).get("port", 8790)
    if not isinstance(port, int) or not 0 < port < 65536:
        logger.warning("Config %s: invalid server.port '%s'", path, port)

    artwork = config.get("artwork") or {}
    if artwork.get("enabled", True) and artwork.get("cache_dir") == "":
        logger.warning("Config %s: empty artwork.cache_dir, using %s", path, default_cache_dir())


def _read(path: str) -> dict | None:
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except json.JSONDecodeError as e:
        logger.error("Invalid JSON in %s: %s", path, e)
        return None
    except OSError as e:
        logger.error("Cannot read %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.error("Config %s must hold a JSON object, got %s", path, type(data).__name__)
        return None
    return data


def load_config() -> dict:
    """Return the parsed config, reading it on first use."""
    global _config
    if _config is None:
        for path in _search_paths():
            data = _read(path)
            if data is not None:
                logger.info("Config loaded from %s", path)
                _check(data, path)
                _config = data
                break
        else:
            logger.info("No config file found, using defaults")
            _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Look up ``section`` or ``section.key``; *default* when absent.

    A section that is not an object yields *default* for any key.
    """
    section_value = load_config().get(section)
    if key is None:
        return default if section_value is None else section_value
    if not isinstance(section_value, dict):
        return default
    return section_value.get(key, default)


def reload_config() -> dict:
    """Drop the cached config and read it again."""
    global _config
    _config = None
    return load_config()
