"""
unit_config.py: Unit-specific feed configuration.

Each unit ("ward") keeps its feed sources in a JSON file under
``<DATA_DIR>/units/<unit_id>/config.json``::

    {
        "feeds": [
            {"id": "ward", "url": "https://.../ward.ics", "name": "Ward", "active": true}
        ],
        "orphaned_feed_policy": "retain"
    }
"""

import json
import os
import tempfile
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from utils.environ import DATA_DIR, ORPHANED_FEED_POLICY
from utils.error_handling import ConfigError
from utils.logging import logger

UNIT_CONFIG_DIR = os.path.join(DATA_DIR, "units")
CONFIG_FILE = "config.json"
ORPHANED_FEED_POLICIES = ("retain", "purge")

_save_lock = Lock()


def default_unit_config() -> Dict[str, Any]:
    return {"feeds": [], "orphaned_feed_policy": ORPHANED_FEED_POLICY}


def get_config_path(unit_id: str, config_dir: Optional[str] = None) -> str:
    if not unit_id or os.sep in unit_id or unit_id in (".", ".."):
        raise ValueError(f"Invalid unit id: {unit_id!r}")
    return os.path.join(config_dir or UNIT_CONFIG_DIR, unit_id, CONFIG_FILE)


def load_unit_config(unit_id: str, config_dir: Optional[str] = None, strict: bool = False) -> Dict[str, Any]:
    """Load a unit's configuration.

    By default a missing or unreadable file falls back to an empty config.
    With ``strict`` those cases raise ConfigError instead. The reconciler
    loads strictly: an unreadable file must not look like an empty feed list.
    """
    config_path = get_config_path(unit_id, config_dir)
    config = default_unit_config()
    try:
        if not os.path.exists(config_path):
            if strict:
                raise ConfigError(f"No config.json for unit {unit_id}")
            return config
        with open(config_path, "r", encoding="utf-8") as f:
            loaded = json.load(f)
        if not isinstance(loaded, dict) or not isinstance(loaded.get("feeds", []), list):
            raise ConfigError(f"Config for unit {unit_id} is not a valid config object")
        config.update(loaded)
    except json.JSONDecodeError as e:
        if strict:
            raise ConfigError(f"Invalid JSON in config for unit {unit_id}: {e}") from e
        logger.warning(f"Invalid JSON in config for unit {unit_id}, using defaults")
    except ConfigError:
        if strict:
            raise
        logger.warning(f"Malformed config for unit {unit_id}, using defaults")
    except OSError as e:
        if strict:
            raise ConfigError(f"Could not read config for unit {unit_id}: {e}") from e
        logger.exception(f"Error loading config for unit {unit_id}: {e}")
    return config


def require_unit_config(unit_id: str, config_dir: Optional[str] = None) -> Dict[str, Any]:
    """Load a unit's configuration or raise ConfigError."""
    return load_unit_config(unit_id, config_dir, strict=True)


def save_unit_config(unit_id: str, config: Dict[str, Any], config_dir: Optional[str] = None) -> bool:
    """Save a unit's configuration to config.json.

    The file is replaced atomically so a concurrent reader sees either the
    old or the new config, never a partial one.
    """
    config_path = get_config_path(unit_id, config_dir)
    unit_dir = os.path.dirname(config_path)
    tmp_path = None
    try:
        os.makedirs(unit_dir, exist_ok=True)
        with _save_lock:
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=unit_dir, prefix=f".{CONFIG_FILE}.", delete=False
            ) as tmp:
                tmp_path = tmp.name
                json.dump(config, tmp, ensure_ascii=False, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, config_path)
        logger.info(f"Saved configuration for unit {unit_id}")
        return True
    except (OSError, TypeError, ValueError) as e:
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        logger.exception(f"Error saving config for unit {unit_id}: {e}")
        return False


def add_feed(unit_id: str, feed_id: str, url: str, name: Optional[str] = None,
             config_dir: Optional[str] = None) -> Tuple[bool, str]:
    """Add a feed source to the unit's config.json."""
    if not feed_id or not url:
        return False, "Feed id and URL are required."
    try:
        if os.path.exists(get_config_path(unit_id, config_dir)):
            config = require_unit_config(unit_id, config_dir)
        else:
            config = default_unit_config()
    except ConfigError as e:
        logger.error(f"Refusing to overwrite unreadable config for unit {unit_id}: {e}")
        return False, "Existing config could not be read."
    if any(feed.get("id") == feed_id for feed in config["feeds"]):
        return False, f"Feed already exists: {feed_id}"
    config["feeds"].append({"id": feed_id, "url": url, "name": name or feed_id, "active": True})
    if save_unit_config(unit_id, config, config_dir):
        return True, f"Added feed {name or feed_id} successfully."
    return False, "Failed to save updated config."


def remove_feed(unit_id: str, feed_id: str, config_dir: Optional[str] = None) -> Tuple[bool, str]:
    """Remove a feed source. Stored events follow the orphaned feed policy."""
    try:
        config = require_unit_config(unit_id, config_dir)
    except ConfigError as e:
        logger.error(f"Cannot remove feed '{feed_id}' for unit {unit_id}: {e}")
        return False, "Existing config could not be read."
    if not any(feed.get("id") == feed_id for feed in config["feeds"]):
        logger.warning(f"Feed '{feed_id}' not found in unit {unit_id} config")
        return False, "Feed not found."
    config["feeds"] = [feed for feed in config["feeds"] if feed.get("id") != feed_id]
    if save_unit_config(unit_id, config, config_dir):
        logger.info(f"Removed feed {feed_id} from unit {unit_id}")
        return True, "Feed successfully removed."
    return False, "Failed to save updated config."


def get_active_feeds(config: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Active, well-formed feeds in configured order, without duplicate ids."""
    feeds = []
    seen = set()
    for feed in config.get("feeds", []):
        feed_id = feed.get("id")
        if not feed_id or not feed.get("url"):
            logger.warning(f"Ignoring feed entry without id or url: {feed}")
            continue
        if feed_id in seen:
            logger.warning(f"Ignoring duplicate feed id {feed_id}")
            continue
        seen.add(feed_id)
        if feed.get("active", True):
            feeds.append(feed)
    return feeds


def get_orphaned_feed_policy(config: Dict[str, Any]) -> str:
    policy = str(config.get("orphaned_feed_policy") or ORPHANED_FEED_POLICY).lower()
    if policy not in ORPHANED_FEED_POLICIES:
        logger.warning(f"Unknown orphaned feed policy '{policy}', retaining events")
        return "retain"
    return policy


def get_all_unit_ids(config_dir: Optional[str] = None) -> List[str]:
    """Units that have a config.json on disk."""
    base = config_dir or UNIT_CONFIG_DIR
    if not os.path.isdir(base):
        return []
    return sorted(
        entry for entry in os.listdir(base)
        if os.path.isfile(os.path.join(base, entry, CONFIG_FILE))
    )
