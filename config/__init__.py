# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                      CONFIGURATION PACKAGE INITIALIZER                     ║
# ║                                                                            ║
# ║  Per-unit feed configuration: which ICS feeds a unit publishes and what    ║
# ║  happens to events of feeds that are removed.                              ║
# ╚════════════════════════════════════════════════════════════════════════════╝

from .unit_config import (
    UNIT_CONFIG_DIR,            # Directory holding <unit_id>/config.json files
    load_unit_config,           # Load a unit's configuration
    require_unit_config,        # Same, but raise ConfigError instead of falling back
    save_unit_config,           # Save a unit's configuration
    add_feed,                   # Add a feed source to a unit
    remove_feed,                # Remove a feed source from a unit
    get_active_feeds,           # Active feeds of a loaded config, in order
    get_orphaned_feed_policy,   # "retain" or "purge"
    get_all_unit_ids,           # Units that have a config on disk
)
