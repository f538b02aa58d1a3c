"""
retention.py: What happens to stored events of feeds that were removed from a
unit's configuration.

``retain`` leaves them untouched. ``purge`` removes them and records one
CANCELLED outbox entry per removed event, committed together.
"""
from typing import Iterable, List

from utils.error_handling import StoreError
from utils.logging import logger
from .models import ChangeKind, EventChange, build_event_id
from .store import EventStore


def find_orphaned_feeds(store: EventStore, unit_id: str, configured_feed_ids: Iterable[str]) -> List[str]:
    configured = set(configured_feed_ids)
    return [feed_id for feed_id in store.list_feed_ids(unit_id) if feed_id not in configured]

# --- apply_orphaned_feed_policy ---
# Args:
#     store: The event store.
#     unit_id: Unit to inspect.
#     configured_feed_ids: Every feed id still present in the unit config
#                          (active or not).
#     policy: "retain" or "purge".
# Returns: The feed ids whose events were purged.
def apply_orphaned_feed_policy(store: EventStore, unit_id: str, configured_feed_ids: Iterable[str],
                               policy: str) -> List[str]:
    orphaned = find_orphaned_feeds(store, unit_id, configured_feed_ids)
    if not orphaned:
        return []
    if policy != "purge":
        logger.debug(f"Retaining events of removed feeds {orphaned} for unit {unit_id}")
        return []

    purged = []
    for feed_id in orphaned:
        try:
            events = store.load_events(unit_id, feed_id)
            store.apply_diff(
                unit_id,
                feed_id,
                upserts=[],
                cancellations=[event.uid for event in events],
                changes=[EventChange(build_event_id(feed_id, event.uid), ChangeKind.CANCELLED) for event in events],
                drop_feed=True,
            )
        except StoreError as e:
            logger.error(f"Could not purge events of removed feed {feed_id} for unit {unit_id}: {e}")
            continue
        logger.info(f"Purged {len(events)} events of removed feed {feed_id} for unit {unit_id}")
        purged.append(feed_id)
    return purged
