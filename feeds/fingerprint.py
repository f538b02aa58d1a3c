# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                       EVENT FINGERPRINTING MODULE                          ║
# ║    Stable hashes of event content used to detect changed events.           ║
# ╚════════════════════════════════════════════════════════════════════════════╝

"""
fingerprint.py: Event comparison for the reconciliation diff.
"""
import hashlib
import json
from typing import Any, Dict

from .models import Event, serialize_time

# --- normalize_event ---
# Builds the comparable view of an event: every content field, with tags as a
# sorted set so that reordering categories in the source is not a change.
# source_updated_at is left out: a bumped LAST-MODIFIED alone is not a change.
# Args:
#     event: The Event to normalize.
# Returns: A JSON-serializable dict.
def normalize_event(event: Event) -> Dict[str, Any]:
    return {
        "title": event.title,
        "description": event.description,
        "location": event.location,
        "start": serialize_time(event.start),
        "end": serialize_time(event.end),
        "all_day": event.all_day,
        "tags": sorted(set(event.tags)),
    }

# --- compute_event_fingerprint ---
# Returns: MD5 hex digest of the normalized event content.
def compute_event_fingerprint(event: Event) -> str:
    normalized_json = json.dumps(normalize_event(event), sort_keys=True)
    return hashlib.md5(normalized_json.encode("utf-8")).hexdigest()


def events_differ(stored: Event, fresh: Event) -> bool:
    return compute_event_fingerprint(stored) != compute_event_fingerprint(fresh)
