# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                          EVENT STORE MODULE                                ║
# ║    Persists each unit's events and outbox as JSON on disk. A diff and      ║
# ║    its outbox rows are committed together with one atomic file rename.     ║
# ╚════════════════════════════════════════════════════════════════════════════╝

"""
store.py: File-backed Event Store.

Layout under ``<base_dir>/<unit_id>/``:

* ``events.json``          events per feed, the outbox log and the next outbox id
* ``feed_status.json``     last refresh outcome per feed
* ``dispatch_cursor.json`` highest outbox id handed to the queue
* ``audit.jsonl``          append-only audit trail
"""
import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from utils.environ import DATA_DIR
from utils.error_handling import StoreError, StoreWriteError
from utils.logging import logger
from .models import Event, EventChange, OutboxRecord

STATE_FILE = "events.json"
FEED_STATUS_FILE = "feed_status.json"
CURSOR_FILE = "dispatch_cursor.json"
AUDIT_FILE = "audit.jsonl"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventStore:

    def __init__(self, base_dir: Optional[str] = None, clock: Callable[[], datetime] = _utcnow):
        self.base_dir = base_dir or os.path.join(DATA_DIR, "units")
        self.clock = clock
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # ╔════════════════════════════════════════════════════════════════════════╗
    # ║ FILE HELPERS                                                           ║
    # ╚════════════════════════════════════════════════════════════════════════╝

    def unit_lock(self, unit_id: str) -> threading.RLock:
        with self._locks_guard:
            if unit_id not in self._locks:
                self._locks[unit_id] = threading.RLock()
            return self._locks[unit_id]

    def get_unit_dir(self, unit_id: str) -> str:
        if not unit_id or os.sep in unit_id or unit_id in (".", ".."):
            raise ValueError(f"Invalid unit id: {unit_id!r}")
        return os.path.join(self.base_dir, unit_id)

    def _path(self, unit_id: str, name: str) -> str:
        return os.path.join(self.get_unit_dir(unit_id), name)

    def _read_json(self, unit_id: str, name: str, default: Any) -> Any:
        path = self._path(unit_id, name)
        if not os.path.exists(path):
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Could not read {path}: {e}") from e

    # --- _write_json ---
    # Writes data to a temp file in the unit directory, fsyncs it and renames
    # it over the target. Readers see either the old or the new file, never a
    # partial one.
    # Raises: StoreWriteError on any filesystem failure.
    def _write_json(self, unit_id: str, name: str, data: Any) -> None:
        unit_dir = self.get_unit_dir(unit_id)
        path = os.path.join(unit_dir, name)
        tmp_path = None
        try:
            os.makedirs(unit_dir, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=unit_dir, prefix=f".{name}.", delete=False
            ) as tmp:
                tmp_path = tmp.name
                json.dump(data, tmp, ensure_ascii=False, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StoreWriteError(f"Could not write {path}: {e}") from e

    def _load_state(self, unit_id: str) -> Dict[str, Any]:
        state = self._read_json(unit_id, STATE_FILE, None)
        if state is None:
            return {"unit_id": unit_id, "next_outbox_id": 1, "feeds": {}, "outbox": []}
        return state

    # ╔════════════════════════════════════════════════════════════════════════╗
    # ║ EVENTS                                                                 ║
    # ╚════════════════════════════════════════════════════════════════════════╝

    def load_events(self, unit_id: str, feed_id: str) -> List[Event]:
        with self.unit_lock(unit_id):
            state = self._load_state(unit_id)
        stored = state["feeds"].get(feed_id, {})
        return [Event.from_dict(data) for data in stored.values()]

    def list_feed_ids(self, unit_id: str) -> List[str]:
        with self.unit_lock(unit_id):
            state = self._load_state(unit_id)
        return list(state["feeds"].keys())

    # --- apply_diff ---
    # Commits upserts, removals and one outbox record per change as a single
    # atomic write. Either everything lands or nothing does.
    # Args:
    #     unit_id: Owning unit.
    #     feed_id: Feed source the events belong to.
    #     upserts: Events to insert or replace (keyed by uid).
    #     cancellations: uids to remove.
    #     changes: Change notices to append to the outbox, in order.
    #     drop_feed: Forget the feed entry entirely once applied.
    # Returns: The outbox records that were appended.
    # Raises: StoreWriteError (nothing committed).
    def apply_diff(
        self,
        unit_id: str,
        feed_id: str,
        upserts: Iterable[Event],
        cancellations: Iterable[str],
        changes: Iterable[EventChange],
        drop_feed: bool = False
    ) -> List[OutboxRecord]:
        with self.unit_lock(unit_id):
            state = self._load_state(unit_id)
            feed_events = state["feeds"].setdefault(feed_id, {})

            for event in upserts:
                feed_events[event.uid] = event.to_dict()
            for uid in cancellations:
                feed_events.pop(uid, None)
            if drop_feed:
                state["feeds"].pop(feed_id, None)

            created_at = self.clock()
            records = []
            for change in changes:
                record = OutboxRecord(
                    id=state["next_outbox_id"],
                    unit_id=unit_id,
                    event_id=change.event_id,
                    kind=change.kind,
                    created_at=created_at,
                )
                state["next_outbox_id"] += 1
                state["outbox"].append(record.to_dict())
                records.append(record)

            self._write_json(unit_id, STATE_FILE, state)

        logger.debug(f"Committed {len(records)} outbox records for unit {unit_id} feed {feed_id}")
        return records

    # ╔════════════════════════════════════════════════════════════════════════╗
    # ║ OUTBOX                                                                 ║
    # ╚════════════════════════════════════════════════════════════════════════╝

    # --- list_outbox ---
    # Replays the outbox after a cursor, in id order.
    def list_outbox(self, unit_id: str, after_id: int = 0, limit: Optional[int] = None) -> List[OutboxRecord]:
        with self.unit_lock(unit_id):
            state = self._load_state(unit_id)
        records = [OutboxRecord.from_dict(row) for row in state["outbox"] if int(row["id"]) > after_id]
        records.sort(key=lambda record: record.id)
        if limit is not None:
            records = records[:limit]
        return records

    def get_outbox_record(self, unit_id: str, record_id: int) -> Optional[OutboxRecord]:
        for record in self.list_outbox(unit_id, after_id=record_id - 1, limit=1):
            if record.id == record_id:
                return record
        return None

    def get_dispatch_cursor(self, unit_id: str) -> int:
        with self.unit_lock(unit_id):
            data = self._read_json(unit_id, CURSOR_FILE, {})
        return int(data.get("last_dispatched_id", 0))

    # --- set_dispatch_cursor ---
    # Moves the cursor forward. Never moves it backwards.
    def set_dispatch_cursor(self, unit_id: str, record_id: int) -> int:
        with self.unit_lock(unit_id):
            current = self.get_dispatch_cursor(unit_id)
            if record_id <= current:
                return current
            self._write_json(unit_id, CURSOR_FILE, {
                "last_dispatched_id": record_id,
                "updated_at": self.clock().isoformat(),
            })
        return record_id

    # ╔════════════════════════════════════════════════════════════════════════╗
    # ║ FEED STATUS & AUDIT                                                    ║
    # ╚════════════════════════════════════════════════════════════════════════╝

    def record_feed_status(self, unit_id: str, feed_id: str, status: str, error: Optional[str] = None) -> None:
        with self.unit_lock(unit_id):
            statuses = self._read_json(unit_id, FEED_STATUS_FILE, {})
            statuses[feed_id] = {
                "last_refreshed_at": self.clock().isoformat(),
                "last_refresh_status": status,
                "last_refresh_error": error[:500] if error else None,
            }
            self._write_json(unit_id, FEED_STATUS_FILE, statuses)

    def get_feed_status(self, unit_id: str, feed_id: str) -> Optional[Dict[str, Any]]:
        with self.unit_lock(unit_id):
            statuses = self._read_json(unit_id, FEED_STATUS_FILE, {})
        return statuses.get(feed_id)

    def append_audit(self, unit_id: str, actor_id: str, action: str, details: Optional[Dict[str, Any]] = None) -> None:
        entry = {
            "at": self.clock().isoformat(),
            "unit_id": unit_id,
            "actor_id": actor_id,
            "action": action,
            "details": details or {},
        }
        with self.unit_lock(unit_id):
            path = self._path(unit_id, AUDIT_FILE)
            try:
                os.makedirs(os.path.dirname(path), exist_ok=True)
                with open(path, "a", encoding="utf-8") as f:
                    f.write(json.dumps(entry, ensure_ascii=False) + "\n")
            except OSError as e:
                raise StoreWriteError(f"Could not append audit entry to {path}: {e}") from e

    def list_audit(self, unit_id: str) -> List[Dict[str, Any]]:
        path = self._path(unit_id, AUDIT_FILE)
        if not os.path.exists(path):
            return []
        with self.unit_lock(unit_id):
            with open(path, "r", encoding="utf-8") as f:
                return [json.loads(line) for line in f if line.strip()]
