# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                          FEED RECONCILER MODULE                            ║
# ║    Fetches a unit's feeds, diffs them against stored events and commits    ║
# ║    the changes together with their outbox records, one feed at a time.     ║
# ╚════════════════════════════════════════════════════════════════════════════╝

"""
reconcile.py: Per-unit refresh orchestration.

A failing feed never aborts the other feeds of the unit; each feed's outcome
is reported separately in the RefreshSummary.
"""
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from config.unit_config import get_active_feeds, get_orphaned_feed_policy, require_unit_config
from utils.environ import FEED_FETCH_TIMEOUT_SECONDS
from utils.error_handling import ConfigError, FeedFetchError, StoreError
from utils.logging import logger
from .fetching import FeedFetcher, fetch_feed
from .fingerprint import events_differ
from .models import (
    ChangeKind,
    Event,
    EventChange,
    FeedRefreshResult,
    FeedStatus,
    RefreshSummary,
    build_event_id,
)
from .parser import parse_feed
from .retention import apply_orphaned_feed_policy
from .store import EventStore

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ DIFF                                                                       ║
# ╚════════════════════════════════════════════════════════════════════════════╝

@dataclass
class EventDiff:
    created: List[Event] = field(default_factory=list)
    updated: List[Event] = field(default_factory=list)
    cancelled: List[Event] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.created or self.updated or self.cancelled)

    def changes(self, feed_id: str) -> List[EventChange]:
        changes = [EventChange(build_event_id(feed_id, e.uid), ChangeKind.CREATED) for e in self.created]
        changes += [EventChange(build_event_id(feed_id, e.uid), ChangeKind.UPDATED) for e in self.updated]
        changes += [EventChange(build_event_id(feed_id, e.uid), ChangeKind.CANCELLED) for e in self.cancelled]
        return changes

# --- dedupe_by_uid ---
# Keeps the first occurrence of each uid in a parsed snapshot.
def dedupe_by_uid(events: Iterable[Event], feed_id: str = "") -> List[Event]:
    seen: Set[str] = set()
    unique = []
    for event in events:
        if event.uid in seen:
            logger.warning(f"Duplicate UID {event.uid} in feed {feed_id}, keeping the first occurrence")
            continue
        seen.add(event.uid)
        unique.append(event)
    return unique

# --- diff_events ---
# Compares the stored snapshot of one feed with a freshly parsed one, by uid.
# Args:
#     stored: Events currently persisted for the feed.
#     fresh: Events parsed from the latest fetch (uids unique).
# Returns: EventDiff with created/updated in feed order, cancelled in stored order.
def diff_events(stored: Iterable[Event], fresh: Iterable[Event]) -> EventDiff:
    stored_by_uid = {event.uid: event for event in stored}
    fresh_uids = set()
    diff = EventDiff()

    for event in fresh:
        fresh_uids.add(event.uid)
        previous = stored_by_uid.get(event.uid)
        if previous is None:
            diff.created.append(event)
        elif events_differ(previous, event):
            diff.updated.append(event)

    diff.cancelled = [event for uid, event in stored_by_uid.items() if uid not in fresh_uids]
    return diff

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ RECONCILER                                                                 ║
# ╚════════════════════════════════════════════════════════════════════════════╝

class FeedReconciler:

    def __init__(
        self,
        store: EventStore,
        fetcher: FeedFetcher = fetch_feed,
        config_loader: Callable[[str], Dict[str, Any]] = require_unit_config,
        fetch_timeout: float = FEED_FETCH_TIMEOUT_SECONDS
    ):
        self.store = store
        self.fetcher = fetcher
        self.config_loader = config_loader
        self.fetch_timeout = fetch_timeout
        self._in_flight: Set[Tuple[str, str]] = set()
        self._in_flight_lock = threading.Lock()

    # --- refresh ---
    # Reconciles every active feed of a unit, then applies the orphaned feed
    # retention policy.
    # Args:
    #     unit_id: The unit to refresh.
    #     reason: "manual", "login" or "scheduled".
    #     actor_id: Who asked for it; recorded in the audit trail for manual refreshes.
    # Returns: RefreshSummary with one result per feed. When the config cannot
    #          be read nothing is fetched or purged and summary.error is set.
    def refresh(self, unit_id: str, reason: str = "scheduled", actor_id: Optional[str] = None) -> RefreshSummary:
        summary = RefreshSummary(unit_id=unit_id, reason=reason)
        try:
            config = self.config_loader(unit_id)
        except ConfigError as e:
            logger.error(f"Skipping refresh of unit {unit_id}, config unavailable: {e}")
            summary.error = str(e)
            return summary

        feeds = get_active_feeds(config)
        logger.info(f"Refreshing {len(feeds)} feeds for unit {unit_id} (reason: {reason})")

        for feed in feeds:
            summary.feeds.append(self.reconcile_feed(unit_id, feed["id"], feed["url"]))

        configured_ids = [feed.get("id") for feed in config.get("feeds", []) if feed.get("id")]
        summary.purged_feeds = apply_orphaned_feed_policy(
            self.store, unit_id, configured_ids, get_orphaned_feed_policy(config)
        )

        if reason == "manual":
            try:
                self.store.append_audit(unit_id, actor_id or "unknown", "CALENDAR_REFRESH_MANUAL", {
                    "feedsProcessed": len(summary.feeds),
                    "changes": summary.total_changes,
                })
            except StoreError as e:
                logger.error(f"Could not record audit entry for unit {unit_id}: {e}")

        failed = [result.feed_id for result in summary.feeds if result.status is FeedStatus.FAILED]
        logger.info(
            f"Unit {unit_id} refresh complete: {summary.total_changes} changes, "
            f"{len(failed)} failed feeds{f' ({failed})' if failed else ''}"
        )
        return summary

    # --- reconcile_feed ---
    # One reconciliation pass for one feed source: fetch, parse, diff, commit.
    # A pass already running for the same (unit, feed) makes this one a no-op.
    # Returns: FeedRefreshResult (success with counts, failed or skipped).
    def reconcile_feed(self, unit_id: str, feed_id: str, url: str) -> FeedRefreshResult:
        key = (unit_id, feed_id)
        with self._in_flight_lock:
            if key in self._in_flight:
                logger.warning(f"Refresh of feed {feed_id} for unit {unit_id} already in progress, skipping")
                return FeedRefreshResult(feed_id, FeedStatus.SKIPPED, error="refresh already in progress")
            self._in_flight.add(key)

        try:
            try:
                raw_text = self.fetcher(url, self.fetch_timeout)
            except FeedFetchError as e:
                logger.warning(f"Fetch failed for feed {feed_id} of unit {unit_id}: {e}")
                self._record_status(unit_id, feed_id, "ERROR", str(e))
                return FeedRefreshResult(feed_id, FeedStatus.FAILED, error=str(e))

            fresh = dedupe_by_uid(parse_feed(raw_text), feed_id)

            try:
                diff = diff_events(self.store.load_events(unit_id, feed_id), fresh)
                if not diff.is_empty:
                    self.store.apply_diff(
                        unit_id,
                        feed_id,
                        upserts=diff.created + diff.updated,
                        cancellations=[event.uid for event in diff.cancelled],
                        changes=diff.changes(feed_id),
                    )
            except StoreError as e:
                logger.error(f"Store write failed for feed {feed_id} of unit {unit_id}, nothing applied: {e}")
                self._record_status(unit_id, feed_id, "ERROR", str(e))
                return FeedRefreshResult(feed_id, FeedStatus.FAILED, error=f"store write failed: {e}")

            self._record_status(unit_id, feed_id, "SUCCESS")
            logger.info(
                f"Feed {feed_id} of unit {unit_id}: {len(diff.created)} added, "
                f"{len(diff.updated)} updated, {len(diff.cancelled)} cancelled"
            )
            return FeedRefreshResult(
                feed_id,
                FeedStatus.SUCCESS,
                added=len(diff.created),
                updated=len(diff.updated),
                cancelled=len(diff.cancelled),
            )
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(key)

    def _record_status(self, unit_id: str, feed_id: str, status: str, error: Optional[str] = None) -> None:
        try:
            self.store.record_feed_status(unit_id, feed_id, status, error)
        except StoreError as e:
            logger.error(f"Could not record refresh status of feed {feed_id} for unit {unit_id}: {e}")
