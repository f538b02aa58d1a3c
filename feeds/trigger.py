"""
trigger.py: Entry point for refreshes requested by a person.

Manual refreshes are throttled per (actor, unit). A refused request is a
normal outcome reported through ``RefreshSummary.rate_limited``.
"""
import threading
from typing import TYPE_CHECKING, Optional

from utils.environ import MANUAL_REFRESH_MAX_ATTEMPTS
from utils.error_handling import FeedSyncError
from utils.logging import logger
from utils.rate_limiter import MANUAL_REFRESH_LIMITER, FixedWindowRateLimiter
from .models import RefreshSummary
from .reconcile import FeedReconciler
from .store import EventStore

if TYPE_CHECKING:
    from notifications.dispatcher import OutboxDispatcher

_default_reconciler: Optional[FeedReconciler] = None
_default_reconciler_lock = threading.Lock()


def build_rate_limit_key(actor_id: str, unit_id: str) -> str:
    return f"calendar-refresh:{actor_id}:{unit_id}"


# --- get_default_reconciler ---
# One process-wide reconciler so concurrent callers share its in-flight guard.
def get_default_reconciler() -> FeedReconciler:
    global _default_reconciler
    with _default_reconciler_lock:
        if _default_reconciler is None:
            _default_reconciler = FeedReconciler(EventStore())
        return _default_reconciler

# --- refresh_unit ---
# Runs a reconciliation for a unit on behalf of an actor.
# Args:
#     unit_id: The unit to refresh.
#     actor_id: Who asked for it.
#     reason: "manual" (throttled) or "login"/"scheduled" (not throttled).
#     reconciler: FeedReconciler to run, defaults to the process-wide one.
#     dispatcher: When given, the outbox is drained after committed changes.
#                 A failed drain is logged; the summary is still returned.
#     limiter: Rate limiter, defaults to the shared manual refresh limiter.
#     max_attempts: Manual refreshes admitted per window.
# Returns: RefreshSummary; rate_limited=True and no feed results when refused.
def refresh_unit(
    unit_id: str,
    actor_id: str,
    reason: str = "manual",
    reconciler: Optional[FeedReconciler] = None,
    dispatcher: Optional["OutboxDispatcher"] = None,
    limiter: Optional[FixedWindowRateLimiter] = None,
    max_attempts: int = MANUAL_REFRESH_MAX_ATTEMPTS
) -> RefreshSummary:
    if reason == "manual":
        limiter = limiter or MANUAL_REFRESH_LIMITER
        if not limiter.allow(build_rate_limit_key(actor_id, unit_id), max_attempts):
            logger.info(f"Manual refresh of unit {unit_id} by {actor_id} refused by rate limit")
            return RefreshSummary(unit_id=unit_id, reason=reason, rate_limited=True)

    reconciler = reconciler or get_default_reconciler()
    summary = reconciler.refresh(unit_id, reason=reason, actor_id=actor_id)

    if dispatcher is not None and (summary.total_changes or summary.purged_feeds):
        # changes are committed already; whatever stays pending goes out on the next dispatch
        try:
            dispatched = dispatcher.dispatch_pending(unit_id)
            logger.debug(f"Dispatched {dispatched} outbox records for unit {unit_id} after refresh")
        except FeedSyncError as e:
            logger.error(f"Dispatch after refresh of unit {unit_id} failed: {e}")

    return summary
