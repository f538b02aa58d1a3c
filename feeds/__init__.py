# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                        FEEDS PACKAGE INITIALIZER                           ║
# ║                                                                            ║
# ║  Parsing, diffing and persisting published ICS feeds, and the outbox of    ║
# ║  change records produced by each reconciliation pass.                      ║
# ╚════════════════════════════════════════════════════════════════════════════╝

from .models import (
    Event,                      # Normalized calendar occurrence
    ChangeKind,                 # CREATED / UPDATED / CANCELLED
    OutboxRecord,               # One committed change notice
    FeedStatus,                 # success / failed / skipped
    FeedRefreshResult,          # Outcome of one feed in a pass
    RefreshSummary,             # Outcome of a unit refresh
    build_event_id,             # "<feed_id>:<uid>"
)
from .parser import parse_feed                  # ICS text -> events
from .fetching import fetch_feed                # URL -> ICS text
from .store import EventStore                   # File-backed events + outbox
from .reconcile import FeedReconciler, diff_events
from .retention import apply_orphaned_feed_policy
from .trigger import refresh_unit               # Rate-limited manual refresh
