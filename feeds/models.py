# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                          FEED SYNC DATA MODELS                             ║
# ║    Normalized events, outbox records and per-feed refresh results.         ║
# ╚════════════════════════════════════════════════════════════════════════════╝

"""
models.py: Plain data records shared by the parser, store, reconciler and
dispatcher. Events serialize to JSON-friendly dicts for the file store.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

EventTime = Union[date, datetime]

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ TIME SERIALIZATION                                                         ║
# ╚════════════════════════════════════════════════════════════════════════════╝

def serialize_time(value: Optional[EventTime]) -> Optional[str]:
    if value is None:
        return None
    # datetime is a subclass of date, so it has to be checked first
    if isinstance(value, datetime):
        return value.astimezone(timezone.utc).isoformat()
    return value.isoformat()


def deserialize_time(value: Optional[str], all_day: bool) -> Optional[EventTime]:
    if not value:
        return None
    if all_day:
        return date.fromisoformat(value[:10])
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ EVENTS                                                                     ║
# ╚════════════════════════════════════════════════════════════════════════════╝

@dataclass(frozen=True)
class Event:
    """One calendar occurrence as published by a feed.

    ``start``/``end`` are ``date`` values for all-day events and UTC-aware
    ``datetime`` values otherwise. ``tags`` keeps source order without
    duplicates. ``source_updated_at`` is the feed's LAST-MODIFIED stamp and
    is informational only.
    """
    uid: str
    title: str
    start: EventTime
    all_day: bool = False
    end: Optional[EventTime] = None
    description: Optional[str] = None
    location: Optional[str] = None
    tags: Tuple[str, ...] = ()
    source_updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "title": self.title,
            "description": self.description,
            "location": self.location,
            "start": serialize_time(self.start),
            "end": serialize_time(self.end),
            "all_day": self.all_day,
            "tags": list(self.tags),
            "source_updated_at": serialize_time(self.source_updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        all_day = bool(data.get("all_day", False))
        return cls(
            uid=data["uid"],
            title=data.get("title", ""),
            description=data.get("description"),
            location=data.get("location"),
            start=deserialize_time(data["start"], all_day),
            end=deserialize_time(data.get("end"), all_day),
            all_day=all_day,
            tags=tuple(data.get("tags") or ()),
            source_updated_at=deserialize_time(data.get("source_updated_at"), False),
        )


def build_event_id(feed_id: str, uid: str) -> str:
    # uids are only unique inside one feed
    return f"{feed_id}:{uid}"

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ OUTBOX                                                                     ║
# ╚════════════════════════════════════════════════════════════════════════════╝

class ChangeKind(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class OutboxRecord:
    id: int
    unit_id: str
    event_id: str
    kind: ChangeKind
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "unit_id": self.unit_id,
            "event_id": self.event_id,
            "kind": self.kind.value,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OutboxRecord":
        return cls(
            id=int(data["id"]),
            unit_id=data["unit_id"],
            event_id=data["event_id"],
            kind=ChangeKind(data["kind"]),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass(frozen=True)
class EventChange:
    """A change detected by a diff, before the store assigns an outbox id."""
    event_id: str
    kind: ChangeKind

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ REFRESH RESULTS                                                            ║
# ╚════════════════════════════════════════════════════════════════════════════╝

class FeedStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class FeedRefreshResult:
    feed_id: str
    status: FeedStatus
    added: int = 0
    updated: int = 0
    cancelled: int = 0
    error: Optional[str] = None

    @property
    def changes(self) -> int:
        return self.added + self.updated + self.cancelled

    def to_dict(self) -> Dict[str, Any]:
        if self.status is FeedStatus.SUCCESS:
            return {
                "status": self.status.value,
                "added": self.added,
                "updated": self.updated,
                "cancelled": self.cancelled,
            }
        return {"status": self.status.value, "error": self.error}


@dataclass
class RefreshSummary:
    unit_id: str
    reason: str
    feeds: List[FeedRefreshResult] = field(default_factory=list)
    purged_feeds: List[str] = field(default_factory=list)
    rate_limited: bool = False
    error: Optional[str] = None

    @property
    def total_changes(self) -> int:
        return sum(result.changes for result in self.feeds)

    def get(self, feed_id: str) -> Optional[FeedRefreshResult]:
        for result in self.feeds:
            if result.feed_id == feed_id:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "unit_id": self.unit_id,
            "reason": self.reason,
            "rate_limited": self.rate_limited,
            "feeds": {result.feed_id: result.to_dict() for result in self.feeds},
            "purged_feeds": list(self.purged_feeds),
        }
        if self.error:
            data["error"] = self.error
        return data
