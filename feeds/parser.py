# ╔════════════════════════════════════════════════════════════════════════════╗
# ║                           ICS FEED PARSER                                  ║
# ║    Turns published iCalendar text into normalized Event records.           ║
# ║    One malformed event is skipped; it never blanks the whole feed.         ║
# ╚════════════════════════════════════════════════════════════════════════════╝

"""
parser.py: VEVENT extraction on top of the icalendar library.

The feed is split into top-level VEVENT blocks and every block is parsed as
its own small calendar, so a broken event only costs that event. Everything
else (VTIMEZONE, VTODO, ...) is skipped, as are components nested inside an
event such as VALARM.
"""
import re
from datetime import date, datetime, timezone
from typing import Any, List, Optional, Tuple

from dateutil import tz
from icalendar import Calendar

from utils.logging import logger
from .models import Event, EventTime

_NEWLINE_RE = re.compile(r"\r\n|\r|\n")

_BLOCK_HEADER = "BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//wardsync//feed parser//EN\r\n"
_BLOCK_FOOTER = "END:VCALENDAR\r\n"


class MalformedEventError(ValueError):
    pass

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ BLOCK SPLITTING                                                            ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# --- split_event_blocks ---
# Cuts raw feed text into the raw lines of each top-level VEVENT.
# Folded continuation lines stay as they are; icalendar unfolds them.
# A block that is never closed is dropped, either when the next BEGIN:VEVENT
# shows up or at the end of the text.
# Returns: (list of line lists, number of unclosed blocks dropped)
def split_event_blocks(raw_text: str) -> Tuple[List[List[str]], int]:
    blocks: List[List[str]] = []
    current: Optional[List[str]] = None
    nested_depth = 0
    unclosed = 0

    for line in _NEWLINE_RE.split(raw_text.lstrip("\ufeff")):
        if not line.strip():
            continue
        if line[:1] in (" ", "\t"):
            if current is not None:
                current.append(line)
            continue

        marker = line.strip().upper()
        if marker == "BEGIN:VEVENT":
            if current is not None:
                unclosed += 1
                logger.warning(f"Event block #{len(blocks) + unclosed} was never closed, discarding it")
            current = [line]
            nested_depth = 0
            continue

        if current is None:
            continue

        current.append(line)
        if marker.startswith("BEGIN:"):
            nested_depth += 1
        elif marker.startswith("END:"):
            if nested_depth > 0:
                nested_depth -= 1
            elif marker == "END:VEVENT":
                blocks.append(current)
                current = None

    if current is not None:
        unclosed += 1
        logger.warning("Feed ended inside an event block, discarding it")
    return blocks, unclosed

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ VALUE PARSING                                                              ║
# ╚════════════════════════════════════════════════════════════════════════════╝

def _first(component, name: str) -> Any:
    value = component.get(name)
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _text(component, name: str) -> Optional[str]:
    value = _first(component, name)
    if value is None:
        return None
    return str(value).strip() or None

# --- to_event_time ---
# Converts a decoded DTSTART/DTEND property.
# Dates are all-day and stay calendar dates. Date-times are normalized to UTC:
# icalendar localizes TZID values it knows, dateutil covers the rest, and
# floating values are taken as UTC.
# Returns: (value, is_date_only)
# Raises: MalformedEventError
def to_event_time(prop) -> Tuple[EventTime, bool]:
    try:
        value = prop.dt
    except ValueError as e:
        # vBroken raises on attribute access when the value did not parse
        raise MalformedEventError(str(e)) from e

    if not isinstance(value, datetime):
        if isinstance(value, date):
            return value, True
        raise MalformedEventError(f"expected a date or date-time, got {value!r}")

    if value.tzinfo is None:
        tzid = prop.params.get("TZID")
        if tzid:
            zone = tz.gettz(tzid)
            if zone is None:
                raise MalformedEventError(f"unknown TZID '{tzid}'")
            value = value.replace(tzinfo=zone)
        else:
            value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc), False


def coerce_time(value: EventTime, all_day: bool) -> EventTime:
    if all_day and isinstance(value, datetime):
        return value.date()
    if not all_day and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return value

# --- read_categories ---
# Flattens every CATEGORIES property into one ordered, de-duplicated tuple.
def read_categories(component) -> Tuple[str, ...]:
    entries = component.get("CATEGORIES")
    if entries is None:
        return ()
    if not isinstance(entries, list):
        entries = [entries]

    tags: List[str] = []
    for entry in entries:
        for raw_tag in getattr(entry, "cats", ()):
            tag = str(raw_tag).strip()
            if tag and tag not in tags:
                tags.append(tag)
    return tuple(tags)


def read_last_modified(component) -> Optional[datetime]:
    prop = _first(component, "LAST-MODIFIED")
    if prop is None:
        return None
    try:
        value = prop.dt
    except ValueError as e:
        logger.debug(f"Ignoring unreadable LAST-MODIFIED: {e}")
        return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

# ╔════════════════════════════════════════════════════════════════════════════╗
# ║ EVENT ASSEMBLY                                                             ║
# ╚════════════════════════════════════════════════════════════════════════════╝

# --- build_event ---
# Converts one parsed VEVENT component into an Event.
# Raises: MalformedEventError when UID, SUMMARY or DTSTART is missing or invalid.
def build_event(component) -> Event:
    uid = _text(component, "UID")
    if not uid:
        raise MalformedEventError("missing UID")

    title = _text(component, "SUMMARY")
    if not title:
        raise MalformedEventError("missing SUMMARY")

    dtstart = _first(component, "DTSTART")
    if dtstart is None:
        raise MalformedEventError("missing DTSTART")
    start, all_day = to_event_time(dtstart)

    end = None
    dtend = _first(component, "DTEND")
    if dtend is not None:
        end_value, _ = to_event_time(dtend)
        end = coerce_time(end_value, all_day)

    return Event(
        uid=uid,
        title=title,
        description=_text(component, "DESCRIPTION"),
        location=_text(component, "LOCATION"),
        start=start,
        end=end,
        all_day=all_day,
        tags=read_categories(component),
        source_updated_at=read_last_modified(component),
    )

# --- parse_event_block ---
# Parses the raw lines of one VEVENT as a standalone calendar.
# Raises: MalformedEventError when icalendar rejects the block or the event
#         is missing a required field.
def parse_event_block(lines: List[str]) -> Event:
    text = _BLOCK_HEADER + "\r\n".join(lines) + "\r\n" + _BLOCK_FOOTER
    try:
        calendar = Calendar.from_ical(text)
    except ValueError as e:
        raise MalformedEventError(f"unparseable event: {e}") from e

    components = calendar.walk("VEVENT")
    if not components:
        raise MalformedEventError("no VEVENT in block")
    return build_event(components[0])


def _block_uid(lines: List[str]) -> str:
    for line in lines:
        if line[:4].upper() == "UID:":
            return line[4:].strip() or "unknown"
    return "unknown"

# --- parse_feed ---
# Extracts every well-formed VEVENT from raw feed text, in source order.
# Args:
#     raw_text: The full iCalendar document.
# Returns: List of Event records (empty when the feed has no events).
def parse_feed(raw_text: str) -> List[Event]:
    blocks, skipped = split_event_blocks(raw_text)
    events: List[Event] = []

    for index, lines in enumerate(blocks, start=1):
        try:
            events.append(parse_event_block(lines))
        except MalformedEventError as e:
            skipped += 1
            logger.warning(f"Skipping malformed event #{index} (UID {_block_uid(lines)}): {e}")

    if skipped:
        logger.info(f"Parsed {len(events)} events, skipped {skipped} malformed")
    else:
        logger.debug(f"Parsed {len(events)} events")
    return events
