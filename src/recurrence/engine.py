"""
Recurrence handling for calendar events.

Supports the subset of RFC 5545 rules the parser emits:
FREQ=DAILY|WEEKLY|MONTHLY with optional BYDAY and UNTIL. A malformed rule is
never fatal; the event is then treated as non-recurring.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

from syllabus_sync.models import EventItem

logger = logging.getLogger(__name__)

FREQUENCIES = {"DAILY", "WEEKLY", "MONTHLY"}

WEEKDAY_CODES = {
    "MO": 0,
    "TU": 1,
    "WE": 2,
    "TH": 3,
    "FR": 4,
    "SA": 5,
    "SU": 6,
}

_BASIC_DATE = re.compile(r"^\d{8}$")
_BASIC_DATETIME = re.compile(r"^(\d{8})T(\d{6})(Z?)$")


@dataclass(frozen=True)
class RecurrenceRule:
    freq: str
    weekdays: Tuple[int, ...] = ()
    until: Optional[datetime] = None
    # date-only UNTIL values are inclusive through the end of that day
    until_is_date: bool = False


def _parse_until(value: str) -> Tuple[datetime, bool]:
    v = value.strip()
    if _BASIC_DATE.match(v):
        d = datetime.strptime(v, "%Y%m%d").date()
        return datetime.combine(d, time.max), True

    m = _BASIC_DATETIME.match(v)
    if m:
        dt = datetime.strptime(m.group(1) + m.group(2), "%Y%m%d%H%M%S")
        if m.group(3):
            dt = dt.replace(tzinfo=timezone.utc)
        return dt, False

    if len(v) == 10:
        d = date.fromisoformat(v)
        return datetime.combine(d, time.max), True

    if v.endswith("Z") or v.endswith("z"):
        v = v[:-1] + "+00:00"
    return datetime.fromisoformat(v), False


def parse_rule(rule: Optional[str]) -> Optional[RecurrenceRule]:
    """Parse a rule string. Returns None for absent or malformed rules."""
    if rule is None or not rule.strip():
        return None

    parts = {}
    for token in rule.strip().strip(";").split(";"):
        token = token.strip()
        if not token:
            continue
        if "=" not in token:
            logger.debug(f"Malformed recurrence token {token!r} in {rule!r}")
            return None
        key, value = token.split("=", 1)
        parts[key.strip().upper()] = value.strip()

    freq = parts.get("FREQ", "").upper()
    if freq not in FREQUENCIES:
        logger.debug(f"Unsupported or missing FREQ in {rule!r}")
        return None

    weekdays: List[int] = []
    for code in parts.get("BYDAY", "").split(","):
        code = code.strip().upper()
        if code in WEEKDAY_CODES and WEEKDAY_CODES[code] not in weekdays:
            weekdays.append(WEEKDAY_CODES[code])

    until = None
    until_is_date = False
    if "UNTIL" in parts:
        try:
            until, until_is_date = _parse_until(parts["UNTIL"])
        except ValueError:
            logger.debug(f"Unparsable UNTIL in {rule!r}")
            return None

    return RecurrenceRule(
        freq=freq,
        weekdays=tuple(weekdays),
        until=until,
        until_is_date=until_is_date,
    )


def _align(original_start: datetime, now: datetime) -> Tuple[datetime, datetime]:
    """Bring both values into the zone of original_start."""
    if original_start.tzinfo is None and now.tzinfo is not None:
        original_start = original_start.replace(tzinfo=now.tzinfo)
    elif original_start.tzinfo is not None and now.tzinfo is None:
        now = now.replace(tzinfo=original_start.tzinfo)
    elif original_start.tzinfo is not None:
        now = now.astimezone(original_start.tzinfo)
    return original_start, now


def _until_in_zone(rule: RecurrenceRule, tz) -> Optional[datetime]:
    if rule.until is None:
        return None
    until = rule.until
    if until.tzinfo is None:
        return until.replace(tzinfo=tz) if tz is not None else until
    if tz is None:
        # naive computation, compare wall clocks
        return until.replace(tzinfo=None)
    return until.astimezone(tz)


def _next_on_weekday(weekday: int, start: datetime, now: datetime) -> datetime:
    days_ahead = (weekday - now.weekday()) % 7
    day = now.date() + timedelta(days=days_ahead)
    candidate = datetime.combine(day, start.timetz())
    if candidate < now:
        candidate = datetime.combine(day + timedelta(days=7), start.timetz())
    return candidate


def next_occurrence(
    rule: Optional[str],
    original_start: datetime,
    reference_now: datetime,
) -> datetime:
    """Earliest occurrence at or after reference_now.

    Returns original_start when there is no usable rule, when the event has not
    started yet, or when every candidate falls after UNTIL.
    """
    parsed = parse_rule(rule)
    if parsed is None:
        return original_start

    start, now = _align(original_start, reference_now)
    if start >= now:
        return original_start

    weekdays = parsed.weekdays or (start.weekday(),)
    until = _until_in_zone(parsed, start.tzinfo)

    candidates = [_next_on_weekday(wd, start, now) for wd in weekdays]
    if until is not None:
        candidates = [c for c in candidates if c <= until]
    if not candidates:
        return original_start
    return min(candidates)


def effective_date(event: EventItem, now: datetime) -> datetime:
    return next_occurrence(event.recurrence_rule, event.start, now)


def _comparable(dt: datetime, now: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=now.tzinfo or timezone.utc)
    return dt


def sort_by_next_occurrence(
    events: Iterable[EventItem],
    now: datetime,
    descending: bool = False,
) -> List[EventItem]:
    """Order events by their effective date, ties broken by title."""
    keyed = [
        (_comparable(effective_date(e, now), now), e.title.lower(), e)
        for e in events
    ]
    keyed.sort(key=lambda item: (item[0], item[1]), reverse=descending)
    return [item[2] for item in keyed]


def upcoming(events: Iterable[EventItem], now: datetime) -> List[EventItem]:
    """Events whose next occurrence is at or after now, soonest first."""
    reference = _comparable(now, now)
    return [
        e for e in sort_by_next_occurrence(events, now)
        if _comparable(effective_date(e, now), now) >= reference
    ]
