"""
Weekly recurrence descriptors.

A descriptor is serialised as an RRULE-like string, for example
``FREQ=WEEKLY;BYDAY=MO,WE;BYHOUR=18;BYMINUTE=30;COUNT=8``, and expanded into
concrete occurrences with dateutil's rrule. An optional ``UNTIL=20261102`` (or
``UNTIL=20261102T090000Z``) ends the series early; COUNT still caps it.

Parsing is deliberately forgiving: unknown day tokens and malformed parts are
dropped (and logged) instead of rejected, and an empty day set falls back to
the weekday of the anchor occurrence.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, time
from itertools import islice
from typing import Iterable

from dateutil.rrule import FR, MO, SA, SU, TH, TU, WE, WEEKLY, rrule

logger = logging.getLogger(__name__)

FREQUENCY = "WEEKLY"
UNTIL_FORMAT = "%Y%m%dT%H%M%SZ"

# index matches datetime.weekday()
DAY_CODES = ("MO", "TU", "WE", "TH", "FR", "SA", "SU")
RRULE_WEEKDAYS = dict(zip(DAY_CODES, (MO, TU, WE, TH, FR, SA, SU)))

DAY_ALIASES = {
    "MONDAY": "MO",
    "TUESDAY": "TU",
    "WEDNESDAY": "WE",
    "THURSDAY": "TH",
    "FRIDAY": "FR",
    "SATURDAY": "SA",
    "SUNDAY": "SU",
}


@dataclass(frozen=True)
class RecurrenceDescriptor:
    days_of_week: frozenset
    hour: int
    minute: int
    occurrence_count: int
    frequency: str = FREQUENCY
    until: datetime | None = None

    def to_rule(self) -> str:
        return _format_rule(self.days_of_week, self.hour, self.minute, self.occurrence_count, self.until)


def weekday_code(moment: datetime) -> str:
    return DAY_CODES[moment.weekday()]


def normalize_day(token: str) -> str | None:
    token = token.strip().upper()
    if token in RRULE_WEEKDAYS:
        return token
    return DAY_ALIASES.get(token)


def sort_days(days: Iterable[str]) -> list[str]:
    return sorted(set(days), key=DAY_CODES.index)


def _split_parts(descriptor: str) -> dict[str, str]:
    parts = {}
    for part in descriptor.split(";"):
        key, sep, value = part.partition("=")
        if sep and key.strip() and value.strip():
            parts[key.strip().upper()] = value.strip()
    return parts


def _parse_days(raw: str, descriptor: str) -> set[str]:
    days = set()
    for token in raw.split(","):
        if not token.strip():
            continue
        day = normalize_day(token)
        if day is None:
            logger.warning(f"Dropping unknown day token {token!r} from recurrence {descriptor!r}")
            continue
        days.add(day)
    return days


def parse(descriptor: str | None) -> set[str]:
    """Return the weekday codes named by a descriptor; never raises."""
    if not descriptor or not descriptor.strip():
        return set()

    if "=" not in descriptor:
        days = _parse_days(descriptor, descriptor)
    else:
        days = _parse_days(_split_parts(descriptor).get("BYDAY", ""), descriptor)

    if not days:
        logger.warning(f"Recurrence {descriptor!r} names no usable days, anchor weekday will be used")
    return days


def _int_part(parts: dict[str, str], key: str, low: int, high: int | None) -> int | None:
    raw = parts.get(key)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring malformed recurrence part {key}={raw!r}")
        return None
    if value < low or (high is not None and value > high):
        logger.warning(f"Ignoring out of range recurrence part {key}={raw!r}")
        return None
    return value


def _until_part(parts: dict[str, str]) -> datetime | None:
    """UNTIL as YYYYMMDDTHHMMSSZ, or YYYYMMDD meaning the end of that day."""
    raw = parts.get("UNTIL")
    if raw is None:
        return None
    try:
        if re.fullmatch(r"\d{8}T\d{6}Z", raw):
            return datetime.strptime(raw, UNTIL_FORMAT)
        if re.fullmatch(r"\d{8}", raw):
            return datetime.combine(datetime.strptime(raw, "%Y%m%d").date(), time.max)
    except ValueError:
        pass
    logger.warning(f"Ignoring malformed recurrence part UNTIL={raw!r}")
    return None


def parse_descriptor(descriptor: str | None, anchor_start: datetime, default_count: int) -> RecurrenceDescriptor:
    """Parse a full descriptor, falling back to the anchor and default count where parts are unusable."""
    parts = _split_parts(descriptor) if descriptor and "=" in descriptor else {}

    frequency = parts.get("FREQ", FREQUENCY).upper()
    if frequency != FREQUENCY:
        logger.warning(f"Unsupported frequency {frequency!r} in {descriptor!r}, treating it as weekly")

    hour = _int_part(parts, "BYHOUR", 0, 23)
    minute = _int_part(parts, "BYMINUTE", 0, 59)
    count = _int_part(parts, "COUNT", 1, None)

    return descriptor_for(
        anchor_start,
        parse(descriptor),
        count if count is not None else default_count,
        hour=hour,
        minute=minute,
        until=_until_part(parts),
    )


def descriptor_for(anchor_start: datetime, days: Iterable[str], occurrence_count: int,
                   hour: int | None = None, minute: int | None = None,
                   until: datetime | None = None) -> RecurrenceDescriptor:
    normalized = {day for day in (normalize_day(d) for d in days) if day}
    if not normalized:
        normalized = {weekday_code(anchor_start)}

    return RecurrenceDescriptor(
        days_of_week=frozenset(normalized),
        hour=anchor_start.hour if hour is None else hour,
        minute=anchor_start.minute if minute is None else minute,
        occurrence_count=max(1, int(occurrence_count)),
        until=until,
    )


def _format_rule(days: Iterable[str], hour: int, minute: int, count: int, until: datetime | None = None) -> str:
    parts = [
        f"FREQ={FREQUENCY}",
        f"BYDAY={','.join(sort_days(days))}",
        f"BYHOUR={hour}",
        f"BYMINUTE={minute}",
        f"COUNT={count}",
    ]
    if until is not None:
        parts.append(f"UNTIL={until.strftime(UNTIL_FORMAT)}")
    return ";".join(parts)


def build(start_time: datetime, days_of_week: Iterable[str], occurrence_count: int) -> str:
    """Canonical descriptor string for a weekly series starting at start_time."""
    return descriptor_for(start_time, days_of_week, occurrence_count).to_rule()


def expand(descriptor: RecurrenceDescriptor, anchor_start: datetime, anchor_end: datetime) -> list[tuple[datetime, datetime]]:
    """
    Materialise a descriptor into (start, end) pairs.

    Walks week by week from the anchor, never emitting anything before
    anchor_start, until occurrence_count pairs exist or the descriptor's
    until moment is passed. Each pair lasts as long as the anchor occurrence.
    A series whose until excludes every occurrence keeps the anchor alone.
    """
    duration = anchor_end - anchor_start
    days = descriptor.days_of_week or {weekday_code(anchor_start)}

    # dateutil deprecates count together with until; until bounds the rule, count caps it
    rule = rrule(
        WEEKLY,
        dtstart=anchor_start,
        byweekday=[RRULE_WEEKDAYS[day] for day in sort_days(days)],
        byhour=descriptor.hour,
        byminute=descriptor.minute,
        bysecond=anchor_start.second,
        count=None if descriptor.until else descriptor.occurrence_count,
        until=descriptor.until,
    )
    starts = list(islice(rule, descriptor.occurrence_count)) or [anchor_start]
    return [(start, start + duration) for start in starts]
