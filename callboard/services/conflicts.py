"""Interval overlap and local wall-clock helpers shared by every conflict check."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from callboard.core.config import settings
from callboard.core.logging import get_logger
from callboard.domain.models import Commitment, TimeInterval

logger = get_logger(__name__)


def overlaps(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """Return True if the half-open spans ``[a_start, a_end)`` and ``[b_start, b_end)`` overlap.

    Overlap rule: a_start < b_end AND b_start < a_end.
    Exact boundary touches (a_end == b_start) are NOT overlaps, and an empty or
    inverted span never overlaps anything.
    """
    if not (a_start < a_end and b_start < b_end):
        return False
    return a_start < b_end and b_start < a_end


def intervals_overlap(a: TimeInterval, b: TimeInterval) -> bool:
    return overlaps(a.start, a.end, b.start, b.end)


def find_conflicts(
    interval: TimeInterval,
    commitments: Iterable[Commitment],
) -> list[Commitment]:
    """Return the commitments that overlap *interval*."""
    return [
        c
        for c in commitments
        if overlaps(interval.start, interval.end, c.start, c.end)
    ]


def dedupe(commitments: Iterable[Commitment]) -> list[Commitment]:
    """Drop repeated commitments (same identity key), keeping first-seen order."""
    seen: set[tuple] = set()
    unique: list[Commitment] = []
    for c in commitments:
        if c.identity_key in seen:
            continue
        seen.add(c.identity_key)
        unique.append(c)
    return unique


# ---------------------------------------------------------------------------
# Wall-clock handling
# ---------------------------------------------------------------------------


@lru_cache(maxsize=64)
def get_zone(name: str | None = None) -> ZoneInfo:
    """Resolve an IANA zone name, falling back to the configured default."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "Unknown time zone %r, using %s", name, settings.DEFAULT_TIMEZONE
            )
    return ZoneInfo(settings.DEFAULT_TIMEZONE)


def as_aware(dt: datetime, tz: ZoneInfo) -> datetime:
    """Read a naive datetime as wall-clock time in *tz*; aware ones pass through."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt


def combine_local(day: date, at: time, tz: ZoneInfo) -> datetime:
    """Combine a civil date and a time of day as wall-clock time in *tz*."""
    return datetime.combine(day, at.replace(tzinfo=None), tzinfo=tz)


def local_span(day: date, start: time, end: time, tz: ZoneInfo) -> TimeInterval:
    """Interval for a same-day ``start``–``end`` block at a venue.

    An end of exactly midnight means the end of *day*.
    """
    start_dt = combine_local(day, start, tz)
    end_dt = combine_local(day, end, tz)
    if end == time(0) and start != time(0):
        end_dt = combine_local(day + timedelta(days=1), end, tz)
    return TimeInterval(start=start_dt, end=end_dt)


def day_span(first: date, last: date | None, tz: ZoneInfo) -> TimeInterval:
    """Whole local calendar days ``first``..``last`` inclusive, as ``[00:00, 00:00)``."""
    last = last if last is not None and last >= first else first
    return TimeInterval(
        start=combine_local(first, time(0), tz),
        end=combine_local(last + timedelta(days=1), time(0), tz),
    )


def local_dates(interval: TimeInterval, tz: ZoneInfo) -> list[date]:
    """Every local calendar date the interval touches."""
    if not interval.is_valid:
        return []
    first = interval.start.astimezone(tz).date()
    last = (interval.end - timedelta(microseconds=1)).astimezone(tz).date()
    return [first + timedelta(days=n) for n in range((last - first).days + 1)]
