"""Service for expanding recurring personal events into the concrete
occurrences that fall inside a query window."""

from __future__ import annotations

from datetime import datetime, time, timedelta, tzinfo

from dateutil.rrule import (
    DAILY,
    FR,
    MO,
    MONTHLY,
    SA,
    SU,
    TH,
    TU,
    WE,
    WEEKLY,
    YEARLY,
    rrule,
)

from callboard.core.config import settings
from callboard.core.logging import get_logger
from callboard.domain.models import (
    EndKind,
    Frequency,
    RecurrenceExpansion,
    RecurrenceRule,
    TimeInterval,
    Weekday,
)
from callboard.services.conflicts import as_aware, combine_local, get_zone, overlaps

logger = get_logger(__name__)

_FREQ_MAP = {
    Frequency.DAILY: DAILY,
    Frequency.WEEKLY: WEEKLY,
    Frequency.MONTHLY: MONTHLY,
    Frequency.YEARLY: YEARLY,
}

_DAY_MAP = {
    Weekday.MO: MO,
    Weekday.TU: TU,
    Weekday.WE: WE,
    Weekday.TH: TH,
    Weekday.FR: FR,
    Weekday.SA: SA,
    Weekday.SU: SU,
}

# Longest each month can ever be (leap years included).
_MAX_MONTH_DAYS = {1: 31, 2: 29, 3: 31, 4: 30, 5: 31, 6: 30,
                   7: 31, 8: 31, 9: 30, 10: 31, 11: 30, 12: 31}


def build_rrule(rule: RecurrenceRule, first_start: datetime) -> rrule:
    """Translate a RecurrenceRule into a dateutil ``rrule`` anchored at *first_start*.

    *first_start* must be timezone-aware; occurrences keep its wall-clock time
    in its zone.
    """
    freq = rule.effective_frequency
    kwargs: dict = {
        "freq": _FREQ_MAP[freq],
        "interval": rule.interval,
        "dtstart": first_start,
        "wkst": MO,
    }

    # Weekday filters only apply to day/week stepping ("every weekday",
    # "every other Tue and Thu"). Monthly and yearly rules keep the anchor's
    # day of month.
    if rule.by_day and freq in (Frequency.DAILY, Frequency.WEEKLY):
        kwargs["byweekday"] = [_DAY_MAP[d] for d in rule.by_day]
    if rule.by_month_day and freq in (Frequency.MONTHLY, Frequency.YEARLY):
        kwargs["bymonthday"] = list(rule.by_month_day)
    if rule.by_month and freq in (Frequency.MONTHLY, Frequency.YEARLY):
        kwargs["bymonth"] = list(rule.by_month)

    if rule.end.kind == EndKind.ON_DATE:
        # Inclusive of the whole end date in the event's zone.
        kwargs["until"] = combine_local(
            rule.end.until + timedelta(days=1), time(0), first_start.tzinfo
        ) - timedelta(microseconds=1)
    elif rule.end.kind == EndKind.AFTER_COUNT:
        kwargs["count"] = rule.end.count

    return rrule(**kwargs)


def can_ever_occur(rule: RecurrenceRule, first_start: datetime) -> bool:
    """False for rules whose day-of-month filter no month can satisfy (e.g. Feb 30)."""
    freq = rule.effective_frequency
    if freq not in (Frequency.MONTHLY, Frequency.YEARLY):
        return True
    days = rule.by_month_day or (first_start.day,)
    months = rule.by_month or tuple(_MAX_MONTH_DAYS)
    return any(day <= _MAX_MONTH_DAYS[m] for m in months for day in days)


def expand(
    rule: RecurrenceRule,
    first_start: datetime,
    first_end: datetime,
    window_start: datetime,
    window_end: datetime,
    tz: tzinfo | None = None,
    max_iterations: int | None = None,
) -> RecurrenceExpansion:
    """Expand *rule* into the occurrences that overlap ``[window_start, window_end)``.

    Occurrences are counted from the rule's true first occurrence, so an
    ``after_count`` rule never yields more than its count no matter where the
    window sits. Stepping stops at the first occurrence starting at or after
    ``window_end``. If more than *max_iterations* occurrences would be needed
    to reach the window end, the result is cut short and ``truncated`` is set.

    The result is recomputed on every call and *rule* is never modified.
    """
    cap = max_iterations or settings.MAX_RECURRENCE_ITERATIONS
    zone = tz or first_start.tzinfo or get_zone()
    start_local = as_aware(first_start, zone).astimezone(zone)
    duration = as_aware(first_end, zone) - as_aware(first_start, zone)

    if not window_start < window_end:
        return RecurrenceExpansion()
    if not can_ever_occur(rule, start_local):
        logger.warning("Recurrence rule %s can never occur", rule.to_rrule_string())
        return RecurrenceExpansion()

    occurrences: list[TimeInterval] = []
    for step, occurrence_start in enumerate(build_rrule(rule, start_local), start=1):
        if occurrence_start >= window_end:
            break
        if step > cap:
            logger.warning(
                "Recurrence expansion truncated after %d steps: %s",
                cap,
                rule.to_rrule_string(),
            )
            return RecurrenceExpansion(occurrences=occurrences, truncated=True)
        occurrence_end = occurrence_start + duration
        if overlaps(occurrence_start, occurrence_end, window_start, window_end):
            occurrences.append(
                TimeInterval(start=occurrence_start, end=occurrence_end)
            )

    return RecurrenceExpansion(occurrences=occurrences)
