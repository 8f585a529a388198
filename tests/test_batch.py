"""Tests for batch conflict resolution over a date range."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from callboard.domain.models import SchedulingTarget, TargetKind
from callboard.services.resolver import ConflictResolver

CHICAGO = ZoneInfo("America/Chicago")
WEEK_START = datetime(2024, 3, 4, tzinfo=CHICAGO)
WEEK_END = datetime(2024, 3, 11, tzinfo=CHICAGO)


def _conflicted(report) -> dict[str, list[tuple[str, datetime]]]:
    return {
        e.member.member_id: sorted((c.title, c.start) for c in e.conflicts)
        for e in report.entries
    }


def _busy_week(store) -> None:
    store.add_production_event("tech", "woods", date(2024, 3, 6), "17:00", "22:00", "Tech Rehearsal")
    store.add_production_event("photo", "woods", date(2024, 3, 8), "18:00", "19:00", "Photo Call", ["sm"])
    store.add_rehearsal_event("reh-0307", "woods", date(2024, 3, 7))
    store.add_agenda_item("run", "reh-0307", "18:00", "21:00", "Run Act 1")
    store.add_signup("sm", "su1", "2024-03-08T18:30:00", "2024-03-08T19:30:00", "woods")
    store.add_callback("dir", "cb1", "2024-03-05T14:45:00", "2024-03-05T15:30:00", "woods")
    store.add_personal_event("ana", "gig", "Gig", "2024-03-07T20:00:00", "2024-03-07T23:00:00")


@pytest.mark.asyncio
async def test_batch_matches_single_resolution(store):
    """Every batch report equals the report for checking that target alone."""
    _busy_week(store)
    resolver = ConflictResolver(store)

    batch = await resolver.resolve_production("woods", WEEK_START, WEEK_END)

    assert list(batch.reports) == ["reh-0305", "tech", "reh-0307", "photo"]
    for target_id, batch_report in batch.reports.items():
        single = await resolver.resolve_target(target_id)
        assert _conflicted(batch_report) == _conflicted(single), target_id
        assert batch_report.unverified == single.unverified


@pytest.mark.asyncio
async def test_batch_finds_expected_conflicts(store):
    """A busy week yields the expected conflicted members per target."""
    _busy_week(store)
    batch = await ConflictResolver(store).resolve_production("woods", WEEK_START, WEEK_END)
    found = {tid: sorted(_conflicted(r)) for tid, r in batch.reports.items()}
    assert found == {
        "reh-0305": ["ana", "dir"],
        "tech": ["ben"],
        "reh-0307": ["ana"],
        "photo": ["sm"],
    }
    assert not batch.is_degraded
    assert set(batch.conflicts_by_target()) == set(batch.reports)


@pytest.mark.asyncio
async def test_batch_fetches_each_member_once(store):
    """Each source is read once per roster member, however many targets there are."""
    _busy_week(store)
    await ConflictResolver(store).resolve_production("woods", WEEK_START, WEEK_END)

    roster_size = 4
    for read in (
        "get_member_signups",
        "get_member_accepted_callbacks",
        "get_member_agenda_items",
        "get_member_personal_events",
        "get_member_recurring_events",
    ):
        assert store.calls[read] == roster_size, read


@pytest.mark.asyncio
async def test_batch_widens_fetch_to_cover_targets(store):
    """A target reaching past the requested window still sees its conflicts."""
    store.add_callback("dir", "cb1", "2024-03-05T14:45:00", "2024-03-05T15:30:00", "woods")
    resolver = ConflictResolver(store)
    target = SchedulingTarget.model_validate(await store.get_scheduling_target("reh-0305"))
    roster = await resolver.roster("woods")

    batch = await resolver.resolve_batch(
        [target],
        roster,
        datetime(2024, 3, 5, 0, 0),
        datetime(2024, 3, 5, 12, 0),
        timezone="America/Chicago",
    )
    assert sorted(_conflicted(batch.reports["reh-0305"])) == ["ana", "dir"]


def _gym_target(target_id: str, timezone: str) -> SchedulingTarget:
    return SchedulingTarget(
        target_id=target_id,
        kind=TargetKind.PRODUCTION_EVENT,
        production_id="woods",
        title="Press Preview",
        date=date(2024, 3, 6),
        start_time_of_day=time(14, 0),
        end_time_of_day=time(14, 30),
        timezone=timezone,
        assigned_member_ids=["ana"],
    )


@pytest.mark.asyncio
async def test_batch_reads_naive_rows_in_each_target_zone(store):
    """Targets in different zones see naive rows exactly as a single check does."""
    store.add_personal_event("ana", "gym", "Gym", "2024-03-06T14:00:00", "2024-03-06T14:30:00")
    resolver = ConflictResolver(store)
    roster = await resolver.roster("woods")
    chicago = _gym_target("press-chi", "America/Chicago")
    new_york = _gym_target("press-nyc", "America/New_York")

    batch = await resolver.resolve_batch(
        [chicago, new_york],
        roster,
        datetime(2024, 3, 6, 0, 0),
        datetime(2024, 3, 7, 0, 0),
        timezone="America/Chicago",
    )

    for target in (chicago, new_york):
        single = await resolver.resolve(target, roster)
        assert sorted(_conflicted(single)) == ["ana"], target.target_id
        assert _conflicted(batch.reports[target.target_id]) == _conflicted(single)


@pytest.mark.asyncio
async def test_same_commitment_against_two_segments_is_reported_once(store):
    """One commitment overlapping two segments is listed once."""
    store.add_agenda_item("scene", "reh-0305", "14:30", "15:00", "Into the Woods Scene", ["ana"])
    resolver = ConflictResolver(store)

    single = await resolver.resolve_target("reh-0305")
    batch = await resolver.resolve_production(
        "woods", datetime(2024, 3, 5, tzinfo=CHICAGO), datetime(2024, 3, 6, tzinfo=CHICAGO)
    )

    for report in (single, batch.reports["reh-0305"]):
        [entry] = [e for e in report.entries if e.member.member_id == "ana"]
        assert [c.title for c in entry.conflicts] == ["Dentist"]


@pytest.mark.asyncio
async def test_batch_degrades_per_member(store):
    """A failing member degrades only the reports that call them."""
    _busy_week(store)
    store.fail("get_member_personal_events", "ana")
    batch = await ConflictResolver(store).resolve_production("woods", WEEK_START, WEEK_END)

    assert batch.is_degraded
    assert "ana" not in _conflicted(batch.reports["reh-0307"])
    assert _conflicted(batch.reports["tech"]) == {
        "ben": [("Band Practice", datetime(2024, 3, 6, 18, tzinfo=CHICAGO))]
    }
    photo = batch.reports["photo"]
    assert not photo.is_degraded


@pytest.mark.asyncio
async def test_batch_caps_concurrent_fetches(store):
    """Member fetches never exceed the concurrency limit."""
    active = 0
    peak = 0
    original = store.get_member_signups

    async def slow_signups(member_id):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return await original(member_id)

    store.get_member_signups = slow_signups
    batch = await ConflictResolver(store, max_concurrency=2).resolve_production(
        "woods", WEEK_START, WEEK_END
    )
    assert peak == 2
    assert not batch.is_degraded


@pytest.mark.asyncio
async def test_cancelling_batch_leaves_no_fetches_behind(store):
    """Cancelling a batch cancels every outstanding fetch."""
    _busy_week(store)
    store.stall("get_member_signups")
    task = asyncio.create_task(
        ConflictResolver(store).resolve_production("woods", WEEK_START, WEEK_END)
    )
    while store.calls["get_member_signups"] < 4:
        await asyncio.sleep(0.001)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert [t for t in asyncio.all_tasks() if t is not asyncio.current_task()] == []


@pytest.mark.asyncio
async def test_batch_rejects_inverted_window(store):
    """A window that ends before it starts raises ValueError."""
    with pytest.raises(ValueError):
        await ConflictResolver(store).resolve_production("woods", WEEK_END, WEEK_START)
