"""Tests for the event bus and the conflict alert feed."""

from __future__ import annotations

from datetime import date

import pytest

from callboard.domain.bus import EventBus
from callboard.domain.events import ConflictsDetected, VerificationDegraded
from callboard.domain.handlers import AlertFeed
from callboard.services.resolver import ConflictResolver


@pytest.fixture()
def env():
    """Fresh bus + alert feed for each test."""
    bus = EventBus()
    feed = AlertFeed(bus)

    class Env:
        pass

    e = Env()
    e.bus = bus
    e.feed = feed
    return e


def _make_detected(**overrides) -> ConflictsDetected:
    defaults = dict(
        target_id="act2",
        production_id="woods",
        date=date(2024, 3, 5),
        member_ids=["ana"],
        conflict_count=1,
    )
    defaults.update(overrides)
    return ConflictsDetected(**defaults)


def test_publish_reaches_every_subscriber(env):
    """Every handler for an event type is called."""
    received = []
    env.bus.subscribe(ConflictsDetected, received.append)

    delivered = env.bus.publish(_make_detected())

    assert delivered == 2
    assert len(received) == 1
    [alert] = env.feed.list_for_production("woods")
    assert alert.kind == "conflicts"
    assert alert.message == "1 member with 1 conflicting commitment(s) on 2024-03-05"


def test_failing_handler_does_not_block_others(env):
    """A raising handler is skipped and the rest still run."""
    def explode(event):
        raise RuntimeError("boom")

    received = []
    env.bus.subscribe(ConflictsDetected, explode)
    env.bus.subscribe(ConflictsDetected, received.append)

    delivered = env.bus.publish(_make_detected(member_ids=["ana", "ben"], conflict_count=3))

    assert delivered == 2
    assert len(received) == 1
    assert env.feed.list_for_production("woods")[0].member_ids == ["ana", "ben"]


def test_unsubscribed_event_type_is_a_no_op():
    """Publishing with no subscribers reaches nobody."""
    assert EventBus().publish(_make_detected()) == 0


def test_degraded_alert(env):
    """A degraded check raises a degraded alert for that production only."""
    env.bus.publish(
        VerificationDegraded(target_id="act2", production_id="woods", unverified_member_ids=["sm"])
    )
    [alert] = env.feed.list_for_production("woods")
    assert alert.kind == "degraded"
    assert alert.message == "Could not fully verify conflicts for 1 member(s)"
    assert env.feed.list_for_production("other") == []


def test_feed_is_bounded():
    """The feed keeps only the newest alerts."""
    bus = EventBus()
    feed = AlertFeed(bus, max_alerts=3)
    for n in range(5):
        bus.publish(_make_detected(target_id=f"t{n}"))
    assert [a.target_id for a in feed.list_for_production("woods")] == ["t2", "t3", "t4"]


@pytest.mark.asyncio
async def test_resolution_feeds_alerts(env, store):
    """Resolving a target publishes both conflict and degraded alerts."""
    store.fail("get_member_signups", "sm")
    await ConflictResolver(store, bus=env.bus).resolve_target("act2")

    alerts = env.feed.list_for_production("woods")
    assert [(a.kind, a.member_ids) for a in alerts] == [
        ("conflicts", ["ana"]),
        ("degraded", ["sm"]),
    ]
