"""Conflict resolution for scheduling targets.

``resolve`` checks one target: every called member's commitments are
fetched over the target's own span and tested against it. ``resolve_batch``
checks many targets at once: each member is fetched once per target zone
over the whole window and every target is then replayed in memory against
those cached commitments. Both paths share ``_report_for``, so batching changes how
often the data layer is hit, never the result.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Collection, Iterable
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from callboard.core.config import settings
from callboard.core.logging import get_logger
from callboard.domain.bus import EventBus
from callboard.domain.errors import (
    RosterUnavailableError,
    UnknownMemberError,
    UnknownProductionError,
    UnknownTargetError,
)
from callboard.domain.events import ConflictsDetected, VerificationDegraded
from callboard.domain.models import (
    BatchConflictReport,
    CommitmentType,
    ConflictIssue,
    ConflictReport,
    DailyConflict,
    DailyConflictsReport,
    DailyConflictSummary,
    IssueKind,
    Member,
    MemberCommitments,
    MemberConflict,
    RosterEntry,
    SchedulingTarget,
    TimeInterval,
    UnverifiedMember,
    VerificationStatus,
)
from callboard.repos.base import CommitmentDataSource
from callboard.services.commitments import CommitmentAggregator
from callboard.services.conflicts import (
    as_aware,
    combine_local,
    dedupe,
    find_conflicts,
    get_zone,
    local_dates,
    local_span,
)
from callboard.services.eligibility import (
    build_roster,
    call_sheet,
    eligible_members_for,
    unknown_assignments,
)

logger = get_logger(__name__)

# (interval, ids of the members called for it)
TimedCall = tuple[TimeInterval, set[str]]


class _Plan:
    """A target broken down into concrete intervals, ready to check."""

    def __init__(self, target: SchedulingTarget, roster: list[Member]) -> None:
        self.target = target
        self.tz = get_zone(target.timezone)
        self.members = eligible_members_for(target, roster)
        self.calls: list[TimedCall] = []
        self.issues: list[ConflictIssue] = []

        for member_id in unknown_assignments(target, roster):
            logger.warning(
                "Assigned member is not on the roster",
                extra={"member_id": member_id, "target_id": target.target_id},
            )
            self.issues.append(
                ConflictIssue(
                    kind=IssueKind.UNKNOWN_MEMBER,
                    message=f"Assigned member '{member_id}' is not on the production roster",
                    member_id=member_id,
                )
            )

        for call in call_sheet(target, roster):
            if call.start_time_of_day is None or call.end_time_of_day is None:
                self._malformed(call.item_id, "missing start or end time")
                continue
            interval = local_span(
                target.date, call.start_time_of_day, call.end_time_of_day, self.tz
            )
            if not interval.is_valid:
                self._malformed(call.item_id, "end is not after start")
                continue
            self.calls.append((interval, {m.member_id for m in call.members}))

    def _malformed(self, item_id: str | None, reason: str) -> None:
        record_id = item_id or self.target.target_id
        logger.warning(
            "Target has an unusable time span: %s",
            reason,
            extra={"target_id": self.target.target_id, "record_id": record_id},
        )
        self.issues.append(
            ConflictIssue(
                kind=IssueKind.MALFORMED_INTERVAL,
                message=f"Target '{self.target.title or record_id}' {reason}",
                record_id=record_id,
            )
        )

    @property
    def span(self) -> TimeInterval | None:
        if not self.calls:
            return None
        return TimeInterval(
            start=min(i.start for i, _ in self.calls),
            end=max(i.end for i, _ in self.calls),
        )

    @property
    def checked_members(self) -> list[Member]:
        """Called members that have at least one usable interval to check."""
        called = {mid for _, ids in self.calls for mid in ids}
        return [m for m in self.members if m.member_id in called]


def _report_for(plan: _Plan, fetched: dict[str, MemberCommitments]) -> ConflictReport:
    target = plan.target
    own_items = target.own_agenda_item_ids
    report = ConflictReport(
        target_id=target.target_id,
        target_kind=target.kind,
        title=target.title,
        date=target.date,
        issues=list(plan.issues),
    )

    for member in plan.checked_members:
        commitments = fetched[member.member_id]
        others = [
            c
            for c in commitments.commitments
            if not (c.type == CommitmentType.REHEARSAL and c.source_id in own_items)
        ]
        hits = dedupe(
            c
            for interval, called in plan.calls
            if member.member_id in called
            for c in find_conflicts(interval, others)
        )
        partial = commitments.status != VerificationStatus.COMPLETE
        if hits:
            report.entries.append(MemberConflict(member=member, conflicts=hits, partial=partial))
        if partial:
            report.unverified.append(
                UnverifiedMember(
                    member=member,
                    status=commitments.status,
                    failed_sources=list(commitments.failed_sources),
                )
            )
        report.issues.extend(commitments.issues)
    return report


class ConflictResolver:
    """Finds which called members have a competing commitment."""

    def __init__(
        self,
        data_source: CommitmentDataSource,
        aggregator: CommitmentAggregator | None = None,
        bus: EventBus | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self._source = data_source
        self._aggregator = aggregator or CommitmentAggregator(data_source)
        self._bus = bus
        self._max_concurrency = max_concurrency or settings.MAX_CONCURRENT_FETCHES

    # ── Single target ──

    async def resolve(self, target: SchedulingTarget, roster: list[Member]) -> ConflictReport:
        """Check one target against the commitments of every member it calls."""
        plan = _Plan(target, roster)
        span = plan.span
        fetched: dict[str, MemberCommitments] = {}
        if span is not None:
            fetched = await self._fetch_all(
                plan.checked_members,
                span.start,
                span.end,
                exclude=target.own_agenda_item_ids,
                timezone=target.timezone,
            )
        report = _report_for(plan, fetched)
        logger.info(
            "Resolved target: %d conflicted, %d unverified",
            len(report.entries),
            len(report.unverified),
            extra={"target_id": target.target_id},
        )
        self._publish(target, report)
        return report

    async def resolve_target(self, target_id: str) -> ConflictReport:
        """Look up a target and its production roster, then ``resolve`` it."""
        row = await self._source.get_scheduling_target(target_id)
        if row is None:
            raise UnknownTargetError(target_id)
        target = SchedulingTarget.model_validate(row)
        roster = await self.roster(target.production_id)
        return await self.resolve(target, roster)

    # ── Many targets ──

    async def resolve_batch(
        self,
        targets: Iterable[SchedulingTarget],
        roster: list[Member],
        window_start: datetime,
        window_end: datetime,
        timezone: str | None = None,
    ) -> BatchConflictReport:
        """Check many targets while fetching each member's commitments once per zone."""
        targets = list(targets)
        tz = get_zone(timezone or (targets[0].timezone if targets else None))
        window_start, window_end = _checked_window(window_start, window_end, tz)

        plans = [_Plan(target, roster) for target in targets]

        # Naive rows are read in the target's zone, so members are fetched
        # once per zone rather than once per batch.
        by_zone: dict[str, list[_Plan]] = {}
        for plan in plans:
            by_zone.setdefault(plan.tz.key, []).append(plan)

        fetched: dict[str, dict[str, MemberCommitments]] = {}
        for zone_key, zone_plans in by_zone.items():
            # Widen the fetch window to cover any target poking outside the
            # requested one, so every target sees what a single check would.
            fetch_start, fetch_end = window_start, window_end
            members: dict[str, Member] = {}
            for plan in zone_plans:
                span = plan.span
                if span is None:
                    continue
                fetch_start = min(fetch_start, span.start)
                fetch_end = max(fetch_end, span.end)
                for member in plan.checked_members:
                    members.setdefault(member.member_id, member)

            fetched[zone_key] = await self._fetch_all(
                list(members.values()), fetch_start, fetch_end, timezone=zone_key
            )
            logger.info(
                "Batch fetched %d members for %d targets in %s",
                len(fetched[zone_key]),
                len(zone_plans),
                zone_key,
            )

        batch = BatchConflictReport(window_start=window_start, window_end=window_end)
        for plan in plans:
            report = _report_for(plan, fetched[plan.tz.key])
            batch.reports[plan.target.target_id] = report
            self._publish(plan.target, report)
        return batch

    async def resolve_production(
        self, production_id: str, window_start: datetime, window_end: datetime
    ) -> BatchConflictReport:
        """Batch-check every rehearsal and production event of a production in a window."""
        production = await self._source.get_production(production_id)
        if production is None:
            raise UnknownProductionError(production_id)
        tz = get_zone(production.get("timezone"))
        window_start, window_end = _checked_window(window_start, window_end, tz)
        rows = await self._source.get_production_targets(production_id, window_start, window_end)
        targets = [SchedulingTarget.model_validate(row) for row in rows]
        roster = await self.roster(production_id)
        return await self.resolve_batch(
            targets, roster, window_start, window_end, timezone=tz.key
        )

    # ── Members ──

    async def member_commitments(
        self,
        member_id: str,
        window_start: datetime,
        window_end: datetime,
        timezone: str | None = None,
    ) -> MemberCommitments:
        if await self._source.get_member(member_id) is None:
            raise UnknownMemberError(member_id)
        tz = get_zone(timezone)
        window_start, window_end = _checked_window(window_start, window_end, tz)
        return await self._aggregator.commitments_for(
            member_id, window_start, window_end, timezone=tz.key
        )

    async def roster(self, production_id: str) -> list[Member]:
        """The production's deduplicated roster; raises if it cannot be read."""
        try:
            rows = await self._source.get_production_roster(production_id)
        except Exception as exc:
            logger.error("Roster read failed for production %s", production_id, exc_info=True)
            raise RosterUnavailableError(production_id, exc) from exc

        entries: list[RosterEntry] = []
        for row in rows:
            try:
                entries.append(RosterEntry.model_validate(row))
            except ValidationError as exc:
                logger.warning("Skipping unreadable roster row: %s", exc)
        return build_roster(entries)

    # ── Daily summary ──

    async def daily_summary(
        self, production_id: str, start_date: date, end_date: date
    ) -> DailyConflictsReport:
        """Every roster member's outside commitments, grouped by local date.

        Rehearsal items of the production itself are not counted.
        """
        if end_date < start_date:
            raise ValueError("end_date must not be before start_date")
        production = await self._source.get_production(production_id)
        if production is None:
            raise UnknownProductionError(production_id)
        tz = get_zone(production.get("timezone"))
        roster = await self.roster(production_id)

        window_start = combine_local(start_date, time(0), tz)
        window_end = combine_local(end_date + timedelta(days=1), time(0), tz)
        fetched = await self._fetch_all(roster, window_start, window_end, timezone=tz.key)

        report = DailyConflictsReport(
            production_id=production_id, start_date=start_date, end_date=end_date
        )
        by_day: dict[date, list[DailyConflict]] = defaultdict(list)
        for member in roster:
            commitments = fetched[member.member_id]
            for c in commitments.commitments:
                if c.type == CommitmentType.REHEARSAL and c.production_id == production_id:
                    continue
                for day in _dates_in_range(c.interval, tz, start_date, end_date):
                    by_day[day].append(DailyConflict(member=member, commitment=c))
            if commitments.status != VerificationStatus.COMPLETE:
                report.unverified.append(
                    UnverifiedMember(
                        member=member,
                        status=commitments.status,
                        failed_sources=list(commitments.failed_sources),
                    )
                )
            report.issues.extend(commitments.issues)

        report.days = [
            DailyConflictSummary(date=day, conflicts=by_day[day]) for day in sorted(by_day)
        ]
        return report

    # ── Internals ──

    async def _fetch_all(
        self,
        members: list[Member],
        window_start: datetime,
        window_end: datetime,
        exclude: Collection[str] = (),
        timezone: str | None = None,
    ) -> dict[str, MemberCommitments]:
        """Fetch every member's commitments concurrently, a bounded number at a time.

        Cancelling the caller cancels every outstanding fetch.
        """
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def fetch(member: Member) -> MemberCommitments:
            async with semaphore:
                return await self._aggregator.commitments_for(
                    member.member_id,
                    window_start,
                    window_end,
                    exclude_agenda_item_ids=exclude,
                    timezone=timezone,
                )

        results = await asyncio.gather(*(fetch(m) for m in members))
        return {result.member_id: result for result in results}

    def _publish(self, target: SchedulingTarget, report: ConflictReport) -> None:
        if self._bus is None:
            return
        if report.entries:
            self._bus.publish(
                ConflictsDetected(
                    target_id=target.target_id,
                    production_id=target.production_id,
                    date=target.date,
                    member_ids=[e.member.member_id for e in report.entries],
                    conflict_count=sum(len(e.conflicts) for e in report.entries),
                )
            )
        if report.unverified:
            self._bus.publish(
                VerificationDegraded(
                    target_id=target.target_id,
                    production_id=target.production_id,
                    unverified_member_ids=[u.member.member_id for u in report.unverified],
                )
            )


def _checked_window(
    window_start: datetime, window_end: datetime, tz: ZoneInfo
) -> tuple[datetime, datetime]:
    window_start = as_aware(window_start, tz)
    window_end = as_aware(window_end, tz)
    if not window_start < window_end:
        raise ValueError("window_end must be after window_start")
    return window_start, window_end


def _dates_in_range(
    interval: TimeInterval, tz: ZoneInfo, first: date, last: date
) -> list[date]:
    return [d for d in local_dates(interval, tz) if first <= d <= last]
