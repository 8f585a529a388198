"""Service that gathers every calendar-occupying commitment of one member.

Four reads are issued concurrently (audition signups, accepted callbacks,
rehearsal agenda items, personal events). Each read is guarded on its own: a
failure or timeout marks that source as failed and the others still count.
Rows coming back from the data layer are validated into narrow records here
and turned into ``Commitment`` objects; nothing untyped leaves this module.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Collection
from datetime import datetime, time, timedelta
from typing import TypeVar
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ValidationError

from callboard.core.config import settings
from callboard.core.logging import get_logger
from callboard.domain.errors import SourceUnavailableError
from callboard.domain.models import (
    AgendaItemRecord,
    CallbackRecord,
    Commitment,
    CommitmentType,
    ConflictIssue,
    IssueKind,
    MemberCommitments,
    PersonalEventRecord,
    SignupRecord,
    TimeInterval,
)
from callboard.repos.base import CommitmentDataSource, Row
from callboard.services.conflicts import (
    as_aware,
    day_span,
    get_zone,
    local_span,
    overlaps,
)
from callboard.services.recurrence import expand

logger = get_logger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


def _titled(show_title: str | None, label: str) -> str:
    return f"{show_title} - {label}" if show_title else label


class CommitmentAggregator:
    """Collects one member's commitments inside a time window."""

    def __init__(
        self,
        data_source: CommitmentDataSource,
        timeout: float | None = None,
    ) -> None:
        self._source = data_source
        self._timeout = timeout if timeout is not None else settings.SOURCE_TIMEOUT_SECONDS

    async def commitments_for(
        self,
        member_id: str,
        window_start: datetime,
        window_end: datetime,
        exclude_agenda_item_ids: Collection[str] = (),
        timezone: str | None = None,
    ) -> MemberCommitments:
        """Return every commitment of *member_id* overlapping the window.

        *timezone* is the zone naive instants and all-day events are read in.
        Agenda items listed in *exclude_agenda_item_ids* are left out, so an
        item never conflicts with itself.
        """
        tz = get_zone(timezone)
        window_start = as_aware(window_start, tz)
        window_end = as_aware(window_end, tz)
        signups, callbacks, agenda_items, personal = await asyncio.gather(
            self._fetch(
                CommitmentType.AUDITION_SIGNUP,
                member_id,
                self._source.get_member_signups(member_id),
            ),
            self._fetch(
                CommitmentType.CALLBACK,
                member_id,
                self._source.get_member_accepted_callbacks(member_id),
            ),
            self._fetch(
                CommitmentType.REHEARSAL,
                member_id,
                self._source.get_member_agenda_items(member_id),
            ),
            self._fetch(
                CommitmentType.PERSONAL_EVENT,
                member_id,
                self._personal_rows(member_id, window_start, window_end),
            ),
        )

        result = MemberCommitments(member_id=member_id)
        ctx = _BuildContext(
            member_id=member_id,
            tz=tz,
            window=TimeInterval(start=window_start, end=window_end),
            exclude=set(exclude_agenda_item_ids),
            issues=result.issues,
        )
        builders = (
            (CommitmentType.AUDITION_SIGNUP, signups, self._from_signups),
            (CommitmentType.CALLBACK, callbacks, self._from_callbacks),
            (CommitmentType.REHEARSAL, agenda_items, self._from_agenda_items),
            (CommitmentType.PERSONAL_EVENT, personal, self._from_personal_events),
        )
        for source, rows, build in builders:
            if isinstance(rows, SourceUnavailableError):
                result.failed_sources.append(source)
                result.issues.append(
                    ConflictIssue(
                        kind=IssueKind.SOURCE_UNAVAILABLE,
                        message=str(rows),
                        member_id=member_id,
                        source=source,
                    )
                )
                continue
            for commitment in build(rows, ctx):
                if ctx.keep(commitment):
                    result.commitments.append(commitment)
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _fetch(
        self,
        source: CommitmentType,
        member_id: str,
        read: Awaitable[list[Row]],
    ) -> list[Row] | SourceUnavailableError:
        try:
            return list(await asyncio.wait_for(read, timeout=self._timeout))
        except TimeoutError:
            error = SourceUnavailableError(
                source, member_id, f"timed out after {self._timeout}s"
            )
        except Exception as exc:
            error = SourceUnavailableError(source, member_id, str(exc) or type(exc).__name__)
        logger.warning(
            "Commitment source failed: %s",
            error,
            extra={"member_id": member_id, "source": source.value},
        )
        return error

    async def _personal_rows(
        self, member_id: str, window_start: datetime, window_end: datetime
    ) -> list[Row]:
        one_off, recurring = await asyncio.gather(
            self._source.get_member_personal_events(member_id, window_start, window_end),
            self._source.get_member_recurring_events(member_id),
        )
        # Recurring definitions come only from the dedicated read.
        return [*(r for r in one_off if not r.get("recurrence_rule")), *recurring]

    # ------------------------------------------------------------------
    # Row -> Commitment
    # ------------------------------------------------------------------

    def _from_signups(self, rows: list[Row], ctx: _BuildContext) -> list[Commitment]:
        commitments = []
        for row in rows:
            record = ctx.validate(SignupRecord, row, CommitmentType.AUDITION_SIGNUP)
            if record is None:
                continue
            if record.slot_start is None or record.slot_end is None:
                ctx.malformed(CommitmentType.AUDITION_SIGNUP, record.signup_id, "missing slot times")
                continue
            commitments.append(
                Commitment(
                    type=CommitmentType.AUDITION_SIGNUP,
                    title=_titled(record.show_title, "Audition"),
                    start=as_aware(record.slot_start, ctx.tz),
                    end=as_aware(record.slot_end, ctx.tz),
                    source_id=record.signup_id,
                    production_id=record.production_id,
                )
            )
        return commitments

    def _from_callbacks(self, rows: list[Row], ctx: _BuildContext) -> list[Commitment]:
        commitments = []
        for row in rows:
            record = ctx.validate(CallbackRecord, row, CommitmentType.CALLBACK)
            if record is None:
                continue
            if record.slot_start is None:
                ctx.malformed(CommitmentType.CALLBACK, record.invitation_id, "missing slot start")
                continue
            start = as_aware(record.slot_start, ctx.tz)
            if record.slot_end is None:
                end = start + timedelta(minutes=settings.DEFAULT_CALLBACK_MINUTES)
            else:
                end = as_aware(record.slot_end, ctx.tz)
            commitments.append(
                Commitment(
                    type=CommitmentType.CALLBACK,
                    title=_titled(record.show_title, "Callback"),
                    start=start,
                    end=end,
                    source_id=record.invitation_id,
                    production_id=record.production_id,
                )
            )
        return commitments

    def _from_agenda_items(self, rows: list[Row], ctx: _BuildContext) -> list[Commitment]:
        commitments = []
        for row in rows:
            record = ctx.validate(AgendaItemRecord, row, CommitmentType.REHEARSAL)
            if record is None or record.item_id in ctx.exclude:
                continue
            if (
                record.event_date is None
                or record.start_time_of_day is None
                or record.end_time_of_day is None
            ):
                ctx.malformed(CommitmentType.REHEARSAL, record.item_id, "missing date or times")
                continue
            zone = get_zone(record.timezone) if record.timezone else ctx.tz
            span = local_span(
                record.event_date, record.start_time_of_day, record.end_time_of_day, zone
            )
            label = record.title or "Rehearsal"
            commitments.append(
                Commitment(
                    type=CommitmentType.REHEARSAL,
                    title=_titled(record.show_title, label),
                    start=span.start,
                    end=span.end,
                    source_id=record.item_id,
                    production_id=record.production_id,
                )
            )
        return commitments

    def _from_personal_events(self, rows: list[Row], ctx: _BuildContext) -> list[Commitment]:
        commitments = []
        for row in rows:
            record = ctx.validate(PersonalEventRecord, row, CommitmentType.PERSONAL_EVENT)
            if record is None:
                continue
            if record.start is None:
                ctx.malformed(CommitmentType.PERSONAL_EVENT, record.event_id, "missing start")
                continue
            zone = get_zone(record.timezone) if record.timezone else ctx.tz
            first = self._first_interval(record, zone)
            title = record.title or "Personal Event"

            if record.recurrence_rule is None:
                commitments.append(
                    Commitment(
                        type=CommitmentType.PERSONAL_EVENT,
                        title=title,
                        start=first.start,
                        end=first.end,
                        source_id=record.event_id,
                    )
                )
                continue

            if not first.is_valid:
                ctx.malformed(CommitmentType.PERSONAL_EVENT, record.event_id, "end is not after start")
                continue
            expansion = expand(
                record.recurrence_rule,
                first.start,
                first.end,
                ctx.window.start,
                ctx.window.end,
                tz=zone,
            )
            if expansion.truncated:
                ctx.report(
                    IssueKind.RECURRENCE_OVERFLOW,
                    CommitmentType.PERSONAL_EVENT,
                    record.event_id,
                    f"Recurrence of '{title}' is too complex to fully expand",
                )
            commitments.extend(
                Commitment(
                    type=CommitmentType.PERSONAL_EVENT,
                    title=title,
                    start=occurrence.start,
                    end=occurrence.end,
                    source_id=record.event_id,
                    recurring=True,
                )
                for occurrence in expansion.occurrences
            )
        return commitments

    @staticmethod
    def _first_interval(record: PersonalEventRecord, zone: ZoneInfo) -> TimeInterval:
        if record.all_day:
            # All-day events are civil dates; never shift them through UTC.
            first_day = record.start.date()
            last_day = None
            if record.end is not None:
                last_day = record.end.date()
                if record.end.time() == time(0) and record.end.date() > first_day:
                    last_day -= timedelta(days=1)
            return day_span(first_day, last_day, zone)

        start = as_aware(record.start, zone)
        if record.end is None:
            end = start + timedelta(minutes=settings.DEFAULT_EVENT_MINUTES)
        else:
            end = as_aware(record.end, zone)
        return TimeInterval(start=start, end=end)


class _BuildContext:
    """Per-call state shared by the row builders."""

    def __init__(
        self,
        member_id: str,
        tz: ZoneInfo,
        window: TimeInterval,
        exclude: set[str],
        issues: list[ConflictIssue],
    ) -> None:
        self.member_id = member_id
        self.tz = tz
        self.window = window
        self.exclude = exclude
        self.issues = issues

    def validate(
        self, model: type[RecordT], row: Row, source: CommitmentType
    ) -> RecordT | None:
        try:
            return model.model_validate(row)
        except (ValidationError, ValueError, TypeError) as exc:
            record_id = row.get(next(iter(model.model_fields))) if isinstance(row, dict) else None
            self.malformed(source, record_id, f"unreadable record: {exc}")
            return None

    def malformed(self, source: CommitmentType, record_id: str | None, reason: str) -> None:
        self.report(IssueKind.MALFORMED_INTERVAL, source, record_id, reason)

    def report(
        self,
        kind: IssueKind,
        source: CommitmentType,
        record_id: str | None,
        message: str,
    ) -> None:
        logger.warning(
            "Skipping %s record %s: %s",
            source.value,
            record_id,
            message,
            extra={"member_id": self.member_id, "source": source.value, "record_id": record_id},
        )
        self.issues.append(
            ConflictIssue(
                kind=kind,
                message=message,
                member_id=self.member_id,
                source=source,
                record_id=str(record_id) if record_id is not None else None,
            )
        )

    def keep(self, commitment: Commitment) -> bool:
        """Window filter; malformed intervals are reported and dropped."""
        if not commitment.interval.is_valid:
            self.malformed(commitment.type, commitment.source_id, "end is not after start")
            return False
        return overlaps(commitment.start, commitment.end, self.window.start, self.window.end)
