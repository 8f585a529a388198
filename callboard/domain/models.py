"""Domain models for rehearsal scheduling conflict detection."""

from __future__ import annotations

from datetime import date, datetime, time
from enum import StrEnum
from typing import Any, NamedTuple

from dateutil.parser import isoparse
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


class _LenientEnum(StrEnum):
    """StrEnum that also matches its values case-insensitively."""

    @classmethod
    def _missing_(cls, value: object) -> Any:
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.lower():
                    return member
        return None


class CommitmentType(StrEnum):
    AUDITION_SIGNUP = "audition_signup"
    CALLBACK = "callback"
    REHEARSAL = "rehearsal"
    PERSONAL_EVENT = "personal_event"


class Frequency(_LenientEnum):
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    YEARLY = "Yearly"
    CUSTOM = "Custom"


class CustomFrequency(_LenientEnum):
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"
    YEARLY = "Yearly"


class Weekday(_LenientEnum):
    MO = "MO"
    TU = "TU"
    WE = "WE"
    TH = "TH"
    FR = "FR"
    SA = "SA"
    SU = "SU"


class EndKind(StrEnum):
    NEVER = "never"
    ON_DATE = "on_date"
    AFTER_COUNT = "after_count"


class RosterRole(StrEnum):
    CAST = "cast"
    OWNER = "owner"
    TEAM = "team"


class TargetKind(StrEnum):
    AGENDA_ITEM = "agenda_item"
    PRODUCTION_EVENT = "production_event"
    REHEARSAL_EVENT = "rehearsal_event"


class IssueKind(StrEnum):
    SOURCE_UNAVAILABLE = "source_unavailable"
    MALFORMED_INTERVAL = "malformed_interval"
    RECURRENCE_OVERFLOW = "recurrence_overflow"
    UNKNOWN_MEMBER = "unknown_member"


class VerificationStatus(StrEnum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Intervals and commitments
# ---------------------------------------------------------------------------


class TimeInterval(BaseModel):
    """A half-open span ``[start, end)``.

    Inverted or empty spans are allowed and never overlap anything.
    """

    start: datetime
    end: datetime

    @property
    def is_valid(self) -> bool:
        return self.start < self.end


class Commitment(BaseModel):
    type: CommitmentType
    title: str
    start: datetime
    end: datetime
    source_id: str
    production_id: str | None = None
    recurring: bool = False

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(start=self.start, end=self.end)

    @property
    def identity_key(self) -> tuple[str, str, datetime]:
        return (self.type.value, self.title, self.start)


# ---------------------------------------------------------------------------
# Recurrence
# ---------------------------------------------------------------------------

_CUSTOM_ALIASES = {"weeks": "Weekly", "months": "Monthly", "years": "Yearly"}
_END_TYPE_ALIASES = {
    "never": EndKind.NEVER,
    "on": EndKind.ON_DATE,
    "on_date": EndKind.ON_DATE,
    "until": EndKind.ON_DATE,
    "after": EndKind.AFTER_COUNT,
    "after_count": EndKind.AFTER_COUNT,
    "count": EndKind.AFTER_COUNT,
}


class EndCondition(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: EndKind = EndKind.NEVER
    until: date | None = None
    count: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _matches_kind(self) -> EndCondition:
        if self.kind == EndKind.ON_DATE and self.until is None:
            raise ValueError("on_date end condition requires 'until'")
        if self.kind == EndKind.AFTER_COUNT and self.count is None:
            raise ValueError("after_count end condition requires 'count'")
        return self

    @classmethod
    def never(cls) -> EndCondition:
        return cls()

    @classmethod
    def on_date(cls, until: date) -> EndCondition:
        return cls(kind=EndKind.ON_DATE, until=until)

    @classmethod
    def after_count(cls, count: int) -> EndCondition:
        return cls(kind=EndKind.AFTER_COUNT, count=count)


class RecurrenceRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    frequency: Frequency
    interval: int = Field(default=1, ge=1)
    by_day: tuple[Weekday, ...] = ()
    by_month_day: tuple[int, ...] = ()
    by_month: tuple[int, ...] = ()
    custom_frequency: CustomFrequency | None = None
    end: EndCondition = Field(default_factory=EndCondition.never)

    @field_validator("by_month_day")
    @classmethod
    def _valid_month_days(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        if any(d < 1 or d > 31 for d in v):
            raise ValueError("by_month_day values must be within 1..31")
        return v

    @field_validator("by_month")
    @classmethod
    def _valid_months(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        if any(m < 1 or m > 12 for m in v):
            raise ValueError("by_month values must be within 1..12")
        return v

    @property
    def effective_frequency(self) -> Frequency:
        """The stepping frequency, with ``Custom`` resolved to its secondary type."""
        if self.frequency != Frequency.CUSTOM:
            return self.frequency
        if self.custom_frequency is None:
            return Frequency.WEEKLY
        return Frequency(self.custom_frequency.value)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> RecurrenceRule:
        """Build a rule from the JSON shape stored alongside a personal event.

        Accepts both the editor's shape (``endType``/``endDate``/``occurrences``,
        ``customFrequencyType``, ``byDay``) and the older calendar shape
        (``until``/``count``, ``customFrequency`` in weeks/months/years,
        ``daysOfWeek`` as 0=Monday integers).
        """
        if "by_day" in record or "end" in record:
            return cls.model_validate(record)

        custom = record.get("customFrequencyType") or record.get("customFrequency")
        if isinstance(custom, str):
            custom = _CUSTOM_ALIASES.get(custom.lower(), custom)

        raw_days = record.get("byDay") or record.get("daysOfWeek") or []
        by_day = tuple(
            list(Weekday)[d % 7] if isinstance(d, int) else Weekday(d)
            for d in raw_days
        )

        return cls(
            frequency=Frequency(record.get("frequency")),
            interval=record.get("interval") or 1,
            by_day=by_day,
            by_month_day=tuple(record.get("byMonthDay") or ()),
            by_month=tuple(record.get("byMonth") or ()),
            custom_frequency=CustomFrequency(custom) if custom else None,
            end=_end_from_record(record),
        )

    def to_rrule_string(self) -> str:
        """Render as an RFC 5545 RRULE value (without the ``RRULE:`` prefix)."""
        parts = [f"FREQ={self.effective_frequency.value.upper()}"]
        if self.interval > 1:
            parts.append(f"INTERVAL={self.interval}")
        if self.by_day:
            parts.append("BYDAY=" + ",".join(d.value for d in self.by_day))
        if self.by_month_day:
            parts.append("BYMONTHDAY=" + ",".join(str(d) for d in self.by_month_day))
        if self.by_month:
            parts.append("BYMONTH=" + ",".join(str(m) for m in self.by_month))
        if self.end.kind == EndKind.ON_DATE:
            parts.append(f"UNTIL={self.end.until:%Y%m%d}T235959")
        elif self.end.kind == EndKind.AFTER_COUNT:
            parts.append(f"COUNT={self.end.count}")
        return ";".join(parts)


def _parse_date(raw: Any) -> date | None:
    if raw in (None, ""):
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return isoparse(str(raw)).date()


def _end_from_record(record: dict[str, Any]) -> EndCondition:
    end_type = record.get("endType")
    until = _parse_date(record.get("until") or record.get("endDate"))
    count = record.get("count") or record.get("occurrences")

    if end_type:
        kind = _END_TYPE_ALIASES.get(str(end_type).lower())
        if kind is None:
            raise ValueError(f"Unknown recurrence end type: {end_type!r}")
        if kind == EndKind.ON_DATE:
            return EndCondition(kind=kind, until=until)
        if kind == EndKind.AFTER_COUNT:
            return EndCondition(kind=kind, count=count)
        return EndCondition.never()

    if until is not None:
        return EndCondition.on_date(until)
    if count:
        return EndCondition.after_count(count)
    return EndCondition.never()


class RecurrenceExpansion(BaseModel):
    occurrences: list[TimeInterval] = Field(default_factory=list)
    truncated: bool = False


# ---------------------------------------------------------------------------
# Boundary records: the narrow shapes accepted from the data layer
# ---------------------------------------------------------------------------


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SignupRecord(_Record):
    signup_id: str
    slot_start: datetime | None = None
    slot_end: datetime | None = None
    show_title: str | None = None
    production_id: str | None = None


class CallbackRecord(_Record):
    invitation_id: str
    slot_start: datetime | None = None
    slot_end: datetime | None = None
    show_title: str | None = None
    production_id: str | None = None


class AgendaItemRecord(_Record):
    item_id: str
    production_id: str | None = None
    event_date: date | None = Field(default=None, alias="date")
    start_time_of_day: time | None = None
    end_time_of_day: time | None = None
    title: str | None = None
    show_title: str | None = None
    timezone: str | None = None


class PersonalEventRecord(_Record):
    event_id: str
    title: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    all_day: bool = False
    recurrence_rule: RecurrenceRule | None = None
    timezone: str | None = None

    @field_validator("recurrence_rule", mode="before")
    @classmethod
    def _coerce_rule(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return RecurrenceRule.from_record(v)
        return v


class RosterEntry(_Record):
    member_id: str
    display_name: str = ""
    photo_url: str | None = None
    role: RosterRole = RosterRole.CAST

    @model_validator(mode="before")
    @classmethod
    def _name_from_parts(cls, data: Any) -> Any:
        if isinstance(data, dict) and not (
            data.get("display_name") or data.get("displayName")
        ):
            full = f"{data.get('first_name') or ''} {data.get('last_name') or ''}".strip()
            data = {**data, "display_name": full or "Unknown User"}
        return data


# ---------------------------------------------------------------------------
# Members and scheduling targets
# ---------------------------------------------------------------------------


class Member(BaseModel):
    member_id: str
    display_name: str
    photo_url: str | None = None
    roles: list[RosterRole] = Field(default_factory=list)


class TargetSegment(_Record):
    """One agenda item inside a rehearsal-event target."""

    item_id: str
    title: str = ""
    start_time_of_day: time | None = None
    end_time_of_day: time | None = None
    assigned_member_ids: list[str] = Field(default_factory=list)


class SchedulingTarget(_Record):
    target_id: str
    kind: TargetKind
    production_id: str
    title: str = ""
    date: date
    start_time_of_day: time | None = None
    end_time_of_day: time | None = None
    timezone: str | None = None
    assigned_member_ids: list[str] = Field(default_factory=list)
    segments: list[TargetSegment] = Field(default_factory=list)
    parent_event_id: str | None = None

    @property
    def own_agenda_item_ids(self) -> set[str]:
        """Agenda items that belong to this target and so cannot conflict with it."""
        if self.kind == TargetKind.AGENDA_ITEM:
            return {self.target_id}
        return {s.item_id for s in self.segments}


class Call(NamedTuple):
    """Who is called for one timed part of a target."""

    item_id: str | None
    start_time_of_day: time | None
    end_time_of_day: time | None
    members: list[Member]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ConflictIssue(BaseModel):
    kind: IssueKind
    message: str
    member_id: str | None = None
    source: CommitmentType | None = None
    record_id: str | None = None


class MemberCommitments(BaseModel):
    member_id: str
    commitments: list[Commitment] = Field(default_factory=list)
    failed_sources: list[CommitmentType] = Field(default_factory=list)
    issues: list[ConflictIssue] = Field(default_factory=list)

    @computed_field
    @property
    def status(self) -> VerificationStatus:
        if not self.failed_sources:
            return VerificationStatus.COMPLETE
        if len(set(self.failed_sources)) == len(CommitmentType):
            return VerificationStatus.UNKNOWN
        return VerificationStatus.PARTIAL


class MemberConflict(BaseModel):
    member: Member
    conflicts: list[Commitment]
    partial: bool = False


class UnverifiedMember(BaseModel):
    member: Member
    status: VerificationStatus
    failed_sources: list[CommitmentType] = Field(default_factory=list)


class ConflictReport(BaseModel):
    target_id: str
    target_kind: TargetKind
    title: str = ""
    date: date
    entries: list[MemberConflict] = Field(default_factory=list)
    unverified: list[UnverifiedMember] = Field(default_factory=list)
    issues: list[ConflictIssue] = Field(default_factory=list)

    @computed_field
    @property
    def has_conflicts(self) -> bool:
        return bool(self.entries)

    @computed_field
    @property
    def is_degraded(self) -> bool:
        """True when some members could not be fully checked."""
        return bool(self.unverified)


class BatchConflictReport(BaseModel):
    window_start: datetime
    window_end: datetime
    reports: dict[str, ConflictReport] = Field(default_factory=dict)

    def conflicts_by_target(self) -> dict[str, list[MemberConflict]]:
        return {tid: report.entries for tid, report in self.reports.items()}

    @computed_field
    @property
    def is_degraded(self) -> bool:
        return any(r.is_degraded for r in self.reports.values())


class DailyConflict(BaseModel):
    member: Member
    commitment: Commitment


class DailyConflictSummary(BaseModel):
    date: date
    conflicts: list[DailyConflict] = Field(default_factory=list)

    @computed_field
    @property
    def total_conflicts(self) -> int:
        return len(self.conflicts)


class DailyConflictsReport(BaseModel):
    production_id: str
    start_date: date
    end_date: date
    days: list[DailyConflictSummary] = Field(default_factory=list)
    unverified: list[UnverifiedMember] = Field(default_factory=list)
    issues: list[ConflictIssue] = Field(default_factory=list)

    @computed_field
    @property
    def is_degraded(self) -> bool:
        return bool(self.unverified)
