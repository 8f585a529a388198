"""Who is called for a scheduling target.

The full-call policy lives here and nowhere else: a target (or a segment of
one) with no explicit assignments calls the whole roster, meaning every cast
member plus the production owner and production team. The same rule applies to
agenda items, rehearsal events and production events.
"""

from __future__ import annotations

from collections.abc import Iterable

from callboard.domain.models import (
    Call,
    Member,
    RosterEntry,
    SchedulingTarget,
    TargetKind,
)


def build_roster(entries: Iterable[RosterEntry]) -> list[Member]:
    """Collapse roster entries into one Member per identity, merging roles.

    Order follows the first appearance of each member.
    """
    members: dict[str, Member] = {}
    for entry in entries:
        member = members.get(entry.member_id)
        if member is None:
            members[entry.member_id] = Member(
                member_id=entry.member_id,
                display_name=entry.display_name,
                photo_url=entry.photo_url,
                roles=[entry.role],
            )
        elif entry.role not in member.roles:
            member.roles.append(entry.role)
    return list(members.values())


def _called(assigned: list[str], roster: list[Member]) -> list[Member]:
    if not assigned:
        return list(roster)
    by_id = {m.member_id: m for m in roster}
    seen: set[str] = set()
    called: list[Member] = []
    for member_id in assigned:
        if member_id in by_id and member_id not in seen:
            seen.add(member_id)
            called.append(by_id[member_id])
    return called


def call_sheet(target: SchedulingTarget, roster: list[Member]) -> list[Call]:
    """Split a target into its timed parts, each with the members it calls.

    A rehearsal event with agenda items yields one Call per item; every other
    target yields a single Call covering the target's own times.
    """
    if target.kind == TargetKind.REHEARSAL_EVENT and target.segments:
        return [
            Call(
                item_id=segment.item_id,
                start_time_of_day=segment.start_time_of_day,
                end_time_of_day=segment.end_time_of_day,
                members=_called(segment.assigned_member_ids, roster),
            )
            for segment in target.segments
        ]
    return [
        Call(
            item_id=None,
            start_time_of_day=target.start_time_of_day,
            end_time_of_day=target.end_time_of_day,
            members=_called(target.assigned_member_ids, roster),
        )
    ]


def eligible_members_for(target: SchedulingTarget, roster: list[Member]) -> list[Member]:
    """Every member called for any part of *target*, in roster order."""
    called_ids = {m.member_id for call in call_sheet(target, roster) for m in call.members}
    return [m for m in roster if m.member_id in called_ids]


def unknown_assignments(target: SchedulingTarget, roster: list[Member]) -> list[str]:
    """Assigned member ids that have no roster entry for the target's production."""
    known = {m.member_id for m in roster}
    assigned = list(target.assigned_member_ids)
    for segment in target.segments:
        assigned.extend(segment.assigned_member_ids)
    return sorted({member_id for member_id in assigned if member_id not in known})
