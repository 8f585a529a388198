"""Shared fixtures: an in-memory production whose reads can fail or stall."""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import date

import pytest

from callboard.repos.memory import InMemoryStore


class FlakyStore(InMemoryStore):
    """InMemoryStore that counts member reads and can make them fail or hang."""

    def __init__(self) -> None:
        super().__init__()
        self.failing: dict[tuple[str, str | None], Exception] = {}
        self.stalled: set[tuple[str, str | None]] = set()
        self.calls: Counter[str] = Counter()

    def fail(self, read: str, member_id: str | None = None, error: Exception | None = None) -> None:
        self.failing[(read, member_id)] = error or ConnectionError("data store unreachable")

    def stall(self, read: str, member_id: str | None = None) -> None:
        self.stalled.add((read, member_id))

    async def _guard(self, read: str, member_id: str | None = None) -> None:
        self.calls[read] += 1
        for key in ((read, member_id), (read, None)):
            if key in self.stalled:
                await asyncio.sleep(3600)
            if key in self.failing:
                raise self.failing[key]

    async def get_member_signups(self, member_id):
        await self._guard("get_member_signups", member_id)
        return await super().get_member_signups(member_id)

    async def get_member_accepted_callbacks(self, member_id):
        await self._guard("get_member_accepted_callbacks", member_id)
        return await super().get_member_accepted_callbacks(member_id)

    async def get_member_agenda_items(self, member_id):
        await self._guard("get_member_agenda_items", member_id)
        return await super().get_member_agenda_items(member_id)

    async def get_member_personal_events(self, member_id, window_start, window_end):
        await self._guard("get_member_personal_events", member_id)
        return await super().get_member_personal_events(member_id, window_start, window_end)

    async def get_member_recurring_events(self, member_id):
        await self._guard("get_member_recurring_events", member_id)
        return await super().get_member_recurring_events(member_id)

    async def get_production_roster(self, production_id):
        await self._guard("get_production_roster")
        return await super().get_production_roster(production_id)


@pytest.fixture()
def store() -> FlakyStore:
    """Into the Woods, rehearsing on 2024-03-05 in Chicago.

    - ``act2`` 13:30-14:30, full call.
    - ``notes`` 14:30-15:00, director only.
    - Ana has a dentist appointment 14:00-15:00 that day.
    - Ben has band practice every Wednesday 18:00-20:00 since 2024-01-03.
    """
    s = FlakyStore()
    s.add_production("woods", "Into the Woods", "America/Chicago")
    for member_id, first, last, role in (
        ("ana", "Ana", "Reyes", "cast"),
        ("ben", "Ben", "Baker", "cast"),
        ("dir", "Dana", "Lindqvist", "owner"),
        ("sm", "Sol", "Mendes", "team"),
    ):
        s.add_member(member_id, first, last)
        s.add_to_roster("woods", member_id, role)

    s.add_rehearsal_event("reh-0305", "woods", date(2024, 3, 5))
    s.add_agenda_item("act2", "reh-0305", "13:30", "14:30", "Act 2 Blocking")
    s.add_agenda_item("notes", "reh-0305", "14:30", "15:00", "Director Notes", ["dir"])

    s.add_personal_event("ana", "dentist", "Dentist", "2024-03-05T14:00:00", "2024-03-05T15:00:00")
    s.add_personal_event(
        "ben",
        "band",
        "Band Practice",
        "2024-01-03T18:00:00",
        "2024-01-03T20:00:00",
        recurrence_rule={"frequency": "Weekly", "byDay": ["WE"], "endType": "never"},
    )
    return s
