"""Read contract the conflict services need from the data layer.

Every method returns loosely-typed rows (plain dicts, as a hosted database
client hands them back). The aggregator validates them into narrow records
before anything else touches them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

Row = dict[str, Any]


class CommitmentDataSource(Protocol):
    async def get_member(self, member_id: str) -> Row | None: ...

    async def get_member_signups(self, member_id: str) -> list[Row]: ...

    async def get_member_accepted_callbacks(self, member_id: str) -> list[Row]: ...

    async def get_member_agenda_items(self, member_id: str) -> list[Row]:
        """Agenda items across every production the member belongs to that
        call the member, either by assignment or by full call."""
        ...

    async def get_member_personal_events(
        self, member_id: str, window_start: datetime, window_end: datetime
    ) -> list[Row]:
        """Non-recurring personal events near the window (filtered server-side)."""
        ...

    async def get_member_recurring_events(self, member_id: str) -> list[Row]:
        """Every recurring personal event definition, unfiltered."""
        ...

    async def get_production(self, production_id: str) -> Row | None: ...

    async def get_production_roster(self, production_id: str) -> list[Row]: ...

    async def get_scheduling_target(self, target_id: str) -> Row | None: ...

    async def get_production_targets(
        self, production_id: str, window_start: datetime, window_end: datetime
    ) -> list[Row]: ...
