"""In-memory data source for productions, rosters and member commitments."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from dateutil.parser import isoparse

from callboard.core.config import settings
from callboard.repos.base import Row


class InMemoryStore:
    """Dict-backed stand-in for the hosted database.

    Writes are synchronous helpers; reads follow the async
    ``CommitmentDataSource`` contract and hand back plain dict rows.
    """

    def __init__(self) -> None:
        self._productions: dict[str, Row] = {}
        self._members: dict[str, Row] = {}
        self._roster: dict[str, list[Row]] = defaultdict(list)
        self._signups: dict[str, list[Row]] = defaultdict(list)
        self._callbacks: dict[str, list[Row]] = defaultdict(list)
        self._rehearsals: dict[str, Row] = {}
        self._agenda_items: dict[str, Row] = {}
        self._production_events: dict[str, Row] = {}
        self._personal_events: dict[str, list[Row]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_production(
        self, production_id: str, title: str, timezone: str | None = None
    ) -> None:
        self._productions[production_id] = {
            "production_id": production_id,
            "title": title,
            "timezone": timezone,
        }

    def add_member(
        self,
        member_id: str,
        first_name: str,
        last_name: str = "",
        photo_url: str | None = None,
    ) -> None:
        self._members[member_id] = {
            "member_id": member_id,
            "first_name": first_name,
            "last_name": last_name,
            "photo_url": photo_url,
        }

    def add_to_roster(self, production_id: str, member_id: str, role: str = "cast") -> None:
        self._roster[production_id].append({"member_id": member_id, "role": role})

    def add_signup(
        self,
        member_id: str,
        signup_id: str,
        slot_start: datetime | str,
        slot_end: datetime | str | None,
        production_id: str | None = None,
    ) -> None:
        self._signups[member_id].append(
            {
                "signup_id": signup_id,
                "slot_start": slot_start,
                "slot_end": slot_end,
                "production_id": production_id,
                "show_title": self._show_title(production_id),
            }
        )

    def add_callback(
        self,
        member_id: str,
        invitation_id: str,
        slot_start: datetime | str,
        slot_end: datetime | str | None = None,
        production_id: str | None = None,
        status: str = "accepted",
    ) -> None:
        self._callbacks[member_id].append(
            {
                "invitation_id": invitation_id,
                "slot_start": slot_start,
                "slot_end": slot_end,
                "production_id": production_id,
                "show_title": self._show_title(production_id),
                "status": status,
            }
        )

    def add_rehearsal_event(
        self, event_id: str, production_id: str, day: date, title: str = "Rehearsal"
    ) -> None:
        self._rehearsals[event_id] = {
            "event_id": event_id,
            "production_id": production_id,
            "date": day,
            "title": title,
        }

    def add_agenda_item(
        self,
        item_id: str,
        rehearsal_event_id: str,
        start: time | str | None,
        end: time | str | None,
        title: str,
        assigned_member_ids: list[str] | tuple[str, ...] = (),
    ) -> None:
        self._agenda_items[item_id] = {
            "item_id": item_id,
            "rehearsal_event_id": rehearsal_event_id,
            "start_time_of_day": start,
            "end_time_of_day": end,
            "title": title,
            "assigned_member_ids": list(assigned_member_ids),
        }

    def add_production_event(
        self,
        event_id: str,
        production_id: str,
        day: date,
        start: time | str | None,
        end: time | str | None,
        type_name: str = "Production Event",
        assigned_member_ids: list[str] | tuple[str, ...] = (),
    ) -> None:
        self._production_events[event_id] = {
            "event_id": event_id,
            "production_id": production_id,
            "date": day,
            "start_time_of_day": start,
            "end_time_of_day": end,
            "type_name": type_name,
            "assigned_member_ids": list(assigned_member_ids),
        }

    def add_personal_event(
        self,
        member_id: str,
        event_id: str,
        title: str,
        start: datetime | str,
        end: datetime | str | None = None,
        all_day: bool = False,
        recurrence_rule: dict[str, Any] | None = None,
    ) -> None:
        self._personal_events[member_id].append(
            {
                "event_id": event_id,
                "title": title,
                "start": start,
                "end": end,
                "all_day": all_day,
                "recurrence_rule": recurrence_rule,
            }
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_member(self, member_id: str) -> Row | None:
        member = self._members.get(member_id)
        return dict(member) if member else None

    async def get_member_signups(self, member_id: str) -> list[Row]:
        return [dict(s) for s in self._signups.get(member_id, [])]

    async def get_member_accepted_callbacks(self, member_id: str) -> list[Row]:
        return [
            dict(c)
            for c in self._callbacks.get(member_id, [])
            if c["status"] == "accepted"
        ]

    async def get_member_agenda_items(self, member_id: str) -> list[Row]:
        rows: list[Row] = []
        for item in self._agenda_items.values():
            rehearsal = self._rehearsals.get(item["rehearsal_event_id"])
            if rehearsal is None:
                continue
            assigned = item["assigned_member_ids"]
            called = (
                member_id in assigned
                if assigned
                else self._on_roster(rehearsal["production_id"], member_id)
            )
            if called:
                rows.append(self._agenda_row(item, rehearsal))
        return rows

    async def get_member_personal_events(
        self, member_id: str, window_start: datetime, window_end: datetime
    ) -> list[Row]:
        # Coarse filter with a day of slack either side; callers refine.
        lo = _coarse(window_start) - timedelta(days=1)
        hi = _coarse(window_end) + timedelta(days=1)
        rows: list[Row] = []
        for event in self._personal_events.get(member_id, []):
            if event["recurrence_rule"] or event["start"] is None:
                continue
            start = _coarse(event["start"])
            end = _coarse(event["end"]) if event["end"] else start + timedelta(days=1)
            if start < hi and end > lo:
                rows.append(dict(event))
        return rows

    async def get_member_recurring_events(self, member_id: str) -> list[Row]:
        return [
            dict(e)
            for e in self._personal_events.get(member_id, [])
            if e["recurrence_rule"]
        ]

    async def get_production(self, production_id: str) -> Row | None:
        production = self._productions.get(production_id)
        return dict(production) if production else None

    async def get_production_roster(self, production_id: str) -> list[Row]:
        rows: list[Row] = []
        for entry in self._roster.get(production_id, []):
            member = self._members.get(entry["member_id"], {})
            rows.append({**member, **entry})
        return rows

    async def get_scheduling_target(self, target_id: str) -> Row | None:
        if target_id in self._agenda_items:
            item = self._agenda_items[target_id]
            rehearsal = self._rehearsals.get(item["rehearsal_event_id"])
            return self._agenda_target(item, rehearsal) if rehearsal else None
        if target_id in self._production_events:
            return self._production_event_target(self._production_events[target_id])
        if target_id in self._rehearsals:
            return self._rehearsal_target(self._rehearsals[target_id])
        return None

    async def get_production_targets(
        self, production_id: str, window_start: datetime, window_end: datetime
    ) -> list[Row]:
        tz = ZoneInfo(self._timezone(production_id))
        first = window_start.astimezone(tz).date()
        last = (window_end - timedelta(microseconds=1)).astimezone(tz).date()

        targets: list[Row] = []
        for rehearsal in self._rehearsals.values():
            if rehearsal["production_id"] == production_id and first <= rehearsal["date"] <= last:
                targets.append(self._rehearsal_target(rehearsal))
        for event in self._production_events.values():
            if event["production_id"] == production_id and first <= event["date"] <= last:
                targets.append(self._production_event_target(event))
        return sorted(targets, key=lambda t: (t["date"], str(t["start_time_of_day"])))

    # ------------------------------------------------------------------
    # Row shaping
    # ------------------------------------------------------------------

    def _show_title(self, production_id: str | None) -> str | None:
        production = self._productions.get(production_id) if production_id else None
        return production["title"] if production else None

    def _timezone(self, production_id: str) -> str:
        production = self._productions.get(production_id) or {}
        return production.get("timezone") or settings.DEFAULT_TIMEZONE

    def _on_roster(self, production_id: str, member_id: str) -> bool:
        return any(e["member_id"] == member_id for e in self._roster.get(production_id, []))

    def _items_for(self, rehearsal_event_id: str) -> list[Row]:
        items = [
            i for i in self._agenda_items.values()
            if i["rehearsal_event_id"] == rehearsal_event_id
        ]
        return sorted(items, key=lambda i: str(i["start_time_of_day"]))

    def _agenda_row(self, item: Row, rehearsal: Row) -> Row:
        production_id = rehearsal["production_id"]
        return {
            "item_id": item["item_id"],
            "production_id": production_id,
            "date": rehearsal["date"],
            "start_time_of_day": item["start_time_of_day"],
            "end_time_of_day": item["end_time_of_day"],
            "title": item["title"],
            "show_title": self._show_title(production_id),
            "timezone": self._timezone(production_id),
        }

    def _agenda_target(self, item: Row, rehearsal: Row) -> Row:
        production_id = rehearsal["production_id"]
        return {
            "target_id": item["item_id"],
            "kind": "agenda_item",
            "production_id": production_id,
            "title": item["title"],
            "date": rehearsal["date"],
            "start_time_of_day": item["start_time_of_day"],
            "end_time_of_day": item["end_time_of_day"],
            "timezone": self._timezone(production_id),
            "assigned_member_ids": list(item["assigned_member_ids"]),
            "parent_event_id": rehearsal["event_id"],
        }

    def _production_event_target(self, event: Row) -> Row:
        production_id = event["production_id"]
        return {
            "target_id": event["event_id"],
            "kind": "production_event",
            "production_id": production_id,
            "title": event["type_name"],
            "date": event["date"],
            "start_time_of_day": event["start_time_of_day"],
            "end_time_of_day": event["end_time_of_day"],
            "timezone": self._timezone(production_id),
            "assigned_member_ids": list(event["assigned_member_ids"]),
        }

    def _rehearsal_target(self, rehearsal: Row) -> Row:
        production_id = rehearsal["production_id"]
        items = self._items_for(rehearsal["event_id"])
        starts = [str(i["start_time_of_day"]) for i in items if i["start_time_of_day"]]
        ends = [str(i["end_time_of_day"]) for i in items if i["end_time_of_day"]]
        return {
            "target_id": rehearsal["event_id"],
            "kind": "rehearsal_event",
            "production_id": production_id,
            "title": rehearsal["title"],
            "date": rehearsal["date"],
            "start_time_of_day": min(starts) if starts else None,
            "end_time_of_day": max(ends) if ends else None,
            "timezone": self._timezone(production_id),
            "segments": [
                {
                    "item_id": i["item_id"],
                    "title": i["title"],
                    "start_time_of_day": i["start_time_of_day"],
                    "end_time_of_day": i["end_time_of_day"],
                    "assigned_member_ids": list(i["assigned_member_ids"]),
                }
                for i in items
            ],
        }


def _coarse(value: datetime | str) -> datetime:
    """Naive UTC-ish instant for rough window filtering."""
    dt = isoparse(value) if isinstance(value, str) else value
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


# ---------------------------------------------------------------------------
# Seed data – a small production useful for trying the API
# ---------------------------------------------------------------------------


def _seed_demo_production(store: InMemoryStore) -> None:
    today = date.today()
    store.add_production("demo-show", "Into the Woods", "America/Chicago")

    for member_id, first, last, role in (
        ("demo-baker", "Sam", "Baker", "cast"),
        ("demo-witch", "Rae", "Okafor", "cast"),
        ("demo-director", "Jo", "Lindqvist", "owner"),
        ("demo-sm", "Ari", "Mendes", "team"),
    ):
        store.add_member(member_id, first, last)
        store.add_to_roster("demo-show", member_id, role)

    store.add_rehearsal_event("demo-rehearsal", "demo-show", today + timedelta(days=1))
    store.add_agenda_item("demo-warmup", "demo-rehearsal", "18:00", "18:30", "Warm-up")
    store.add_agenda_item(
        "demo-act2", "demo-rehearsal", "18:30", "20:00", "Act 2 Blocking",
        assigned_member_ids=["demo-baker", "demo-witch"],
    )
    store.add_personal_event(
        "demo-witch",
        "demo-dentist",
        "Dentist",
        f"{today + timedelta(days=1)}T19:00:00",
        f"{today + timedelta(days=1)}T19:45:00",
    )
    store.add_personal_event(
        "demo-baker",
        "demo-band",
        "Band Practice",
        f"{today}T17:30:00",
        f"{today}T19:00:00",
        recurrence_rule={"frequency": "Daily", "interval": 1, "endType": "never"},
    )


def create_store(seed: bool | None = None) -> InMemoryStore:
    """Return an InMemoryStore, optionally pre-loaded with a demo production."""
    store = InMemoryStore()
    if settings.SEED_DEMO_DATA if seed is None else seed:
        _seed_demo_production(store)
    return store
