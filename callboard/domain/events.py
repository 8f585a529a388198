"""Domain events emitted after a conflict check."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel


class ConflictsDetected(BaseModel):
    """Fired when a scheduling target has at least one conflicted member."""

    target_id: str
    production_id: str
    date: date
    member_ids: list[str]
    conflict_count: int


class VerificationDegraded(BaseModel):
    """Fired when some members of a target could not be fully checked."""

    target_id: str
    production_id: str
    unverified_member_ids: list[str]
