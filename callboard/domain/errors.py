"""Errors raised by the conflict-detection services."""

from __future__ import annotations

from callboard.domain.models import CommitmentType


class CallboardError(Exception):
    """Base class for every error this package raises."""


class UnknownTargetError(CallboardError):
    def __init__(self, target_id: str) -> None:
        super().__init__(f"No scheduling target with id '{target_id}'")
        self.target_id = target_id


class UnknownMemberError(CallboardError):
    def __init__(self, member_id: str) -> None:
        super().__init__(f"No member with id '{member_id}'")
        self.member_id = member_id


class RosterUnavailableError(CallboardError):
    """The production roster could not be read, so nobody can be checked."""

    def __init__(self, production_id: str, cause: BaseException | None = None) -> None:
        super().__init__(f"Roster for production '{production_id}' is unavailable")
        self.production_id = production_id
        self.__cause__ = cause


class SourceUnavailableError(CallboardError):
    """One commitment read failed for one member.

    Never escapes the aggregator; it is turned into a report issue.
    """

    def __init__(self, source: CommitmentType, member_id: str, reason: str) -> None:
        super().__init__(f"{source.value} unavailable for member '{member_id}': {reason}")
        self.source = source
        self.member_id = member_id
        self.reason = reason


class UnknownProductionError(CallboardError):
    def __init__(self, production_id: str) -> None:
        super().__init__(f"No production with id '{production_id}'")
        self.production_id = production_id
