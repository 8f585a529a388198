"""Domain event handlers: wired up at application startup."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from callboard.core.logging import get_logger
from callboard.domain.bus import EventBus
from callboard.domain.events import ConflictsDetected, VerificationDegraded

logger = get_logger(__name__)


class Alert(BaseModel):
    """One line of the stage manager's conflict feed."""

    target_id: str
    production_id: str
    kind: str
    member_ids: list[str]
    message: str
    raised_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AlertFeed:
    """Turns conflict outcomes into a bounded, newest-last alert feed.

    Delivery (email, push) is someone else's job; this only records what
    should be delivered.
    """

    def __init__(self, bus: EventBus, max_alerts: int = 500) -> None:
        self.bus = bus
        self._alerts: deque[Alert] = deque(maxlen=max_alerts)
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(ConflictsDetected, self.on_conflicts_detected)
        self.bus.subscribe(VerificationDegraded, self.on_verification_degraded)

    def on_conflicts_detected(self, event: ConflictsDetected) -> None:
        noun = "member" if len(event.member_ids) == 1 else "members"
        self._record(
            Alert(
                target_id=event.target_id,
                production_id=event.production_id,
                kind="conflicts",
                member_ids=list(event.member_ids),
                message=(
                    f"{len(event.member_ids)} {noun} with {event.conflict_count} "
                    f"conflicting commitment(s) on {event.date.isoformat()}"
                ),
            )
        )

    def on_verification_degraded(self, event: VerificationDegraded) -> None:
        self._record(
            Alert(
                target_id=event.target_id,
                production_id=event.production_id,
                kind="degraded",
                member_ids=list(event.unverified_member_ids),
                message=(
                    f"Could not fully verify conflicts for "
                    f"{len(event.unverified_member_ids)} member(s)"
                ),
            )
        )

    def _record(self, alert: Alert) -> None:
        logger.info(alert.message, extra={"target_id": alert.target_id})
        self._alerts.append(alert)

    def list_for_production(self, production_id: str) -> list[Alert]:
        return [a for a in self._alerts if a.production_id == production_id]
