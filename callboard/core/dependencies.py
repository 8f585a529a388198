"""
FastAPI dependency injection: wire the data source and services.
"""

from __future__ import annotations

from callboard.domain.bus import EventBus
from callboard.domain.handlers import AlertFeed
from callboard.repos.memory import create_store
from callboard.services.resolver import ConflictResolver

# ── Singletons (in-memory store stands in for the hosted database) ──
_store = create_store()
_bus = EventBus()
_alert_feed = AlertFeed(_bus)

_resolver = ConflictResolver(data_source=_store, bus=_bus)


# ── FastAPI dependency functions ──
def get_resolver() -> ConflictResolver:
    return _resolver


def get_alert_feed() -> AlertFeed:
    return _alert_feed
