"""FastAPI application: entry point for the rehearsal conflict service."""

from __future__ import annotations

from datetime import date, datetime

from fastapi import Depends, FastAPI, HTTPException, Query

from callboard.core.config import settings
from callboard.core.dependencies import get_alert_feed, get_resolver
from callboard.domain.errors import (
    RosterUnavailableError,
    UnknownMemberError,
    UnknownProductionError,
    UnknownTargetError,
)
from callboard.domain.handlers import Alert, AlertFeed
from callboard.domain.models import (
    BatchConflictReport,
    ConflictReport,
    DailyConflictsReport,
    MemberCommitments,
)
from callboard.services.resolver import ConflictResolver

app = FastAPI(title="Callboard Conflict Service")

_NOT_FOUND = (UnknownTargetError, UnknownMemberError, UnknownProductionError)


# ── Routes ────────────────────────────────────────────────────────────


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "service": settings.SERVICE_NAME}


@app.get("/targets/{target_id}/conflicts", response_model=ConflictReport)
async def target_conflicts(
    target_id: str,
    resolver: ConflictResolver = Depends(get_resolver),
) -> ConflictReport:
    """Conflicts for one agenda item, rehearsal event or production event."""
    try:
        return await resolver.resolve_target(target_id)
    except _NOT_FOUND as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RosterUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/productions/{production_id}/conflicts", response_model=BatchConflictReport)
async def production_conflicts(
    production_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    resolver: ConflictResolver = Depends(get_resolver),
) -> BatchConflictReport:
    """Conflicts for every rehearsal and production event in a window."""
    try:
        return await resolver.resolve_production(production_id, start, end)
    except _NOT_FOUND as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RosterUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get(
    "/productions/{production_id}/daily-conflicts",
    response_model=DailyConflictsReport,
)
async def daily_conflicts(
    production_id: str,
    start_date: date = Query(...),
    end_date: date = Query(...),
    resolver: ConflictResolver = Depends(get_resolver),
) -> DailyConflictsReport:
    """Every roster member's outside commitments, day by day."""
    try:
        return await resolver.daily_summary(production_id, start_date, end_date)
    except _NOT_FOUND as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RosterUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/productions/{production_id}/alerts", response_model=list[Alert])
def production_alerts(
    production_id: str,
    feed: AlertFeed = Depends(get_alert_feed),
) -> list[Alert]:
    """Conflict alerts raised by earlier checks, oldest first."""
    return feed.list_for_production(production_id)


@app.get("/members/{member_id}/commitments", response_model=MemberCommitments)
async def member_commitments(
    member_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    resolver: ConflictResolver = Depends(get_resolver),
) -> MemberCommitments:
    """A member's commitments in a window, with any sources that failed."""
    try:
        return await resolver.member_commitments(member_id, start, end)
    except UnknownMemberError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
