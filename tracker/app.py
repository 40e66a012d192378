from __future__ import annotations

import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Generator

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from tracker import services
from tracker.db import current_db_name, init_db, session_generator, session_scope
from tracker.importer import import_xlsx
from tracker.models import Initiative
from tracker.schemas import (
    CaptureResult,
    ImportResult,
    InitiativeCreate,
    InitiativeDurations,
    InitiativeOut,
    InitiativeUpdate,
    MilestoneDurationOut,
    MilestonePeriod,
    Snapshot,
    SnapshotSummary,
)
from tracker.snapshots import DEFAULT_INTERVAL, CaptureScheduler
from tracker.store import InfrastructureError, SqlSnapshotStore
from tracker.utils import env_flag, env_int, parse_day

log = logging.getLogger(__name__)


def run_capture() -> dict:
    """Capture today's snapshot in a fresh session (scheduler entry point)."""
    with session_scope() as session:
        return services.capture(session)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    with session_scope() as session:
        services.initialize(session)
    scheduler = None
    if not env_flag("TRACKER_DISABLE_SCHEDULER"):
        scheduler = CaptureScheduler(
            run_capture, interval=env_int("TRACKER_SNAPSHOT_INTERVAL", DEFAULT_INTERVAL),
        )
        scheduler.start()
    app.state.scheduler = scheduler
    yield
    if scheduler is not None:
        await scheduler.stop()


app = FastAPI(
    title="Milestone Tracker",
    version="0.1.0",
    description=(
        "Project and change-request tracker. Captures a daily snapshot of every "
        "initiative and reconstructs how many days each spent in each milestone."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Initiatives", "description": "Live initiative records (the system of record)."},
        {"name": "Snapshots", "description": "Daily snapshot capture and history."},
        {"name": "Durations", "description": "Milestone durations reconstructed from snapshots."},
        {"name": "Import", "description": "Bulk sync initiatives from an XLSX workbook."},
    ],
)


@app.exception_handler(InfrastructureError)
async def infrastructure_error_handler(request: Request, exc: InfrastructureError):
    log.error("Snapshot store error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Snapshot store unavailable"})


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    yield from session_generator()


def snapshot_store(session: Session = Depends(db_session)) -> SqlSnapshotStore:
    return SqlSnapshotStore(session)


def _get_or_404(session: Session, model, entity_id: int, label: str = "Entity"):
    obj = services.get_entity(session, model, entity_id)
    if not obj:
        raise HTTPException(404, f"{label} not found")
    return obj


@app.get("/api/health", tags=["Snapshots"], summary="Liveness and active database")
async def health():
    return {"ok": True, "database": current_db_name()}


# ---------------------------------------------------------------------------
# Routes: Initiatives
# ---------------------------------------------------------------------------


@app.get("/api/initiatives", response_model=list[InitiativeOut],
         tags=["Initiatives"], summary="List initiatives, optionally by type")
def list_initiatives(
    type: str | None = Query(None, description="Project or CR"),
    session: Session = Depends(db_session),
):
    return [services.initiative_summary(i) for i in services.list_initiatives(session, type)]


@app.post("/api/initiatives", response_model=InitiativeOut, status_code=201,
          tags=["Initiatives"], summary="Create an initiative")
def create_initiative(body: InitiativeCreate, session: Session = Depends(db_session)):
    try:
        init = services.create_initiative(session, body.model_dump())
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    session.commit()
    return services.initiative_summary(init)


@app.get("/api/initiatives/{initiative_id}", response_model=InitiativeOut,
         tags=["Initiatives"], summary="Get one initiative")
def get_initiative(initiative_id: int, session: Session = Depends(db_session)):
    return services.initiative_summary(_get_or_404(session, Initiative, initiative_id, "Initiative"))


@app.put("/api/initiatives/{initiative_id}", response_model=InitiativeOut,
         tags=["Initiatives"], summary="Update initiative fields (partial update, null fields ignored)")
def update_initiative(initiative_id: int, body: InitiativeUpdate, session: Session = Depends(db_session)):
    init = _get_or_404(session, Initiative, initiative_id, "Initiative")
    try:
        services.update_initiative(session, init, body.model_dump())
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    session.commit()
    return services.initiative_summary(init)


@app.get("/api/initiatives/{initiative_id}/milestones", tags=["Durations"],
         summary="Days per milestone and the period breakdown for one initiative")
def initiative_milestones(
    initiative_id: int,
    session: Session = Depends(db_session),
    store: SqlSnapshotStore = Depends(snapshot_store),
):
    _get_or_404(session, Initiative, initiative_id, "Initiative")
    return services.milestone_summary(store, initiative_id)


# ---------------------------------------------------------------------------
# Routes: Snapshots (static paths before the {date} route)
# ---------------------------------------------------------------------------


@app.post("/api/daily-snapshots/initialize", tags=["Snapshots"],
          summary="Create the first snapshot if none exist")
def initialize_snapshots(session: Session = Depends(db_session)):
    result = services.initialize(session)
    return {"success": True, **result}


@app.post("/api/daily-snapshots/create", response_model=CaptureResult, tags=["Snapshots"],
          summary="Capture today's snapshot (no-op if it already exists)")
def create_snapshot(session: Session = Depends(db_session)):
    return services.capture(session)


@app.get("/api/daily-snapshots", response_model=list[SnapshotSummary], tags=["Snapshots"],
         summary="List snapshot dates, oldest first")
def list_snapshots(store: SqlSnapshotStore = Depends(snapshot_store)):
    return services.snapshot_summaries(store)


@app.get("/api/daily-snapshots/milestone-durations", response_model=list[InitiativeDurations],
         tags=["Durations"], summary="Milestone breakdown for every initiative")
def milestone_durations(
    type: str | None = Query(None, description="Project or CR"),
    session: Session = Depends(db_session),
    store: SqlSnapshotStore = Depends(snapshot_store),
):
    return services.all_durations(store, services.list_initiatives(session), type)


@app.get("/api/daily-snapshots/milestone-durations/{initiative_id}",
         response_model=list[MilestonePeriod], tags=["Durations"],
         summary="Chronological milestone periods for one initiative")
def milestone_breakdown(initiative_id: int, store: SqlSnapshotStore = Depends(snapshot_store)):
    return services.breakdown(store, initiative_id)


@app.get("/api/daily-snapshots/milestone-durations/{initiative_id}/{milestone}",
         response_model=MilestoneDurationOut, tags=["Durations"],
         summary="Total days one initiative spent in one milestone")
def milestone_duration(initiative_id: int, milestone: str,
                       store: SqlSnapshotStore = Depends(snapshot_store)):
    days = services.duration_in_milestone(store, initiative_id, milestone)
    return {"initiative_id": initiative_id, "milestone": milestone, "days": days}


@app.get("/api/daily-snapshots/{date}", response_model=Snapshot, tags=["Snapshots"],
         summary="Get the snapshot for one date")
def get_snapshot(date: str, store: SqlSnapshotStore = Depends(snapshot_store)):
    try:
        day = parse_day(date).isoformat()
    except ValueError:
        raise HTTPException(400, "Date must be YYYY-MM-DD")
    snapshot = store.get(day)
    if snapshot is None:
        raise HTTPException(404, "Snapshot not found")
    return snapshot


# ---------------------------------------------------------------------------
# Routes: Import
# ---------------------------------------------------------------------------


@app.post("/api/import", response_model=ImportResult,
          tags=["Import"], summary="Import initiatives from an XLSX workbook and capture a snapshot")
async def import_file(file: UploadFile = File(...), session: Session = Depends(db_session)):
    if not file.filename or not file.filename.endswith(".xlsx"):
        raise HTTPException(400, "Only .xlsx files are supported")
    content = await file.read()
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile(suffix=".xlsx", delete=False) as f:
            tmp_path = Path(f.name)
            f.write(content)
        return import_xlsx(tmp_path, session)
    finally:
        if tmp_path:
            tmp_path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run(
        "tracker.app:app",
        host=os.environ.get("TRACKER_HOST", "127.0.0.1"),
        port=env_int("TRACKER_PORT", 8001),
    )


if __name__ == "__main__":
    main()
