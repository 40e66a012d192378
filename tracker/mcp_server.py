from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, contextmanager

from mcp.server.fastmcp import FastMCP

from tracker import services
from tracker.db import get_session, init_db
from tracker.models import INITIATIVE_TYPES, MILESTONES, Initiative
from tracker.store import SqlSnapshotStore

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def tracker_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Milestone Tracker",
    instructions=(
        "Milestone Tracker records a daily snapshot of every project and change request "
        "and reports how long each spent in each milestone. Start with "
        "get_milestone_durations() for the portfolio, then get_milestone_breakdown(id) "
        "for one initiative's timeline."
    ),
    lifespan=tracker_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _session():
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def _get_or_error(session, model, entity_id, label="Entity"):
    obj = services.get_entity(session, model, entity_id)
    if not obj:
        return None, {"error": f"{label} {entity_id} not found"}
    return obj, None


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("tracker://overview")
def tracker_overview() -> str:
    """Overview of the tracker: data model, milestones, and duration semantics."""
    return json.dumps({
        "system": "Milestone Tracker",
        "data_model": {
            "initiative": "A Project or CR (change request) with a current milestone.",
            "snapshot": "One capture per calendar day of every initiative's fields.",
            "milestone_period": (
                "A contiguous span in one milestone: startDate, endDate (null while current), "
                "durationDays, status Current|Completed."
            ),
        },
        "types": list(INITIATIVE_TYPES),
        "milestones": list(MILESTONES),
        "notes": [
            "Days are whole calendar days between snapshot dates.",
            "Dates an initiative is missing from are ignored, not treated as a change.",
            "Returning to an earlier milestone starts a new period.",
        ],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Initiatives
# ---------------------------------------------------------------------------


@mcp.tool()
def list_initiatives(type: str | None = None) -> list[dict]:
    """List live initiatives.

    Args:
        type: Optional filter, "Project" or "CR".
    """
    with _session() as session:
        return [services.initiative_summary(i) for i in services.list_initiatives(session, type)]


# ---------------------------------------------------------------------------
# Tools: Durations
# ---------------------------------------------------------------------------


@mcp.tool()
def get_milestone_durations(type: str | None = None) -> list[dict]:
    """Milestone period breakdown for every initiative, optionally filtered by type."""
    with _session() as session:
        return services.all_durations(
            SqlSnapshotStore(session), services.list_initiatives(session), type,
        )


@mcp.tool()
def get_milestone_breakdown(initiative_id: int) -> dict:
    """Chronological milestone periods and per-milestone day totals for one initiative."""
    with _session() as session:
        _, err = _get_or_error(session, Initiative, initiative_id, "Initiative")
        if err:
            return err
        return services.milestone_summary(SqlSnapshotStore(session), initiative_id)


@mcp.tool()
def get_milestone_duration(initiative_id: int, milestone: str) -> dict:
    """Total days one initiative has spent in one milestone (0 if never observed there)."""
    with _session() as session:
        days = services.duration_in_milestone(SqlSnapshotStore(session), initiative_id, milestone)
        return {"initiative_id": initiative_id, "milestone": milestone, "days": days}


# ---------------------------------------------------------------------------
# Tools: Snapshots
# ---------------------------------------------------------------------------


@mcp.tool()
def list_snapshots() -> list[dict]:
    """List captured snapshot dates with the number of initiatives in each."""
    with _session() as session:
        return services.snapshot_summaries(SqlSnapshotStore(session))


@mcp.tool()
def capture_snapshot() -> dict:
    """Capture today's snapshot. Safe to repeat: an existing snapshot is left untouched."""
    with _session() as session:
        return services.capture(session)


@mcp.tool()
def initialize_snapshots() -> dict:
    """Create the first snapshot if the history is empty."""
    with _session() as session:
        return services.initialize(session)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the tracker MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
