"""Shared business logic for the tracker API and MCP server."""
from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from tracker import durations
from tracker.models import INITIATIVE_TYPES, MILESTONES, Initiative
from tracker.schemas import InitiativeDurations
from tracker.snapshots import bootstrap, capture_today, record_field
from tracker.store import SnapshotStore, SqlSnapshotStore
from tracker.utils import iso_or_none, local_today, parse_day


# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

UPDATABLE_FIELDS = (
    "name", "type", "description", "status", "milestone", "priority",
    "department_id", "business_owner_id", "it_pic_id", "start_date", "end_date", "remark",
)


def _day(today: str | date | None) -> str:
    return parse_day(today).isoformat() if today is not None else local_today()


# ---------------------------------------------------------------------------
# Milestone durations
# ---------------------------------------------------------------------------


def breakdown(store: SnapshotStore, initiative_id: int, today: str | date | None = None) -> list[dict]:
    """Chronological milestone periods for one initiative; ``[]`` if never observed."""
    periods = durations.milestone_periods(initiative_id, store.scan(), _day(today))
    return [p.model_dump(by_alias=True) for p in periods]


def duration_in_milestone(
    store: SnapshotStore, initiative_id: int, milestone: str | None, today: str | date | None = None,
) -> int:
    """Days spent in *milestone*; 0 if never observed there."""
    return durations.duration_in_milestone(initiative_id, milestone, store.scan(), _day(today))


def all_durations(
    store: SnapshotStore, initiatives: Iterable[Any], type_filter: str | None = None,
    today: str | date | None = None,
) -> list[dict]:
    """Breakdown for every live initiative, optionally restricted to one type.

    Snapshots are scanned once per call and indexed by initiative id.
    """
    day = _day(today)
    records = [i for i in initiatives if not type_filter or record_field(i, "type") == type_filter]
    if not records:
        return []
    index = durations.index_observations(store.scan())
    results = []
    for record in records:
        initiative_id = record_field(record, "id")
        periods = durations.periods_from_observations(index.get(initiative_id, []), day)
        results.append(InitiativeDurations(
            id=initiative_id,
            name=record_field(record, "name") or "",
            type=record_field(record, "type") or "",
            current_milestone=record_field(record, "milestone"),
            milestone_details=periods,
        ).model_dump(by_alias=True))
    return results


def milestone_summary(store: SnapshotStore, initiative_id: int, today: str | date | None = None) -> dict:
    """Days per milestone name plus the full breakdown."""
    periods = durations.milestone_periods(initiative_id, store.scan(), _day(today))
    return {
        "initiative_id": initiative_id,
        "totals": durations.milestone_totals(periods),
        "periods": [p.model_dump(by_alias=True) for p in periods],
    }


def snapshot_summaries(store: SnapshotStore) -> list[dict]:
    return [{"date": s.date, "initiative_count": len(s.initiatives)} for s in store.scan()]


# ---------------------------------------------------------------------------
# Capture triggers
# ---------------------------------------------------------------------------


def capture(session: Session, today: str | date | None = None) -> dict:
    """Capture today's snapshot from the live initiatives in *session*."""
    day = _day(today)
    store = SqlSnapshotStore(session)
    snapshot = capture_today(store, lambda: list_initiatives(session), day)
    if snapshot is None:
        existing = store.get(day)
        count = len(existing.initiatives) if existing else 0
        return {"created": False, "date": day, "initiative_count": count}
    return {"created": True, "date": day, "initiative_count": len(snapshot.initiatives)}


def initialize(session: Session, today: str | date | None = None) -> dict:
    store = SqlSnapshotStore(session)
    snapshot = bootstrap(store, lambda: list_initiatives(session), _day(today))
    return {"created": snapshot is not None, "snapshot_count": store.count()}


# ---------------------------------------------------------------------------
# Live initiatives
# ---------------------------------------------------------------------------


def list_initiatives(session: Session, type: str | None = None) -> list[Initiative]:
    query = select(Initiative).order_by(Initiative.id)
    if type:
        query = query.where(Initiative.type == type)
    return list(session.execute(query).scalars().all())


def get_entity(session: Session, model, entity_id: int):
    return session.execute(select(model).where(model.id == entity_id)).scalars().first()


def initiative_summary(init: Initiative) -> dict:
    return {
        "id": init.id, "name": init.name, "type": init.type,
        "description": init.description, "status": init.status,
        "milestone": init.milestone, "priority": init.priority,
        "department_id": init.department_id,
        "business_owner_id": init.business_owner_id, "it_pic_id": init.it_pic_id,
        "start_date": init.start_date, "end_date": init.end_date, "remark": init.remark,
        "created_at": iso_or_none(init.created_at),
        "updated_at": iso_or_none(init.updated_at),
    }


def validate_initiative_fields(values: dict[str, Any]) -> None:
    """Raise ValueError for a blank name, unknown type, or unknown milestone."""
    if "name" in values and values["name"] is not None and not str(values["name"]).strip():
        raise ValueError("Name is required")
    itype = values.get("type")
    if itype is not None and itype not in INITIATIVE_TYPES:
        raise ValueError(f"Invalid type '{itype}' (expected one of {', '.join(INITIATIVE_TYPES)})")
    milestone = values.get("milestone")
    if milestone and milestone not in MILESTONES:
        raise ValueError(f"Invalid milestone '{milestone}'")


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)


def create_initiative(session: Session, data: dict[str, Any]) -> Initiative:
    """Insert a live initiative (caller must commit)."""
    validate_initiative_fields(data)
    init = Initiative(**{k: v for k, v in data.items() if k in UPDATABLE_FIELDS})
    session.add(init)
    session.flush()
    return init


def update_initiative(session: Session, init: Initiative, updates: dict[str, Any]) -> Initiative:
    """Partial update, None values ignored (caller must commit)."""
    validate_initiative_fields(updates)
    apply_updates(init, updates, UPDATABLE_FIELDS)
    session.flush()
    return init
