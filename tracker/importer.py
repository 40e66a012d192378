"""Bulk initiative sync from an XLSX workbook.

One sheet per initiative type ("Project", "CR"), first row is the header.
Rows are upserted by name + type, then today's snapshot is captured so the
synced state is recorded.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from pathlib import Path

import openpyxl
from sqlalchemy import select
from sqlalchemy.orm import Session

from tracker.models import MILESTONES, Initiative
from tracker.schemas import ImportResult
from tracker.snapshots import capture_today
from tracker.store import SqlSnapshotStore

log = logging.getLogger(__name__)


def _s(value: object) -> str:
    """Safely coerce cell value to stripped string."""
    if value is None:
        return ""
    return str(value).strip()


def _d(value: object) -> str:
    """Coerce a date cell (or text) to ``YYYY-MM-DD``, empty if missing."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return _s(value)[:10]


def _header_key(value: object) -> str:
    return "".join(ch for ch in _s(value).casefold() if ch.isalnum())


# Normalised header text -> Initiative field
_HEADER_FIELDS = {
    "name": "name", "initiative": "name", "projectname": "name", "crname": "name",
    "description": "description",
    "status": "status",
    "milestone": "milestone",
    "priority": "priority",
    "department": "department_id", "departmentid": "department_id",
    "businessowner": "business_owner_id", "businessownerid": "business_owner_id",
    "itpic": "it_pic_id", "itpicid": "it_pic_id",
    "startdate": "start_date",
    "enddate": "end_date",
    "remark": "remark", "remarks": "remark",
}
_DATE_COLUMNS = ("start_date", "end_date")

_MILESTONE_LOOKUP = {m.casefold(): m for m in MILESTONES}


def _sheet_type(sheet_name: str) -> str | None:
    lower = sheet_name.casefold()
    if lower in ("cr", "crs") or lower.startswith(("cr ", "cr-", "cr_")) or "change request" in lower:
        return "CR"
    if "project" in lower:
        return "Project"
    return None


def _parse_sheet(ws, initiative_type: str) -> list[dict]:
    rows = ws.iter_rows(values_only=True)
    header = next(rows, None)
    if not header:
        return []
    col_map = {
        _HEADER_FIELDS[key]: idx
        for idx, key in enumerate(_header_key(h) for h in header)
        if key in _HEADER_FIELDS
    }
    if "name" not in col_map:
        log.warning("Sheet '%s' has no name column, skipping", ws.title)
        return []

    out: list[dict] = []
    for row in rows:
        if not row:
            continue
        entry: dict = {"type": initiative_type}
        for field, idx in col_map.items():
            value = row[idx] if idx < len(row) else None
            entry[field] = _d(value) if field in _DATE_COLUMNS else _s(value)
        if not entry["name"]:
            continue
        # Milestones are a closed set; unknown labels are kept blank rather than invented.
        if "milestone" in col_map:
            milestone = entry["milestone"]
            entry["milestone"] = _MILESTONE_LOOKUP.get(milestone.casefold(), "") if milestone else ""
        out.append(entry)
    return out


def _normalize_key(name: str, initiative_type: str) -> str:
    return f"{name.strip().casefold()}|{initiative_type}"


def _upsert(session: Session, data: dict, existing: dict[str, Initiative]) -> bool:
    """Insert new or update existing initiative. Returns True when inserted."""
    key = _normalize_key(data["name"], data["type"])
    if key in existing:
        init = existing[key]
        for field, value in data.items():
            if field in ("name", "type"):
                continue
            if value or field == "milestone":
                setattr(init, field, value)
        return False
    init = Initiative(**data)
    session.add(init)
    existing[key] = init
    return True


def import_xlsx(file_path: str | Path, session: Session, capture: bool = True) -> ImportResult:
    """Import every typed sheet from the workbook, then capture today's snapshot."""
    file_path = Path(file_path)
    wb = openpyxl.load_workbook(file_path, read_only=True, data_only=True)

    existing_map: dict[str, Initiative] = {
        _normalize_key(i.name, i.type): i
        for i in session.execute(select(Initiative)).scalars().all()
    }

    parsed: list[dict] = []
    by_type: dict[str, int] = {}
    for sheet_name in wb.sheetnames:
        initiative_type = _sheet_type(sheet_name)
        if initiative_type is None:
            log.info("Ignoring sheet '%s'", sheet_name)
            continue
        rows = _parse_sheet(wb[sheet_name], initiative_type)
        by_type[initiative_type] = by_type.get(initiative_type, 0) + len(rows)
        parsed.extend(rows)
    wb.close()

    created = updated = 0
    for data in parsed:
        if _upsert(session, data, existing_map):
            created += 1
        else:
            updated += 1
    session.commit()
    log.info("Imported %d initiatives (%d new, %d updated) from %s",
             created + updated, created, updated, file_path.name)

    snapshot_created = False
    if capture:
        live = session.execute(select(Initiative).order_by(Initiative.id)).scalars().all()
        snapshot_created = capture_today(SqlSnapshotStore(session), live) is not None

    return ImportResult(
        total_imported=created + updated, created=created, updated=updated,
        by_type=by_type, snapshot_created=snapshot_created,
    )
