"""Tests for the XLSX initiative sync."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path

import openpyxl
import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from tracker.importer import _header_key, _sheet_type, import_xlsx
from tracker.models import Base, Initiative
from tracker.store import SqlSnapshotStore
from tracker.utils import local_today


@pytest.fixture()
def session():
    eng = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    sess = sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)()
    try:
        yield sess
    finally:
        sess.close()


def write_workbook(path: Path, sheets: dict[str, list[list]]) -> Path:
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title)
        for row in rows:
            ws.append(row)
    wb.save(path)
    return path


HEADER = ["Name", "Status", "Milestone", "Department", "IT PIC", "Start Date", "End Date"]


class TestSheetDetection:
    @pytest.mark.parametrize("title,expected", [
        ("Project", "Project"), ("Projects 2025", "Project"), ("CR", "CR"),
        ("CR 2025", "CR"), ("Change Requests", "CR"), ("Crossroads", None), ("Lookups", None),
    ])
    def test_sheet_type(self, title, expected):
        assert _sheet_type(title) == expected

    def test_header_key(self):
        assert _header_key(" Start Date ") == "startdate"
        assert _header_key("IT-PIC") == "itpic"
        assert _header_key(None) == ""


class TestImportXlsx:
    def test_inserts_rows_by_sheet_type(self, session: Session, tmp_path):
        path = write_workbook(tmp_path / "sync.xlsx", {
            "Project": [HEADER, ["Data Lake", "In Progress", "Development", "IT", "u7",
                                 datetime(2025, 1, 2), None]],
            "CR": [HEADER, ["Fee change", "Open", "Tech Assessment", "Ops", "", "2025-02-01", ""]],
            "Lookups": [["Milestone"], ["Planning"]],
        })
        result = import_xlsx(path, session)
        assert result.created == 2
        assert result.updated == 0
        assert result.by_type == {"Project": 1, "CR": 1}
        rows = session.execute(select(Initiative).order_by(Initiative.id)).scalars().all()
        assert [(r.name, r.type, r.milestone) for r in rows] == [
            ("Data Lake", "Project", "Development"),
            ("Fee change", "CR", "Tech Assessment"),
        ]
        assert rows[0].start_date == "2025-01-02"
        assert rows[0].department_id == "IT"
        assert rows[0].it_pic_id == "u7"

    def test_upsert_updates_existing(self, session: Session, tmp_path):
        session.add(Initiative(name="Data Lake", type="Project", milestone="Planning", priority="High"))
        session.commit()
        path = write_workbook(tmp_path / "sync.xlsx", {
            "Project": [["Name", "Milestone"], ["data lake", "Testing"]],
        })
        result = import_xlsx(path, session, capture=False)
        assert result.created == 0
        assert result.updated == 1
        init = session.execute(select(Initiative)).scalars().one()
        assert init.milestone == "Testing"
        assert init.priority == "High"

    def test_same_name_different_type_is_separate(self, session: Session, tmp_path):
        path = write_workbook(tmp_path / "sync.xlsx", {
            "Project": [["Name"], ["Portal"]],
            "CR": [["Name"], ["Portal"]],
        })
        assert import_xlsx(path, session, capture=False).created == 2

    def test_unknown_milestone_blanked(self, session: Session, tmp_path):
        path = write_workbook(tmp_path / "sync.xlsx", {
            "Project": [["Name", "Milestone"], ["Portal", "Shipping"], ["Site", "live"]],
        })
        import_xlsx(path, session, capture=False)
        milestones = session.execute(select(Initiative.milestone).order_by(Initiative.id)).scalars().all()
        assert milestones == ["", "Live"]

    def test_sheet_without_milestone_column_keeps_milestones(self, session: Session, tmp_path):
        session.add(Initiative(name="Data Lake", type="Project", milestone="Development"))
        session.commit()
        path = write_workbook(tmp_path / "sync.xlsx", {
            "Project": [["Name", "Status"], ["Data Lake", "On Hold"], ["Portal", "Open"]],
        })
        result = import_xlsx(path, session)
        assert result.updated == 1
        rows = session.execute(select(Initiative).order_by(Initiative.id)).scalars().all()
        assert [(r.name, r.status, r.milestone) for r in rows] == [
            ("Data Lake", "On Hold", "Development"),
            ("Portal", "Open", ""),
        ]
        snapshot = SqlSnapshotStore(session).get(local_today())
        assert snapshot.initiatives[0].milestone == "Development"

    def test_skips_blank_names_and_sheet_without_name_column(self, session: Session, tmp_path):
        path = write_workbook(tmp_path / "sync.xlsx", {
            "Project": [["Name", "Milestone"], [None, "Planning"], ["Portal", "Planning"]],
            "CR": [["Title", "Milestone"], ["Ignored", "Planning"]],
        })
        result = import_xlsx(path, session, capture=False)
        assert result.created == 1
        assert result.by_type == {"Project": 1, "CR": 0}

    def test_capture_after_import(self, session: Session, tmp_path):
        path = write_workbook(tmp_path / "sync.xlsx", {"Project": [["Name"], ["Portal"]]})
        result = import_xlsx(path, session)
        assert result.snapshot_created is True
        store = SqlSnapshotStore(session)
        assert store.all_dates_ascending() == [local_today()]

    def test_second_import_same_day_keeps_first_snapshot(self, session: Session, tmp_path):
        first = write_workbook(tmp_path / "a.xlsx", {"Project": [["Name", "Milestone"], ["Portal", "Planning"]]})
        second = write_workbook(tmp_path / "b.xlsx", {"Project": [["Name", "Milestone"], ["Portal", "Testing"]]})
        import_xlsx(first, session)
        assert import_xlsx(second, session).snapshot_created is False
        snapshot = SqlSnapshotStore(session).get(local_today())
        assert snapshot.initiatives[0].milestone == "Planning"
