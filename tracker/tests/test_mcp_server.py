"""Tests for the MCP tool functions, called directly against an in-memory database."""
from __future__ import annotations

import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tracker import mcp_server
from tracker.models import Base, Initiative
from tracker.schemas import InitiativeState, Snapshot
from tracker.store import SqlSnapshotStore
from tracker.utils import local_today


@pytest.fixture()
def factory(monkeypatch):
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    monkeypatch.setattr(mcp_server, "get_session", factory)
    return factory


@pytest.fixture()
def seeded(factory):
    session = factory()
    init = Initiative(name="Portal", type="Project", milestone="Testing")
    session.add(init)
    session.commit()
    SqlSnapshotStore(session).put(Snapshot(date="2025-01-01", initiatives=[
        InitiativeState(id=init.id, name="Portal", type="Project", milestone="Planning"),
    ]))
    SqlSnapshotStore(session).put(Snapshot(date="2025-01-05", initiatives=[
        InitiativeState(id=init.id, name="Portal", type="Project", milestone="Testing"),
    ]))
    init_id = init.id
    session.close()
    return init_id


def test_overview_resource():
    data = json.loads(mcp_server.tracker_overview())
    assert data["types"] == ["Project", "CR"]
    assert "Testing" in data["milestones"]


def test_list_initiatives(seeded):
    assert [i["name"] for i in mcp_server.list_initiatives()] == ["Portal"]
    assert mcp_server.list_initiatives(type="CR") == []


def test_breakdown_and_duration(seeded):
    result = mcp_server.get_milestone_breakdown(seeded)
    assert result["totals"]["Planning"] == 4
    assert [p["milestone"] for p in result["periods"]] == ["Planning", "Testing"]
    assert mcp_server.get_milestone_duration(seeded, "Planning")["days"] == 4


def test_breakdown_missing_initiative(seeded):
    assert mcp_server.get_milestone_breakdown(9999) == {"error": "Initiative 9999 not found"}


def test_portfolio_durations(seeded):
    rows = mcp_server.get_milestone_durations(type="Project")
    assert rows[0]["id"] == seeded
    assert rows[0]["currentMilestone"] == "Testing"


def test_capture_and_list_snapshots(seeded):
    first = mcp_server.capture_snapshot()
    assert first["created"] is True
    assert mcp_server.capture_snapshot()["created"] is False
    assert [s["date"] for s in mcp_server.list_snapshots()][-1] == local_today()
    assert mcp_server.initialize_snapshots()["created"] is False
