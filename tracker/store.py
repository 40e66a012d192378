"""Append-only snapshot storage.

A store holds at most one snapshot per ``YYYY-MM-DD`` date. ``put`` is an
atomic insert-if-absent: a second write for a date that already exists
(including a concurrent one that lost the race) raises ``ConflictError`` and
never overwrites. Nothing here updates or deletes a stored snapshot, and
snapshots handed out by a store are copies.
"""
from __future__ import annotations

import json
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Protocol

from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tracker.models import DailySnapshot
from tracker.schemas import Snapshot


class TrackerError(Exception):
    """Base class for tracker errors."""


class ConflictError(TrackerError):
    """A snapshot already exists for the date being written."""

    def __init__(self, date: str):
        super().__init__(f"Snapshot for {date} already exists")
        self.date = date


class InfrastructureError(TrackerError):
    """The snapshot store could not be reached, or returned unreadable data."""


class SnapshotStore(Protocol):
    def has(self, date: str) -> bool: ...

    def get(self, date: str) -> Snapshot | None: ...

    def put(self, snapshot: Snapshot) -> None: ...

    def all_dates_ascending(self) -> list[str]: ...

    def scan(self) -> Iterator[Snapshot]: ...

    def count(self) -> int: ...


def _dump_states(snapshot: Snapshot) -> str:
    return json.dumps([s.model_dump(mode="json", by_alias=True) for s in snapshot.initiatives])


# ---------------------------------------------------------------------------
# SQLAlchemy
# ---------------------------------------------------------------------------


class SqlSnapshotStore:
    """Snapshot store over the ``daily_snapshots`` table of an open session.

    ``put`` commits the snapshot itself when the session holds no pending
    changes. Otherwise the insert runs inside a savepoint and committing is
    left to the caller; a rejected insert never touches the caller's changes.
    """

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def _guard(self, action: str):
        try:
            yield
        except SQLAlchemyError as exc:
            raise InfrastructureError(f"Snapshot store unavailable during {action}: {exc}") from exc

    def _to_snapshot(self, row: DailySnapshot) -> Snapshot:
        try:
            return Snapshot(date=row.date, initiatives=json.loads(row.initiatives_json))
        except (TypeError, ValueError) as exc:
            raise InfrastructureError(f"Snapshot for {row.date} is unreadable: {exc}") from exc

    def _has_pending_changes(self) -> bool:
        return bool(self.session.new or self.session.dirty or self.session.deleted)

    def has(self, date: str) -> bool:
        with self._guard("has"):
            found = self.session.execute(
                select(DailySnapshot.date).where(DailySnapshot.date == date)
            ).first()
        return found is not None

    def get(self, date: str) -> Snapshot | None:
        with self._guard("get"):
            row = self.session.execute(
                select(DailySnapshot).where(DailySnapshot.date == date)
            ).scalars().first()
        return self._to_snapshot(row) if row else None

    def put(self, snapshot: Snapshot) -> None:
        # Core insert so the primary key, not the identity map, decides the conflict.
        stmt = insert(DailySnapshot).values(
            date=snapshot.date, initiatives_json=_dump_states(snapshot),
        )
        if self._has_pending_changes():
            self.session.flush()
            try:
                with self.session.begin_nested():
                    self.session.execute(stmt)
            except IntegrityError as exc:
                raise ConflictError(snapshot.date) from exc
            except SQLAlchemyError as exc:
                raise InfrastructureError(f"Snapshot store unavailable during put: {exc}") from exc
            return

        try:
            self.session.execute(stmt)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError(snapshot.date) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise InfrastructureError(f"Snapshot store unavailable during put: {exc}") from exc

    def all_dates_ascending(self) -> list[str]:
        with self._guard("all_dates_ascending"):
            return list(self.session.execute(
                select(DailySnapshot.date).order_by(DailySnapshot.date)
            ).scalars())

    def scan(self) -> Iterator[Snapshot]:
        with self._guard("scan"):
            rows = self.session.execute(
                select(DailySnapshot).order_by(DailySnapshot.date)
            ).scalars().all()
        for row in rows:
            yield self._to_snapshot(row)

    def count(self) -> int:
        with self._guard("count"):
            return self.session.execute(select(func.count()).select_from(DailySnapshot)).scalar() or 0


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class MemorySnapshotStore:
    """Dict-backed store for tests and embedding."""

    def __init__(self, snapshots: list[Snapshot] | None = None):
        self._lock = threading.Lock()
        self._snapshots: dict[str, Snapshot] = {}
        for snapshot in snapshots or []:
            self.put(snapshot)

    def has(self, date: str) -> bool:
        return date in self._snapshots

    def get(self, date: str) -> Snapshot | None:
        snapshot = self._snapshots.get(date)
        return snapshot.model_copy(deep=True) if snapshot is not None else None

    def put(self, snapshot: Snapshot) -> None:
        with self._lock:
            if snapshot.date in self._snapshots:
                raise ConflictError(snapshot.date)
            self._snapshots[snapshot.date] = snapshot.model_copy(deep=True)

    def all_dates_ascending(self) -> list[str]:
        with self._lock:
            return sorted(self._snapshots)

    def scan(self) -> Iterator[Snapshot]:
        for date in self.all_dates_ascending():
            snapshot = self.get(date)
            if snapshot is not None:
                yield snapshot

    def count(self) -> int:
        return len(self._snapshots)
