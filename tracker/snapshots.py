"""Daily snapshot capture and bootstrap.

``capture_today`` writes one snapshot per calendar day and is safe to call any
number of times: an existing snapshot for today, or losing a duplicate-write
race to another caller, is logged and treated as a no-op.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from contextlib import suppress
from datetime import date
from typing import Any

from tracker.schemas import InitiativeState, Snapshot
from tracker.store import ConflictError, SnapshotStore
from tracker.utils import iso_or_none, local_today, parse_day

log = logging.getLogger(__name__)

DEFAULT_INTERVAL = 24 * 60 * 60

# Copied into every snapshot; the date fields are stored as ISO strings.
STATE_FIELDS = (
    "id", "name", "type", "status", "milestone", "priority",
    "department_id", "business_owner_id", "it_pic_id",
    "created_at", "start_date", "end_date", "updated_at",
)
_DATE_FIELDS = ("created_at", "start_date", "end_date", "updated_at")

InitiativeSource = Iterable[Any] | Callable[[], Iterable[Any]]


def record_field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        if name in record:
            return record[name]
        alias = InitiativeState.model_fields[name].alias
        return record.get(alias) if alias else None
    return getattr(record, name, None)


def initiative_state(record: Any) -> InitiativeState:
    """Copy the snapshot fields out of a live initiative (ORM row or mapping)."""
    values: dict[str, Any] = {}
    for name in STATE_FIELDS:
        value = record_field(record, name)
        if name in _DATE_FIELDS:
            value = iso_or_none(value)
        elif name not in ("id", "milestone") and value is None:
            value = ""
        values[name] = value
    return InitiativeState(**values)


def build_snapshot(day: str | date, initiatives: Iterable[Any]) -> Snapshot:
    """Snapshot of *initiatives* for *day*, in the order they were supplied."""
    return Snapshot(
        date=parse_day(day).isoformat(),
        initiatives=[initiative_state(record) for record in initiatives],
    )


def _load(source: InitiativeSource) -> Iterable[Any]:
    return source() if callable(source) else source


def capture_today(
    store: SnapshotStore, source: InitiativeSource, today: str | date | None = None,
) -> Snapshot | None:
    """Write today's snapshot unless one exists. Returns the snapshot it wrote, else None.

    *source* is the live initiative list, or a zero-argument callable returning
    it; a callable is only invoked when a snapshot is actually needed.
    """
    day = parse_day(today).isoformat() if today is not None else local_today()
    if store.has(day):
        log.info("Daily snapshot already exists for %s", day)
        return None

    snapshot = build_snapshot(day, _load(source))
    try:
        store.put(snapshot)
    except ConflictError:
        log.warning("Daily snapshot for %s was written concurrently, skipping", day)
        return None

    log.info("Daily snapshot created for %s with %d initiatives", day, len(snapshot.initiatives))
    return snapshot


def bootstrap(
    store: SnapshotStore, source: InitiativeSource, today: str | date | None = None,
) -> Snapshot | None:
    """Capture a first snapshot if the store has none at all. No backfill."""
    if store.count() > 0:
        return None
    log.info("Initializing daily snapshots")
    return capture_today(store, source, today)


class CaptureScheduler:
    """Runs *capture* every *interval* seconds on the event loop.

    A failed tick is logged and retried on the next one; capture itself is
    idempotent so there is no catch-up logic.
    """

    def __init__(self, capture: Callable[[], Any], interval: float = DEFAULT_INTERVAL):
        self.capture = capture
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> None:
        try:
            await asyncio.to_thread(self.capture)
        except Exception:
            log.exception("Daily snapshot error")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        log.info("Daily snapshot scheduler started (every %ss)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
