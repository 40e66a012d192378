"""Reconstruct milestone occupancy intervals from daily snapshots.

Every snapshot is a point sample of each initiative's ``milestone`` field.
Walking the samples in date order turns them into contiguous periods::

    2025-01-01 Planning  ─┐
    2025-01-03 Development┼─ Planning     01-01 → 01-03   2 days  Completed
    2025-01-06 Development┘  Development  01-03 → (open)  n days  Current

A date on which an initiative is absent carries no information: it neither
closes nor extends a period. Re-entering a milestone opens a new period; the
breakdown is chronological, not grouped by name. A blank milestone is an
ordinary value with its own periods.

Functions here are pure. "Today" is always passed in by the caller.
"""
from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import date

from tracker.schemas import MilestonePeriod, Snapshot
from tracker.utils import parse_day

# (snapshot date, observed milestone)
Observation = tuple[str, str]


def days_between(start: str | date, end: str | date) -> int:
    """Whole calendar days from *start* to *end* (midnight to midnight)."""
    return (parse_day(end) - parse_day(start)).days


def _milestone_value(milestone: str | None) -> str:
    # An unset milestone is observed as the blank value.
    return milestone or ""


def _ascending(snapshots: Iterable[Snapshot]) -> list[Snapshot]:
    return sorted(snapshots, key=lambda s: s.date)


def observations_for(initiative_id: int, snapshots: Iterable[Snapshot]) -> list[Observation]:
    """Dated milestone observations of one initiative, oldest first."""
    observations: list[Observation] = []
    for snapshot in _ascending(snapshots):
        state = snapshot.find(initiative_id)
        if state is None:
            continue
        observations.append((snapshot.date, _milestone_value(state.milestone)))
    return observations


def index_observations(snapshots: Iterable[Snapshot]) -> dict[int, list[Observation]]:
    """Observations for every initiative in a single pass over the snapshots."""
    index: dict[int, list[Observation]] = defaultdict(list)
    for snapshot in _ascending(snapshots):
        for state in snapshot.initiatives:
            index[state.id].append((snapshot.date, _milestone_value(state.milestone)))
    return dict(index)


def periods_from_observations(
    observations: Iterable[Observation], today: str | date,
) -> list[MilestonePeriod]:
    """Collapse ordered observations into chronological milestone periods.

    The last period stays open (``end_date`` None, status ``Current``) and is
    measured up to *today*.
    """
    periods: list[MilestonePeriod] = []
    current: str | None = None
    started: str | None = None

    for day, milestone in observations:
        if current is not None and milestone == current:
            continue
        if current is not None:
            periods.append(MilestonePeriod(
                milestone=current, start_date=started, end_date=day,
                duration_days=days_between(started, day), status="Completed",
            ))
        current, started = milestone, day

    if current is not None:
        # A snapshot dated after the caller's "today" would go negative; an open period is never shorter than 0.
        periods.append(MilestonePeriod(
            milestone=current, start_date=started, end_date=None,
            duration_days=max(days_between(started, today), 0), status="Current",
        ))
    return periods


def milestone_periods(
    initiative_id: int, snapshots: Iterable[Snapshot], today: str | date,
) -> list[MilestonePeriod]:
    """Breakdown of every milestone period one initiative has been observed in."""
    return periods_from_observations(observations_for(initiative_id, snapshots), today)


def total_in_milestone(periods: Iterable[MilestonePeriod], target: str | None) -> int:
    target = _milestone_value(target)
    return sum(p.duration_days for p in periods if p.milestone == target)


def duration_in_milestone(
    initiative_id: int, target: str | None, snapshots: Iterable[Snapshot], today: str | date,
) -> int:
    """Total days spent in *target* across all of its (possibly repeated) periods."""
    return total_in_milestone(milestone_periods(initiative_id, snapshots, today), target)


def milestone_totals(periods: Iterable[MilestonePeriod]) -> dict[str, int]:
    """Days per milestone name, in order of first appearance."""
    totals: dict[str, int] = {}
    for period in periods:
        totals[period.milestone] = totals.get(period.milestone, 0) + period.duration_days
    return totals
