"""Pydantic contracts for snapshots, milestone periods, and the tracker API."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tracker.utils import parse_day


class _Aliased(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Snapshot contracts
# ---------------------------------------------------------------------------


class InitiativeState(_Aliased):
    """Denormalised copy of one initiative as it looked on a snapshot date.

    Historical only: the live ``Initiative`` row stays authoritative.
    """

    id: int
    name: str = ""
    type: str = ""
    status: str = ""
    milestone: str | None = None
    priority: str = ""
    department_id: str = Field("", alias="departmentId")
    business_owner_id: str = Field("", alias="businessOwnerId")
    it_pic_id: str = Field("", alias="itPicId")
    created_at: str | None = Field(None, alias="createdAt")
    start_date: str | None = Field(None, alias="startDate")
    end_date: str | None = Field(None, alias="endDate")
    updated_at: str | None = Field(None, alias="updatedAt")


class Snapshot(_Aliased):
    date: str
    initiatives: list[InitiativeState] = []

    @field_validator("date")
    @classmethod
    def date_must_be_iso_day(cls, v: str) -> str:
        return parse_day(v).isoformat()

    @field_validator("initiatives")
    @classmethod
    def ids_must_be_unique(cls, v: list[InitiativeState]) -> list[InitiativeState]:
        seen: set[int] = set()
        for state in v:
            if state.id in seen:
                raise ValueError(f"duplicate initiative id {state.id} in snapshot")
            seen.add(state.id)
        return v

    def find(self, initiative_id: int) -> InitiativeState | None:
        for state in self.initiatives:
            if state.id == initiative_id:
                return state
        return None


class MilestonePeriod(_Aliased):
    milestone: str
    start_date: str = Field(alias="startDate")
    end_date: str | None = Field(None, alias="endDate")
    duration_days: int = Field(ge=0, alias="durationDays")
    status: Literal["Current", "Completed"]


class InitiativeDurations(_Aliased):
    id: int
    name: str
    type: str
    current_milestone: str | None = Field(None, alias="currentMilestone")
    milestone_details: list[MilestonePeriod] = Field([], alias="milestoneDetails")


class SnapshotSummary(BaseModel):
    date: str
    initiative_count: int


class CaptureResult(BaseModel):
    created: bool
    date: str
    initiative_count: int = 0


class MilestoneDurationOut(BaseModel):
    initiative_id: int
    milestone: str
    days: int


# ---------------------------------------------------------------------------
# Live initiative contracts
# ---------------------------------------------------------------------------


class InitiativeOut(BaseModel):
    id: int
    name: str
    type: str
    description: str
    status: str
    milestone: str
    priority: str
    department_id: str
    business_owner_id: str
    it_pic_id: str
    start_date: str
    end_date: str
    remark: str
    created_at: str | None = None
    updated_at: str | None = None


class InitiativeCreate(BaseModel):
    name: str
    type: str = "Project"
    description: str = ""
    status: str = ""
    milestone: str = ""
    priority: str = ""
    department_id: str = ""
    business_owner_id: str = ""
    it_pic_id: str = ""
    start_date: str = ""
    end_date: str = ""
    remark: str = ""


class InitiativeUpdate(BaseModel):
    name: str | None = None
    type: str | None = None
    description: str | None = None
    status: str | None = None
    milestone: str | None = None
    priority: str | None = None
    department_id: str | None = None
    business_owner_id: str | None = None
    it_pic_id: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    remark: str | None = None


class ImportResult(BaseModel):
    total_imported: int
    created: int
    updated: int
    by_type: dict[str, int]
    snapshot_created: bool = False
