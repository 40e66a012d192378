from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

INITIATIVE_TYPES = ("Project", "CR")

MILESTONES = (
    "Preparation", "Business Requirement", "Tech Assessment", "Planning",
    "Development", "Testing", "Live",
)


class Base(DeclarativeBase):
    pass


class Initiative(Base):
    __tablename__ = "initiatives"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    type: Mapped[str] = mapped_column(String(20), default="Project")  # "Project" | "CR"
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(50), default="")
    milestone: Mapped[str] = mapped_column(String(100), default="")
    priority: Mapped[str] = mapped_column(String(20), default="")
    department_id: Mapped[str] = mapped_column(String(50), default="")
    business_owner_id: Mapped[str] = mapped_column(String(50), default="")
    it_pic_id: Mapped[str] = mapped_column(String(50), default="")
    start_date: Mapped[str] = mapped_column(String(10), default="")
    end_date: Mapped[str] = mapped_column(String(10), default="")
    remark: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


class DailySnapshot(Base):
    """Append-only daily capture. The date primary key rejects a second write for the same day."""

    __tablename__ = "daily_snapshots"

    date: Mapped[str] = mapped_column(String(10), primary_key=True)  # YYYY-MM-DD
    initiatives_json: Mapped[str] = mapped_column(Text, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
