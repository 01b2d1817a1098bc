from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class TimetablePeriod(Base):
    __tablename__ = "timetable_periods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    day_of_week: Mapped[str] = mapped_column(String(10), nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_break: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    establishment_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    created_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())


class TimetableEntry(Base):
    __tablename__ = "timetable_entries"
    # Storage-level backstop for concurrent writers racing past the conflict pre-check.
    __table_args__ = (
        UniqueConstraint("academic_year_id", "period_id", "class_id", name="uq_timetable_entries_year_period_class"),
        UniqueConstraint("academic_year_id", "period_id", "teacher_id", name="uq_timetable_entries_year_period_teacher"),
        UniqueConstraint("academic_year_id", "period_id", "room_id", name="uq_timetable_entries_year_period_room"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    class_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    teacher_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    period_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    room_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    academic_year_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    created_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())
