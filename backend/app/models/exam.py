from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.db.base import Base


class Exam(Base):
    __tablename__ = "exams"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(150), nullable=False)
    class_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    teacher_user_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    exam_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    max_score: Mapped[float] = mapped_column(Float, nullable=False, default=20.0)
    establishment_id: Mapped[int | None] = mapped_column(Integer, index=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), onupdate=func.now())


class Grade(Base):
    __tablename__ = "grades"
    __table_args__ = (
        UniqueConstraint("exam_id", "student_id", name="uq_grades_exam_student"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    exam_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    student_id: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    graded_by_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
