from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator


class ExamCreate(BaseModel):
    title: str = Field(min_length=1, max_length=150)
    class_id: int
    subject_id: int
    exam_date: date | None = None
    max_score: float = Field(default=20.0, gt=0, le=1000)

    @field_validator("title")
    @classmethod
    def normalize_title(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Title cannot be empty")
        return trimmed


class ExamUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=150)
    exam_date: date | None = None
    max_score: float | None = Field(default=None, gt=0, le=1000)


class ExamOut(BaseModel):
    id: int
    title: str
    class_id: int
    subject_id: int
    teacher_user_id: int
    exam_date: date | None = None
    max_score: float
    establishment_id: int | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class GradeCreate(BaseModel):
    student_id: int
    score: float = Field(ge=0)
    comment: str | None = Field(default=None, max_length=1000)


class GradeOut(BaseModel):
    id: int
    exam_id: int
    student_id: int
    score: float
    comment: str | None = None
    graded_by_id: int | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class StudentGradeOut(GradeOut):
    exam_title: str
    subject_id: int
    max_score: float


class SubjectAverageOut(BaseModel):
    subject_id: int
    subject_name: str
    coefficient: float
    average: float | None = None


class BulletinOut(BaseModel):
    student_id: int
    class_id: int | None = None
    subjects: list[SubjectAverageOut]
    general_average: float | None = None
    decision: str
    # Class ranking is not computed.
    rank: int | None = None
