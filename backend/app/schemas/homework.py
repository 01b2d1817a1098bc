from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from app.models.homework import SubmissionStatus


class HomeworkCreate(BaseModel):
    title: str = Field(min_length=1, max_length=150)
    description: str | None = Field(default=None, max_length=5000)
    class_id: int
    subject_id: int
    due_date: date | None = None

    @field_validator("title")
    @classmethod
    def normalize_title(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Title cannot be empty")
        return trimmed


class HomeworkUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=150)
    description: str | None = Field(default=None, max_length=5000)
    due_date: date | None = None


class HomeworkOut(BaseModel):
    id: int
    title: str
    description: str | None = None
    class_id: int
    subject_id: int
    due_date: date | None = None
    created_by_id: int
    establishment_id: int
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class SubmissionCreate(BaseModel):
    content: str = Field(min_length=1, max_length=20000)

    @field_validator("content")
    @classmethod
    def normalize_content(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Submission cannot be empty")
        return trimmed


class SubmissionGrade(BaseModel):
    score: float = Field(ge=0, le=20)
    feedback: str | None = Field(default=None, max_length=2000)


class SubmissionOut(BaseModel):
    id: int
    homework_id: int
    student_id: int
    content: str
    status: SubmissionStatus
    score: float | None = None
    feedback: str | None = None
    graded_by_id: int | None = None
    submitted_at: datetime | None = None
    graded_at: datetime | None = None

    model_config = {"from_attributes": True}
