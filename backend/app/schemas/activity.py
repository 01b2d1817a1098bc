from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.activity import ActivityStatus


class ActivityCreate(BaseModel):
    name: str = Field(min_length=1, max_length=150)
    description: str | None = Field(default=None, max_length=5000)
    category: str | None = Field(default=None, max_length=50)
    location: str | None = Field(default=None, max_length=150)
    starts_on: date | None = None
    ends_on: date | None = None
    max_participants: int | None = Field(default=None, ge=1, le=1000)
    responsible_user_id: int | None = None
    academic_year_id: int | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Name cannot be empty")
        return trimmed

    @model_validator(mode="after")
    def validate_dates(self) -> "ActivityCreate":
        if self.starts_on and self.ends_on and self.ends_on < self.starts_on:
            raise ValueError("ends_on cannot be before starts_on")
        return self


class ActivityUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=150)
    description: str | None = Field(default=None, max_length=5000)
    category: str | None = Field(default=None, max_length=50)
    location: str | None = Field(default=None, max_length=150)
    starts_on: date | None = None
    ends_on: date | None = None
    max_participants: int | None = Field(default=None, ge=1, le=1000)
    responsible_user_id: int | None = None
    status: ActivityStatus | None = None


class ActivityOut(BaseModel):
    id: int
    name: str
    description: str | None = None
    category: str | None = None
    location: str | None = None
    starts_on: date | None = None
    ends_on: date | None = None
    max_participants: int | None = None
    responsible_user_id: int
    status: ActivityStatus
    academic_year_id: int | None = None
    establishment_id: int
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class ActivityParticipantAdd(BaseModel):
    student_id: int


class ActivityParticipantOut(BaseModel):
    id: int
    activity_id: int
    student_id: int
    joined_at: datetime | None = None

    model_config = {"from_attributes": True}
