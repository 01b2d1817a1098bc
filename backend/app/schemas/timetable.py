from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from app.services.timetable_conflicts import DAY_VALUES, TIME_PATTERN, parse_time_to_minutes


def _validate_day(value: str) -> str:
    day = value.strip().capitalize()
    if day not in DAY_VALUES:
        raise ValueError("Invalid day value")
    return day


def _validate_time(value: str) -> str:
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM 24-hour format")
    return value


class PeriodCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    day_of_week: str
    start_time: str
    end_time: str
    rank: int = Field(default=0, ge=0)
    is_break: bool = False
    establishment_id: int | None = None

    @field_validator("day_of_week")
    @classmethod
    def validate_day(cls, value: str) -> str:
        return _validate_day(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        return _validate_time(value)

    @model_validator(mode="after")
    def validate_time_order(self) -> "PeriodCreate":
        if parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
            raise ValueError("End time must be after start time")
        return self


class PeriodUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    day_of_week: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    rank: int | None = Field(default=None, ge=0)
    is_break: bool | None = None

    @field_validator("day_of_week")
    @classmethod
    def validate_day(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _validate_day(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _validate_time(value)


class PeriodOut(BaseModel):
    id: int
    name: str
    day_of_week: str
    start_time: str
    end_time: str
    rank: int
    is_break: bool
    establishment_id: int

    model_config = {"from_attributes": True}


class EntryCreate(BaseModel):
    class_id: int
    subject_id: int
    teacher_id: int
    period_id: int
    room_id: int | None = None
    academic_year_id: int


class EntryUpdate(BaseModel):
    class_id: int | None = None
    subject_id: int | None = None
    teacher_id: int | None = None
    period_id: int | None = None
    room_id: int | None = None


class EntryOut(BaseModel):
    id: int
    class_id: int
    subject_id: int
    teacher_id: int
    period_id: int
    room_id: int | None = None
    academic_year_id: int
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class ScheduledEntryOut(EntryOut):
    day_of_week: str
    start_time: str
    end_time: str
    period_name: str
    rank: int


class BulkEntryItem(BaseModel):
    # Fields stay optional so one malformed item is reported instead of failing the batch.
    class_id: int | None = None
    subject_id: int | None = None
    teacher_id: int | None = None
    period_id: int | None = None
    room_id: int | None = None


class BulkEntryCreate(BaseModel):
    academic_year_id: int
    entries: list[BulkEntryItem] = Field(min_length=1, max_length=500)


class BulkEntryResultOut(BaseModel):
    index: int
    success: bool
    kind: str
    error: str | None = None
    entry: dict | None = None
    conflictWith: dict | None = None


class BulkEntryResponse(BaseModel):
    totalEntries: int
    successCount: int
    failureCount: int
    results: list[BulkEntryResultOut]
