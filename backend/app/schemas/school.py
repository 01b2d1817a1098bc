from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator, model_validator


def _required_text(value: str) -> str:
    trimmed = value.strip()
    if not trimmed:
        raise ValueError("Value cannot be empty")
    return trimmed


class AcademicYearCreate(BaseModel):
    label: str = Field(min_length=4, max_length=20)
    starts_on: date | None = None
    ends_on: date | None = None
    establishment_id: int | None = None

    @field_validator("label")
    @classmethod
    def normalize_label(cls, value: str) -> str:
        return _required_text(value)

    @model_validator(mode="after")
    def validate_order(self) -> "AcademicYearCreate":
        if self.starts_on and self.ends_on and self.ends_on <= self.starts_on:
            raise ValueError("ends_on must be after starts_on")
        return self


class AcademicYearUpdate(BaseModel):
    label: str | None = Field(default=None, min_length=4, max_length=20)
    starts_on: date | None = None
    ends_on: date | None = None


class AcademicYearOut(BaseModel):
    id: int
    label: str
    starts_on: date | None = None
    ends_on: date | None = None
    establishment_id: int

    model_config = {"from_attributes": True}


class SchoolClassCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    academic_year_id: int | None = None
    head_teacher_user_id: int | None = None
    room_id: int | None = None
    max_students: int | None = Field(default=None, ge=1, le=200)
    establishment_id: int | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        return _required_text(value)


class SchoolClassUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=50)
    academic_year_id: int | None = None
    head_teacher_user_id: int | None = None
    room_id: int | None = None
    max_students: int | None = Field(default=None, ge=1, le=200)


class SchoolClassOut(BaseModel):
    id: int
    name: str
    academic_year_id: int | None = None
    head_teacher_user_id: int | None = None
    room_id: int | None = None
    max_students: int | None = None
    establishment_id: int
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class SubjectCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    code: str = Field(min_length=1, max_length=20)
    coefficient: int = Field(default=1, ge=1, le=20)
    establishment_id: int | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        return _required_text(value)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return _required_text(value).upper()


class SubjectUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    code: str | None = Field(default=None, min_length=1, max_length=20)
    coefficient: int | None = Field(default=None, ge=1, le=20)

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str | None) -> str | None:
        return _required_text(value).upper() if value is not None else None


class SubjectOut(BaseModel):
    id: int
    name: str
    code: str
    coefficient: int
    establishment_id: int

    model_config = {"from_attributes": True}


class DepartmentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    head_user_id: int | None = None
    establishment_id: int | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        return _required_text(value)


class DepartmentUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    head_user_id: int | None = None


class DepartmentOut(BaseModel):
    id: int
    name: str
    head_user_id: int | None = None
    establishment_id: int

    model_config = {"from_attributes": True}


class TeacherCreate(BaseModel):
    user_id: int
    employee_number: str | None = Field(default=None, max_length=50)
    department_id: int | None = None
    establishment_id: int | None = None


class TeacherUpdate(BaseModel):
    employee_number: str | None = Field(default=None, max_length=50)
    department_id: int | None = None


class TeacherOut(BaseModel):
    id: int
    user_id: int
    name: str | None = None
    employee_number: str | None = None
    department_id: int | None = None
    establishment_id: int

    model_config = {"from_attributes": True}


class StudentCreate(BaseModel):
    registration_number: str = Field(min_length=1, max_length=30)
    name: str = Field(min_length=1, max_length=200)
    user_id: int | None = None
    class_id: int | None = None
    establishment_id: int | None = None

    @field_validator("name", "registration_number")
    @classmethod
    def normalize_text(cls, value: str) -> str:
        return _required_text(value)


class StudentUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    user_id: int | None = None
    class_id: int | None = None


class StudentOut(BaseModel):
    id: int
    registration_number: str
    name: str
    user_id: int | None = None
    class_id: int | None = None
    establishment_id: int
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class ParentLinkCreate(BaseModel):
    parent_user_id: int
    relationship: str = Field(default="parent", min_length=1, max_length=50)


class ParentLinkOut(BaseModel):
    id: int
    parent_user_id: int
    student_id: int
    relationship: str

    model_config = {"from_attributes": True}
