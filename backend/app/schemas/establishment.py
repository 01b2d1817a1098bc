from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class EstablishmentCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=30)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Name cannot be empty")
        return trimmed

    @field_validator("code")
    @classmethod
    def normalize_code(cls, value: str) -> str:
        return value.strip().upper()


class EstablishmentOut(BaseModel):
    id: int
    name: str
    code: str
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
