from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class RoomBase(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    capacity: int | None = Field(default=None, ge=1, le=1000)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Name cannot be empty")
        return trimmed


class RoomCreate(RoomBase):
    establishment_id: int | None = None


class RoomUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    capacity: int | None = Field(default=None, ge=1, le=1000)


class RoomOut(RoomBase):
    id: int
    establishment_id: int
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
