from datetime import datetime

from pydantic import BaseModel, Field, field_validator


def _normalize_role_name(value: str) -> str:
    trimmed = value.strip().lower()
    if not trimmed:
        raise ValueError("Role name cannot be empty")
    return trimmed


class RoleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    establishment_id: int | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        return _normalize_role_name(value)


class RoleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_role_name(value)


class RoleOut(BaseModel):
    id: int
    name: str
    description: str | None = None
    establishment_id: int | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class RolePermissionAssign(BaseModel):
    permission_id: int


class PermissionBase(BaseModel):
    can_view: bool = False
    can_add: bool = False
    can_modify: bool = False
    can_delete: bool = False


class PermissionCreate(PermissionBase):
    functionality: str = Field(min_length=1, max_length=100)
    establishment_id: int | None = None

    @field_validator("functionality")
    @classmethod
    def normalize_functionality(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Functionality cannot be empty")
        return trimmed


class PermissionUpdate(BaseModel):
    functionality: str | None = Field(default=None, min_length=1, max_length=100)
    can_view: bool | None = None
    can_add: bool | None = None
    can_modify: bool | None = None
    can_delete: bool | None = None

    @field_validator("functionality")
    @classmethod
    def normalize_functionality(cls, value: str | None) -> str | None:
        if value is None:
            return None
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Functionality cannot be empty")
        return trimmed


class PermissionOut(PermissionBase):
    id: int
    functionality: str
    establishment_id: int | None = None

    model_config = {"from_attributes": True}
