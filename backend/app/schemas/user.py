from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.models.user import UserStatus


class UserBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    establishment_id: int | None = None

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Name cannot be empty")
        return trimmed

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class UserCreate(UserBase):
    password: str = Field(min_length=8, max_length=128)


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class UserOut(UserBase):
    id: int
    status: UserStatus
    roles: list[str] = Field(default_factory=list)
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_user(cls, user, roles) -> "UserOut":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            establishment_id=user.establishment_id,
            status=user.status,
            roles=sorted(roles),
            created_at=user.created_at,
        )


class UserStatusUpdate(BaseModel):
    status: UserStatus


class UserRoleAssign(BaseModel):
    role_id: int


class Token(BaseModel):
    access_token: str
    token_type: str
    user: UserOut
