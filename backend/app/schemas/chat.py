from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.chat import ChatRoomRole, ChatRoomType


class ChatRoomCreate(BaseModel):
    name: str = Field(min_length=1, max_length=150)
    description: str | None = Field(default=None, max_length=1000)
    type: ChatRoomType
    class_id: int | None = None
    department_id: int | None = None
    participant_ids: list[int] = Field(default_factory=list, max_length=500)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Name cannot be empty")
        return trimmed

    @model_validator(mode="after")
    def validate_scope(self) -> "ChatRoomCreate":
        if self.type in (ChatRoomType.school_class, ChatRoomType.parents) and self.class_id is None:
            raise ValueError("class_id is required for class and parents rooms")
        if self.type == ChatRoomType.department and self.department_id is None:
            raise ValueError("department_id is required for department rooms")
        return self


class ChatRoomOut(BaseModel):
    id: int
    name: str
    description: str | None = None
    type: ChatRoomType
    class_id: int | None = None
    department_id: int | None = None
    establishment_id: int | None = None
    created_by_id: int
    is_active: bool
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class ParticipantAdd(BaseModel):
    user_id: int
    role: ChatRoomRole = ChatRoomRole.member


class ParticipantRoleUpdate(BaseModel):
    role: ChatRoomRole


class ParticipantOut(BaseModel):
    id: int
    room_id: int
    user_id: int
    role: ChatRoomRole
    added_at: datetime | None = None

    model_config = {"from_attributes": True}


class ChatRoomDetailOut(ChatRoomOut):
    participants: list[ParticipantOut] = Field(default_factory=list)


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=5000)

    @field_validator("content")
    @classmethod
    def normalize_content(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Message cannot be empty")
        return trimmed


class MessageOut(BaseModel):
    id: int
    room_id: int
    sender_id: int
    content: str
    sent_at: datetime | None = None

    model_config = {"from_attributes": True}
