import logging
from functools import partial

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import Actor, get_current_actor, get_db, get_visible
from app.core.exceptions import PermissionDeniedError, ResourceNotFoundError
from app.models.chat import ChatMessage, ChatRoom, ChatRoomParticipant, ChatRoomRole, ChatRoomType
from app.models.school import Department, SchoolClass
from app.models.user import User
from app.schemas.chat import (
    ChatRoomCreate,
    ChatRoomDetailOut,
    ChatRoomOut,
    MessageCreate,
    MessageOut,
    ParticipantAdd,
    ParticipantOut,
    ParticipantRoleUpdate,
)
from app.services import relationship_facts
from app.services.audit import log_activity
from app.services.authorization import ChatAction, Decision, can_create_chat_room, chat_room_action_allowed

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_room(db: Session, room_id: int) -> ChatRoom:
    room = db.get(ChatRoom, room_id)
    if room is None or not room.is_active:
        raise ResourceNotFoundError("Chat room", room_id)
    return room


def _require_participant(db: Session, room: ChatRoom, actor: Actor) -> ChatRoomParticipant:
    participant = relationship_facts.get_room_participant(db, room.id, actor.id)
    if participant is None:
        raise PermissionDeniedError("You are not a participant in this chat room", code="not_participant")
    return participant


def _enforce(decision: Decision, *, room_id: int | None, actor_id: int, action: str) -> None:
    if decision:
        return
    logger.warning(
        "Chat action denied: room=%s user=%s action=%s reason=%s",
        room_id,
        actor_id,
        action,
        decision.reason,
    )
    raise PermissionDeniedError(decision.reason, code=decision.code)


def _initial_members(db: Session, payload: ChatRoomCreate, establishment_id: int | None) -> dict[int, ChatRoomRole]:
    """Snapshot of the roster for scoped rooms; later roster changes are not synced."""
    members: dict[int, ChatRoomRole] = {}
    if payload.type == ChatRoomType.school_class:
        for user_id in relationship_facts.class_student_user_ids(db, payload.class_id):
            members[user_id] = ChatRoomRole.member
        for user_id in relationship_facts.class_teacher_user_ids(db, payload.class_id):
            members[user_id] = ChatRoomRole.moderator
    elif payload.type == ChatRoomType.parents:
        for user_id in relationship_facts.class_parent_user_ids(db, payload.class_id):
            members[user_id] = ChatRoomRole.member
        for user_id in relationship_facts.class_teacher_user_ids(db, payload.class_id):
            members[user_id] = ChatRoomRole.moderator
    elif payload.type == ChatRoomType.department:
        for user_id in relationship_facts.department_teacher_user_ids(db, payload.department_id):
            members[user_id] = ChatRoomRole.member
        department = db.get(Department, payload.department_id)
        if department is not None and department.head_user_id is not None:
            members[department.head_user_id] = ChatRoomRole.moderator

    if payload.participant_ids:
        # Users of other establishments are ignored like unknown ids.
        known = set(
            db.execute(
                select(User.id).where(
                    User.id.in_(payload.participant_ids),
                    User.establishment_id == establishment_id,
                )
            ).scalars()
        )
        for user_id in payload.participant_ids:
            if user_id in known:
                members.setdefault(user_id, ChatRoomRole.member)
    return members


def _participants(db: Session, room_id: int) -> list[ChatRoomParticipant]:
    return list(
        db.execute(
            select(ChatRoomParticipant)
            .where(ChatRoomParticipant.room_id == room_id)
            .order_by(ChatRoomParticipant.id)
        ).scalars()
    )


@router.post("/rooms", response_model=ChatRoomDetailOut, status_code=status.HTTP_201_CREATED)
def create_room(
    payload: ChatRoomCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> ChatRoomDetailOut:
    membership_fact = None
    establishment_id = actor.establishment_id
    if payload.type in (ChatRoomType.school_class, ChatRoomType.parents):
        school_class = get_visible(db, actor, SchoolClass, payload.class_id, "Class")
        establishment_id = school_class.establishment_id
        membership_fact = partial(relationship_facts.is_teacher_in_class, db, actor.id, payload.class_id)
    elif payload.type == ChatRoomType.department:
        department = get_visible(db, actor, Department, payload.department_id, "Department")
        establishment_id = department.establishment_id
        membership_fact = partial(relationship_facts.is_teacher_in_department, db, actor.id, payload.department_id)

    decision = can_create_chat_room(payload.type.value, actor.roles, membership_fact)
    _enforce(decision, room_id=None, actor_id=actor.id, action="create_room")

    room = ChatRoom(
        name=payload.name,
        description=payload.description,
        type=payload.type,
        class_id=payload.class_id,
        department_id=payload.department_id,
        establishment_id=establishment_id,
        created_by_id=actor.id,
    )
    db.add(room)
    db.flush()

    members = _initial_members(db, payload, establishment_id)
    # The creator always administers the room.
    members[actor.id] = ChatRoomRole.admin
    for user_id, role in members.items():
        db.add(ChatRoomParticipant(room_id=room.id, user_id=user_id, role=role))
    log_activity(
        db,
        user=actor,
        action="chat.room.create",
        entity_type="chat_room",
        entity_id=room.id,
        details={"type": payload.type.value, "participants": len(members)},
    )
    db.commit()
    db.refresh(room)
    logger.info("Chat room created: id=%s type=%s participants=%s", room.id, room.type.value, len(members))
    return ChatRoomDetailOut(
        **ChatRoomOut.model_validate(room).model_dump(),
        participants=[ParticipantOut.model_validate(item) for item in _participants(db, room.id)],
    )


@router.get("/rooms", response_model=list[ChatRoomOut])
def list_rooms(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)) -> list[ChatRoomOut]:
    return list(
        db.execute(
            select(ChatRoom)
            .join(ChatRoomParticipant, ChatRoomParticipant.room_id == ChatRoom.id)
            .where(ChatRoomParticipant.user_id == actor.id, ChatRoom.is_active.is_(True))
            .order_by(ChatRoom.created_at.desc(), ChatRoom.id.desc())
        ).scalars()
    )


@router.get("/rooms/{room_id}", response_model=ChatRoomDetailOut)
def get_room(room_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)) -> ChatRoomDetailOut:
    room = _get_room(db, room_id)
    _require_participant(db, room, actor)
    return ChatRoomDetailOut(
        **ChatRoomOut.model_validate(room).model_dump(),
        participants=[ParticipantOut.model_validate(item) for item in _participants(db, room.id)],
    )


@router.post("/rooms/{room_id}/participants", response_model=ParticipantOut, status_code=status.HTTP_201_CREATED)
def add_participant(
    room_id: int,
    payload: ParticipantAdd,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> ParticipantOut:
    room = _get_room(db, room_id)
    participant = relationship_facts.get_room_participant(db, room.id, actor.id)
    decision = chat_room_action_allowed(
        participant.role.value if participant is not None else None,
        ChatAction.add_participant,
        payload.role.value,
    )
    _enforce(decision, room_id=room.id, actor_id=actor.id, action=ChatAction.add_participant.value)

    user = db.get(User, payload.user_id)
    if user is None or user.establishment_id != room.establishment_id:
        raise ResourceNotFoundError("User", payload.user_id)
    if relationship_facts.get_room_participant(db, room.id, payload.user_id) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User is already a participant in this chat room")

    added = ChatRoomParticipant(room_id=room.id, user_id=payload.user_id, role=payload.role)
    db.add(added)
    log_activity(
        db,
        user=actor,
        action="chat.participant.add",
        entity_type="chat_room",
        entity_id=room.id,
        details={"user_id": payload.user_id, "role": payload.role.value},
    )
    db.commit()
    db.refresh(added)
    return added


@router.put("/rooms/{room_id}/participants/{user_id}", response_model=ParticipantOut)
def update_participant_role(
    room_id: int,
    user_id: int,
    payload: ParticipantRoleUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> ParticipantOut:
    room = _get_room(db, room_id)
    participant = relationship_facts.get_room_participant(db, room.id, actor.id)
    target = relationship_facts.get_room_participant(db, room.id, user_id)
    if participant is not None and target is None:
        raise ResourceNotFoundError("Chat room participant", user_id)
    decision = chat_room_action_allowed(
        participant.role.value if participant is not None else None,
        ChatAction.change_role,
        target.role.value if target is not None else None,
        is_self=user_id == actor.id,
        new_role=payload.role.value,
        admin_count=partial(relationship_facts.count_room_admins, db, room.id),
    )
    _enforce(decision, room_id=room.id, actor_id=actor.id, action=ChatAction.change_role.value)

    if target.role != payload.role:
        log_activity(
            db,
            user=actor,
            action="chat.participant.role",
            entity_type="chat_room",
            entity_id=room.id,
            details={"user_id": user_id, "from": target.role.value, "to": payload.role.value},
        )
        target.role = payload.role
        db.commit()
        db.refresh(target)
    return target


@router.delete("/rooms/{room_id}/participants/{user_id}")
def remove_participant(
    room_id: int,
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> dict:
    room = _get_room(db, room_id)
    participant = relationship_facts.get_room_participant(db, room.id, actor.id)
    target = relationship_facts.get_room_participant(db, room.id, user_id)
    if participant is not None and target is None:
        raise ResourceNotFoundError("Chat room participant", user_id)
    leaving = user_id == actor.id
    action = ChatAction.leave if leaving else ChatAction.remove_participant
    decision = chat_room_action_allowed(
        participant.role.value if participant is not None else None,
        action,
        target.role.value if target is not None else None,
        is_self=leaving,
        admin_count=partial(relationship_facts.count_room_admins, db, room.id),
    )
    _enforce(decision, room_id=room.id, actor_id=actor.id, action=action.value)

    db.delete(target)
    log_activity(
        db,
        user=actor,
        action=f"chat.participant.{action.value}",
        entity_type="chat_room",
        entity_id=room.id,
        details={"user_id": user_id},
    )
    db.commit()
    logger.info("Chat participant removed: room=%s user=%s by=%s", room.id, user_id, actor.id)
    return {"success": True}


@router.get("/rooms/{room_id}/messages", response_model=list[MessageOut])
def list_messages(
    room_id: int,
    limit: int = 50,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[MessageOut]:
    room = _get_room(db, room_id)
    _require_participant(db, room, actor)
    limit = max(1, min(limit, 200))
    messages = list(
        db.execute(
            select(ChatMessage)
            .where(ChatMessage.room_id == room.id)
            .order_by(ChatMessage.id.desc())
            .limit(limit)
        ).scalars()
    )
    messages.reverse()
    return messages


@router.post("/rooms/{room_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
def post_message(
    room_id: int,
    payload: MessageCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> MessageOut:
    room = _get_room(db, room_id)
    _require_participant(db, room, actor)
    message = ChatMessage(room_id=room.id, sender_id=actor.id, content=payload.content)
    db.add(message)
    db.commit()
    db.refresh(message)
    return message
