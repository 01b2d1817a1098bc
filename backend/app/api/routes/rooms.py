import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import Actor, get_current_actor, get_db, get_visible, require_admin_like, scoped_establishment_id
from app.core.exceptions import BusinessRuleError
from app.models.room import Room
from app.models.timetable import TimetableEntry
from app.schemas.room import RoomCreate, RoomOut, RoomUpdate
from app.services.audit import log_activity

router = APIRouter()
logger = logging.getLogger(__name__)


def _name_taken(db: Session, establishment_id: int, name: str, exclude_id: int | None = None) -> bool:
    query = select(Room.id).where(Room.establishment_id == establishment_id, Room.name == name)
    if exclude_id is not None:
        query = query.where(Room.id != exclude_id)
    return db.execute(query).first() is not None


@router.get("/", response_model=list[RoomOut])
def list_rooms(
    establishment_id: int | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[RoomOut]:
    scope = scoped_establishment_id(actor, establishment_id)
    return list(db.execute(select(Room).where(Room.establishment_id == scope).order_by(Room.name)).scalars())


@router.post("/", response_model=RoomOut, status_code=status.HTTP_201_CREATED)
def create_room(
    payload: RoomCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> RoomOut:
    establishment_id = scoped_establishment_id(actor, payload.establishment_id)
    if _name_taken(db, establishment_id, payload.name):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Room name already exists")
    room = Room(**payload.model_dump(exclude={"establishment_id"}), establishment_id=establishment_id)
    db.add(room)
    db.flush()
    log_activity(db, user=actor, action="room.create", entity_type="room", entity_id=room.id, details={"name": room.name})
    db.commit()
    db.refresh(room)
    logger.info("Room created: id=%s name=%s establishment=%s", room.id, room.name, establishment_id)
    return room


@router.put("/{room_id}", response_model=RoomOut)
def update_room(
    room_id: int,
    payload: RoomUpdate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> RoomOut:
    room = get_visible(db, actor, Room, room_id, "Room")
    data = payload.model_dump(exclude_unset=True)
    if data.get("name") and _name_taken(db, room.establishment_id, data["name"], exclude_id=room.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Room name already exists")

    for key, value in data.items():
        setattr(room, key, value)
    if data:
        log_activity(db, user=actor, action="room.update", entity_type="room", entity_id=room.id, details=data)
    db.commit()
    db.refresh(room)
    return room


@router.delete("/{room_id}")
def delete_room(
    room_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    room = get_visible(db, actor, Room, room_id, "Room")
    in_use = db.execute(select(TimetableEntry.id).where(TimetableEntry.room_id == room.id).limit(1)).first()
    if in_use is not None:
        raise BusinessRuleError("Cannot delete room that is used in timetables")
    log_activity(db, user=actor, action="room.delete", entity_type="room", entity_id=room.id)
    db.delete(room)
    db.commit()
    logger.info("Room deleted: id=%s", room_id)
    return {"success": True}
