import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import (
    Actor,
    get_current_actor,
    get_db,
    get_in_establishment,
    get_visible,
    require_admin_like,
    require_roles,
    scoped_establishment_id,
)
from app.core.exceptions import BusinessRuleError
from app.models.room import Room
from app.models.school import AcademicYear, SchoolClass, Student
from app.models.timetable import TimetableEntry
from app.models.user import User
from app.schemas.school import SchoolClassCreate, SchoolClassOut, SchoolClassUpdate, StudentOut
from app.services.audit import log_activity
from app.services.authorization import ADMIN_LIKE_ROLES, TEACHING_ROLES

router = APIRouter()
logger = logging.getLogger(__name__)

require_teaching_staff = require_roles(*TEACHING_ROLES, *ADMIN_LIKE_ROLES)


def _check_references(db: Session, establishment_id: int, data: dict) -> None:
    if data.get("academic_year_id") is not None:
        get_in_establishment(db, AcademicYear, data["academic_year_id"], establishment_id, "Academic year")
    if data.get("head_teacher_user_id") is not None:
        get_in_establishment(db, User, data["head_teacher_user_id"], establishment_id, "User")
    if data.get("room_id") is not None:
        get_in_establishment(db, Room, data["room_id"], establishment_id, "Room")


@router.get("/", response_model=list[SchoolClassOut])
def list_classes(
    establishment_id: int | None = None,
    academic_year_id: int | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[SchoolClassOut]:
    scope = scoped_establishment_id(actor, establishment_id)
    query = select(SchoolClass).where(SchoolClass.establishment_id == scope)
    if academic_year_id is not None:
        query = query.where(SchoolClass.academic_year_id == academic_year_id)
    return list(db.execute(query.order_by(SchoolClass.name)).scalars())


@router.get("/{class_id}", response_model=SchoolClassOut)
def get_class(class_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)) -> SchoolClassOut:
    return get_visible(db, actor, SchoolClass, class_id, "Class")


@router.get("/{class_id}/students", response_model=list[StudentOut])
def list_class_students(
    class_id: int,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> list[StudentOut]:
    school_class = get_visible(db, actor, SchoolClass, class_id, "Class")
    query = select(Student).where(Student.class_id == school_class.id).order_by(Student.name)
    return list(db.execute(query).scalars())


@router.post("/", response_model=SchoolClassOut, status_code=status.HTTP_201_CREATED)
def create_class(
    payload: SchoolClassCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> SchoolClassOut:
    establishment_id = scoped_establishment_id(actor, payload.establishment_id)
    data = payload.model_dump(exclude={"establishment_id"})
    _check_references(db, establishment_id, data)

    school_class = SchoolClass(**data, establishment_id=establishment_id)
    db.add(school_class)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="class.create",
        entity_type="class",
        entity_id=school_class.id,
        details={"name": school_class.name},
    )
    db.commit()
    db.refresh(school_class)
    logger.info("Class created: id=%s name=%s establishment=%s", school_class.id, school_class.name, establishment_id)
    return school_class


@router.put("/{class_id}", response_model=SchoolClassOut)
def update_class(
    class_id: int,
    payload: SchoolClassUpdate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> SchoolClassOut:
    school_class = get_visible(db, actor, SchoolClass, class_id, "Class")
    data = payload.model_dump(exclude_unset=True)
    _check_references(db, school_class.establishment_id, data)
    if data.get("max_students") is not None:
        enrolled = len(db.execute(select(Student.id).where(Student.class_id == school_class.id)).all())
        if enrolled > data["max_students"]:
            raise BusinessRuleError(
                "Class already has more students than the new capacity",
                details={"enrolled": enrolled},
            )

    for key, value in data.items():
        setattr(school_class, key, value)
    if data:
        log_activity(db, user=actor, action="class.update", entity_type="class", entity_id=school_class.id, details=data)
    db.commit()
    db.refresh(school_class)
    return school_class


@router.delete("/{class_id}")
def delete_class(
    class_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    school_class = get_visible(db, actor, SchoolClass, class_id, "Class")
    has_students = db.execute(select(Student.id).where(Student.class_id == school_class.id).limit(1)).first()
    has_entries = db.execute(
        select(TimetableEntry.id).where(TimetableEntry.class_id == school_class.id).limit(1)
    ).first()
    if has_students is not None or has_entries is not None:
        raise BusinessRuleError("Cannot delete class that has students or timetable entries")
    log_activity(db, user=actor, action="class.delete", entity_type="class", entity_id=school_class.id)
    db.delete(school_class)
    db.commit()
    logger.info("Class deleted: id=%s", class_id)
    return {"success": True}
