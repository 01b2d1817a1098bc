import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import (
    Actor,
    get_current_actor,
    get_db,
    get_in_establishment,
    get_visible,
    require_admin_like,
    scoped_establishment_id,
)
from app.core.exceptions import BusinessRuleError
from app.models.school import Department, Teacher
from app.models.timetable import TimetableEntry
from app.models.user import User
from app.schemas.school import TeacherCreate, TeacherOut, TeacherUpdate
from app.services.audit import log_activity

router = APIRouter()
logger = logging.getLogger(__name__)


def _teacher_out(teacher: Teacher, user: User | None) -> TeacherOut:
    out = TeacherOut.model_validate(teacher)
    out.name = user.name if user is not None else None
    return out


@router.get("/", response_model=list[TeacherOut])
def list_teachers(
    establishment_id: int | None = None,
    department_id: int | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[TeacherOut]:
    scope = scoped_establishment_id(actor, establishment_id)
    query = (
        select(Teacher, User)
        .outerjoin(User, User.id == Teacher.user_id)
        .where(Teacher.establishment_id == scope)
        .order_by(User.name)
    )
    if department_id is not None:
        query = query.where(Teacher.department_id == department_id)
    return [_teacher_out(teacher, user) for teacher, user in db.execute(query).tuples()]


@router.get("/{teacher_id}", response_model=TeacherOut)
def get_teacher(teacher_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)) -> TeacherOut:
    teacher = get_visible(db, actor, Teacher, teacher_id, "Teacher")
    return _teacher_out(teacher, db.get(User, teacher.user_id))


@router.post("/", response_model=TeacherOut, status_code=status.HTTP_201_CREATED)
def create_teacher(
    payload: TeacherCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> TeacherOut:
    establishment_id = scoped_establishment_id(actor, payload.establishment_id)
    user = get_in_establishment(db, User, payload.user_id, establishment_id, "User")
    if db.execute(select(Teacher.id).where(Teacher.user_id == user.id)).first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already has a teacher profile")
    if payload.department_id is not None:
        get_in_establishment(db, Department, payload.department_id, establishment_id, "Department")

    teacher = Teacher(
        user_id=user.id,
        employee_number=payload.employee_number,
        department_id=payload.department_id,
        establishment_id=establishment_id,
    )
    db.add(teacher)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="teacher.create",
        entity_type="teacher",
        entity_id=teacher.id,
        details={"user_id": user.id},
    )
    db.commit()
    db.refresh(teacher)
    logger.info("Teacher profile created: id=%s user=%s", teacher.id, user.id)
    return _teacher_out(teacher, user)


@router.put("/{teacher_id}", response_model=TeacherOut)
def update_teacher(
    teacher_id: int,
    payload: TeacherUpdate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> TeacherOut:
    teacher = get_visible(db, actor, Teacher, teacher_id, "Teacher")
    data = payload.model_dump(exclude_unset=True)
    if data.get("department_id") is not None:
        get_in_establishment(db, Department, data["department_id"], teacher.establishment_id, "Department")

    for key, value in data.items():
        setattr(teacher, key, value)
    if data:
        log_activity(db, user=actor, action="teacher.update", entity_type="teacher", entity_id=teacher.id, details=data)
    db.commit()
    db.refresh(teacher)
    return _teacher_out(teacher, db.get(User, teacher.user_id))


@router.delete("/{teacher_id}")
def delete_teacher(
    teacher_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    teacher = get_visible(db, actor, Teacher, teacher_id, "Teacher")
    scheduled = db.execute(select(TimetableEntry.id).where(TimetableEntry.teacher_id == teacher.id).limit(1)).first()
    if scheduled is not None:
        raise BusinessRuleError("Cannot delete teacher who is scheduled in timetables")
    log_activity(db, user=actor, action="teacher.delete", entity_type="teacher", entity_id=teacher.id)
    db.delete(teacher)
    db.commit()
    logger.info("Teacher profile deleted: id=%s", teacher_id)
    return {"success": True}
