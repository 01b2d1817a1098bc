import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import Actor, get_current_actor, get_db, get_visible, require_roles
from app.core.exceptions import BusinessRuleError, PermissionDeniedError, ResourceNotFoundError
from app.models.exam import Exam, Grade
from app.models.school import SchoolClass, Student, Subject
from app.schemas.exam import ExamCreate, ExamOut, ExamUpdate, GradeCreate, GradeOut
from app.services.audit import log_activity
from app.services.authorization import ADMIN_LIKE_ROLES, TEACHING_ROLES, can_manage_own_resource

router = APIRouter()
logger = logging.getLogger(__name__)

require_teaching_staff = require_roles(*TEACHING_ROLES, *ADMIN_LIKE_ROLES)


def _get_exam(db: Session, actor: Actor, exam_id: int) -> Exam:
    return get_visible(db, actor, Exam, exam_id, "Exam")


def _require_owner(actor: Actor, exam: Exam) -> None:
    if not can_manage_own_resource(actor.id, exam.teacher_user_id, actor.roles):
        logger.warning("Exam ownership check denied: exam=%s user=%s", exam.id, actor.id)
        raise PermissionDeniedError("You can only manage exams you created", code="not_owner")


@router.get("/", response_model=list[ExamOut])
def list_exams(
    class_id: int | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[ExamOut]:
    query = select(Exam).order_by(Exam.exam_date, Exam.id)
    if not actor.is_superadmin:
        query = query.where(Exam.establishment_id == actor.establishment_id)
    if class_id is not None:
        query = query.where(Exam.class_id == class_id)
    return list(db.execute(query).scalars())


@router.post("/", response_model=ExamOut, status_code=status.HTTP_201_CREATED)
def create_exam(
    payload: ExamCreate,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> ExamOut:
    school_class = get_visible(db, actor, SchoolClass, payload.class_id, "Class")
    subject = get_visible(db, actor, Subject, payload.subject_id, "Subject")
    if subject.establishment_id != school_class.establishment_id:
        raise ResourceNotFoundError("Subject", payload.subject_id)

    exam = Exam(**payload.model_dump(), teacher_user_id=actor.id, establishment_id=school_class.establishment_id)
    db.add(exam)
    db.flush()
    log_activity(db, user=actor, action="exam.create", entity_type="exam", entity_id=exam.id, details={"title": exam.title})
    db.commit()
    db.refresh(exam)
    logger.info("Exam created: id=%s class=%s by=%s", exam.id, exam.class_id, actor.id)
    return exam


@router.put("/{exam_id}", response_model=ExamOut)
def update_exam(
    exam_id: int,
    payload: ExamUpdate,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> ExamOut:
    exam = _get_exam(db, actor, exam_id)
    _require_owner(actor, exam)
    data = payload.model_dump(exclude_unset=True)
    for key, value in data.items():
        setattr(exam, key, value)
    if data:
        log_activity(
            db,
            user=actor,
            action="exam.update",
            entity_type="exam",
            entity_id=exam.id,
            details=payload.model_dump(mode="json", exclude_unset=True),
        )
    db.commit()
    db.refresh(exam)
    return exam


@router.delete("/{exam_id}")
def delete_exam(
    exam_id: int,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> dict:
    exam = _get_exam(db, actor, exam_id)
    _require_owner(actor, exam)
    for grade in db.execute(select(Grade).where(Grade.exam_id == exam.id)).scalars():
        db.delete(grade)
    log_activity(db, user=actor, action="exam.delete", entity_type="exam", entity_id=exam.id)
    db.delete(exam)
    db.commit()
    logger.info("Exam deleted: id=%s by=%s", exam_id, actor.id)
    return {"success": True}


@router.get("/{exam_id}/grades", response_model=list[GradeOut])
def list_exam_grades(
    exam_id: int,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> list[GradeOut]:
    exam = _get_exam(db, actor, exam_id)
    _require_owner(actor, exam)
    return list(db.execute(select(Grade).where(Grade.exam_id == exam.id).order_by(Grade.student_id)).scalars())


@router.post("/{exam_id}/grades", response_model=GradeOut)
def record_grade(
    exam_id: int,
    payload: GradeCreate,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> GradeOut:
    exam = _get_exam(db, actor, exam_id)
    _require_owner(actor, exam)
    student = get_visible(db, actor, Student, payload.student_id, "Student")
    if student.class_id != exam.class_id:
        raise BusinessRuleError("Student is not enrolled in the exam's class")
    if payload.score > exam.max_score:
        raise BusinessRuleError(
            f"Score cannot exceed the exam maximum of {exam.max_score:g}",
            details={"maxScore": exam.max_score},
        )

    grade = db.execute(
        select(Grade).where(Grade.exam_id == exam.id, Grade.student_id == student.id)
    ).scalar_one_or_none()
    if grade is None:
        grade = Grade(exam_id=exam.id, student_id=student.id, score=payload.score)
        db.add(grade)
    grade.score = payload.score
    grade.comment = payload.comment
    grade.graded_by_id = actor.id
    db.flush()
    log_activity(
        db,
        user=actor,
        action="exam.grade",
        entity_type="exam",
        entity_id=exam.id,
        details={"student_id": student.id, "score": payload.score},
    )
    db.commit()
    db.refresh(grade)
    return grade
