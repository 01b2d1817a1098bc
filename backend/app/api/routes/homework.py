import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import Actor, get_current_actor, get_db, get_visible, require_roles
from app.core.exceptions import BusinessRuleError, PermissionDeniedError, ResourceNotFoundError
from app.models.homework import Homework, HomeworkSubmission, SubmissionStatus
from app.models.school import SchoolClass, Student, Subject
from app.schemas.homework import (
    HomeworkCreate,
    HomeworkOut,
    HomeworkUpdate,
    SubmissionCreate,
    SubmissionGrade,
    SubmissionOut,
)
from app.services.audit import log_activity
from app.services.authorization import ADMIN_LIKE_ROLES, TEACHING_ROLES, can_manage_own_resource

router = APIRouter()
logger = logging.getLogger(__name__)

require_teaching_staff = require_roles(*TEACHING_ROLES, *ADMIN_LIKE_ROLES)


def _require_owner(actor: Actor, homework: Homework) -> None:
    if not can_manage_own_resource(actor.id, homework.created_by_id, actor.roles):
        logger.warning("Homework ownership check denied: homework=%s user=%s", homework.id, actor.id)
        raise PermissionDeniedError("You can only manage homework you created", code="not_owner")


@router.get("/", response_model=list[HomeworkOut])
def list_homework(
    class_id: int | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[HomeworkOut]:
    query = select(Homework).order_by(Homework.due_date, Homework.id)
    if not actor.is_superadmin:
        query = query.where(Homework.establishment_id == actor.establishment_id)
    if class_id is not None:
        query = query.where(Homework.class_id == class_id)
    return list(db.execute(query).scalars())


@router.get("/{homework_id}", response_model=HomeworkOut)
def get_homework(
    homework_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> HomeworkOut:
    return get_visible(db, actor, Homework, homework_id, "Homework")


@router.post("/", response_model=HomeworkOut, status_code=status.HTTP_201_CREATED)
def create_homework(
    payload: HomeworkCreate,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> HomeworkOut:
    school_class = get_visible(db, actor, SchoolClass, payload.class_id, "Class")
    subject = get_visible(db, actor, Subject, payload.subject_id, "Subject")
    if subject.establishment_id != school_class.establishment_id:
        raise ResourceNotFoundError("Subject", payload.subject_id)

    homework = Homework(
        **payload.model_dump(),
        created_by_id=actor.id,
        establishment_id=school_class.establishment_id,
    )
    db.add(homework)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="homework.create",
        entity_type="homework",
        entity_id=homework.id,
        details={"title": homework.title, "class_id": homework.class_id},
    )
    db.commit()
    db.refresh(homework)
    logger.info("Homework created: id=%s class=%s by=%s", homework.id, homework.class_id, actor.id)
    return homework


@router.put("/{homework_id}", response_model=HomeworkOut)
def update_homework(
    homework_id: int,
    payload: HomeworkUpdate,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> HomeworkOut:
    homework = get_visible(db, actor, Homework, homework_id, "Homework")
    _require_owner(actor, homework)
    data = payload.model_dump(exclude_unset=True)
    for key, value in data.items():
        setattr(homework, key, value)
    if data:
        log_activity(
            db,
            user=actor,
            action="homework.update",
            entity_type="homework",
            entity_id=homework.id,
            details=payload.model_dump(mode="json", exclude_unset=True),
        )
    db.commit()
    db.refresh(homework)
    return homework


@router.delete("/{homework_id}")
def delete_homework(
    homework_id: int,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> dict:
    homework = get_visible(db, actor, Homework, homework_id, "Homework")
    _require_owner(actor, homework)
    submitted = db.execute(
        select(HomeworkSubmission.id).where(HomeworkSubmission.homework_id == homework.id).limit(1)
    ).first()
    if submitted is not None:
        raise BusinessRuleError("Cannot delete homework that already has submissions")
    log_activity(db, user=actor, action="homework.delete", entity_type="homework", entity_id=homework.id)
    db.delete(homework)
    db.commit()
    logger.info("Homework deleted: id=%s by=%s", homework_id, actor.id)
    return {"success": True}


@router.get("/{homework_id}/submissions", response_model=list[SubmissionOut])
def list_submissions(
    homework_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[SubmissionOut]:
    homework = get_visible(db, actor, Homework, homework_id, "Homework")
    _require_owner(actor, homework)
    query = (
        select(HomeworkSubmission)
        .where(HomeworkSubmission.homework_id == homework.id)
        .order_by(HomeworkSubmission.submitted_at, HomeworkSubmission.id)
    )
    return list(db.execute(query).scalars())


@router.post("/{homework_id}/submissions", response_model=SubmissionOut, status_code=status.HTTP_201_CREATED)
def submit_homework(
    homework_id: int,
    payload: SubmissionCreate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> SubmissionOut:
    homework = get_visible(db, actor, Homework, homework_id, "Homework")
    student = db.execute(select(Student).where(Student.user_id == actor.id)).scalar_one_or_none()
    if student is None:
        raise PermissionDeniedError("Only students can submit homework")
    if student.class_id != homework.class_id:
        raise PermissionDeniedError("This homework is not assigned to your class")
    existing = db.execute(
        select(HomeworkSubmission.id).where(
            HomeworkSubmission.homework_id == homework.id,
            HomeworkSubmission.student_id == student.id,
        )
    ).first()
    if existing is not None:
        raise BusinessRuleError("You have already submitted this homework assignment")

    submission = HomeworkSubmission(homework_id=homework.id, student_id=student.id, content=payload.content)
    db.add(submission)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="homework.submit",
        entity_type="homework",
        entity_id=homework.id,
        details={"submission_id": submission.id},
    )
    db.commit()
    db.refresh(submission)
    logger.info("Homework submitted: homework=%s student=%s", homework.id, student.id)
    return submission


@router.put("/{homework_id}/submissions/{submission_id}/grade", response_model=SubmissionOut)
def grade_submission(
    homework_id: int,
    submission_id: int,
    payload: SubmissionGrade,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> SubmissionOut:
    homework = get_visible(db, actor, Homework, homework_id, "Homework")
    _require_owner(actor, homework)
    submission = db.get(HomeworkSubmission, submission_id)
    if submission is None or submission.homework_id != homework.id:
        raise ResourceNotFoundError("Submission", submission_id)

    submission.score = payload.score
    submission.feedback = payload.feedback
    submission.status = SubmissionStatus.graded
    submission.graded_by_id = actor.id
    submission.graded_at = datetime.now(timezone.utc)
    log_activity(
        db,
        user=actor,
        action="homework.grade",
        entity_type="homework",
        entity_id=homework.id,
        details={"submission_id": submission.id, "score": payload.score},
    )
    db.commit()
    db.refresh(submission)
    return submission
