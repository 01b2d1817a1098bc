import logging
from collections import defaultdict
from functools import partial

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, func, select
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
from app.core.exceptions import BusinessRuleError, PermissionDeniedError, ResourceNotFoundError
from app.models.activity import Activity, ActivityParticipant
from app.models.exam import Exam, Grade
from app.models.homework import HomeworkSubmission
from app.models.school import ParentLink, SchoolClass, Student, Subject
from app.models.user import User
from app.schemas.activity import ActivityOut
from app.schemas.exam import BulletinOut, GradeOut, StudentGradeOut, SubjectAverageOut
from app.schemas.homework import SubmissionOut
from app.schemas.school import ParentLinkCreate, ParentLinkOut, StudentCreate, StudentOut, StudentUpdate
from app.services import relationship_facts
from app.services.audit import log_activity
from app.services.authorization import ADMIN_LIKE_ROLES, TEACHING_ROLES, can_view_student_data
from app.services.bulletins import BULLETIN_SCALE, ScoredGrade, promotion_decision, weighted_average

router = APIRouter()
logger = logging.getLogger(__name__)

require_teaching_staff = require_roles(*TEACHING_ROLES, *ADMIN_LIKE_ROLES)


def _get_viewable_student(db: Session, actor: Actor, student_id: int) -> Student:
    student = get_visible(db, actor, Student, student_id, "Student")
    is_parent = partial(relationship_facts.is_parent_of_student, db, actor.id, student.id)
    if not can_view_student_data(actor.id, student.user_id, actor.roles, is_parent):
        logger.warning("Student data access denied: student=%s user=%s", student_id, actor.id)
        raise PermissionDeniedError("Not authorized to view this student's data")
    return student


def _graded_rows(db: Session, student_id: int) -> list[tuple[Grade, Exam]]:
    return list(
        db.execute(
            select(Grade, Exam)
            .join(Exam, Exam.id == Grade.exam_id)
            .where(Grade.student_id == student_id)
            .order_by(Exam.exam_date, Exam.id)
        ).tuples()
    )


@router.get("/students/{student_id}/grades", response_model=list[StudentGradeOut])
def student_grades(
    student_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[StudentGradeOut]:
    student = _get_viewable_student(db, actor, student_id)
    return [
        StudentGradeOut(
            **GradeOut.model_validate(grade).model_dump(),
            exam_title=exam.title,
            subject_id=exam.subject_id,
            max_score=exam.max_score,
        )
        for grade, exam in _graded_rows(db, student.id)
    ]


@router.get("/students/{student_id}/bulletin", response_model=BulletinOut)
def student_bulletin(
    student_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> BulletinOut:
    student = _get_viewable_student(db, actor, student_id)
    by_subject: dict[int, list[ScoredGrade]] = defaultdict(list)
    for grade, exam in _graded_rows(db, student.id):
        by_subject[exam.subject_id].append(ScoredGrade(score=grade.score, max_score=exam.max_score, coefficient=1.0))

    subjects: dict[int, Subject] = {}
    if by_subject:
        rows = db.execute(select(Subject).where(Subject.id.in_(list(by_subject)))).scalars()
        subjects = {subject.id: subject for subject in rows}

    lines = []
    weighted = []
    for subject_id in sorted(by_subject):
        subject = subjects.get(subject_id)
        coefficient = float(subject.coefficient) if subject is not None else 1.0
        average = weighted_average(by_subject[subject_id])
        lines.append(
            SubjectAverageOut(
                subject_id=subject_id,
                subject_name=subject.name if subject is not None else "",
                coefficient=coefficient,
                average=average,
            )
        )
        if average is not None:
            weighted.append(ScoredGrade(score=average, max_score=BULLETIN_SCALE, coefficient=coefficient))

    general_average = weighted_average(weighted)
    return BulletinOut(
        student_id=student.id,
        class_id=student.class_id,
        subjects=lines,
        general_average=general_average,
        decision=promotion_decision(general_average),
    )


def _check_student_references(db: Session, establishment_id: int, data: dict, exclude_id: int | None = None) -> None:
    if data.get("user_id") is not None:
        get_in_establishment(db, User, data["user_id"], establishment_id, "User")
    if data.get("class_id") is not None:
        school_class = get_in_establishment(db, SchoolClass, data["class_id"], establishment_id, "Class")
        if school_class.max_students:
            query = select(func.count(Student.id)).where(Student.class_id == school_class.id)
            if exclude_id is not None:
                query = query.where(Student.id != exclude_id)
            if db.execute(query).scalar_one() >= school_class.max_students:
                raise BusinessRuleError("Class is full", details={"max_students": school_class.max_students})


@router.get("/students", response_model=list[StudentOut])
def list_students(
    establishment_id: int | None = None,
    class_id: int | None = None,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> list[StudentOut]:
    scope = scoped_establishment_id(actor, establishment_id)
    query = select(Student).where(Student.establishment_id == scope)
    if class_id is not None:
        query = query.where(Student.class_id == class_id)
    return list(db.execute(query.order_by(Student.name)).scalars())


@router.post("/students", response_model=StudentOut, status_code=status.HTTP_201_CREATED)
def create_student(
    payload: StudentCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> StudentOut:
    establishment_id = scoped_establishment_id(actor, payload.establishment_id)
    taken = db.execute(
        select(Student.id).where(Student.registration_number == payload.registration_number)
    ).first()
    if taken is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Registration number already exists")
    data = payload.model_dump(exclude={"establishment_id"})
    _check_student_references(db, establishment_id, data)

    student = Student(**data, establishment_id=establishment_id)
    db.add(student)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="student.create",
        entity_type="student",
        entity_id=student.id,
        details={"registration_number": student.registration_number},
    )
    db.commit()
    db.refresh(student)
    logger.info("Student created: id=%s class=%s establishment=%s", student.id, student.class_id, establishment_id)
    return student


@router.get("/students/{student_id}", response_model=StudentOut)
def get_student(
    student_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> StudentOut:
    return _get_viewable_student(db, actor, student_id)


@router.put("/students/{student_id}", response_model=StudentOut)
def update_student(
    student_id: int,
    payload: StudentUpdate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> StudentOut:
    student = get_visible(db, actor, Student, student_id, "Student")
    data = payload.model_dump(exclude_unset=True)
    if data.get("class_id") == student.class_id:
        data.pop("class_id")
    _check_student_references(db, student.establishment_id, data, exclude_id=student.id)

    for key, value in data.items():
        setattr(student, key, value)
    if data:
        log_activity(db, user=actor, action="student.update", entity_type="student", entity_id=student.id, details=data)
    db.commit()
    db.refresh(student)
    return student


@router.delete("/students/{student_id}")
def delete_student(
    student_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    student = get_visible(db, actor, Student, student_id, "Student")
    has_grades = db.execute(select(Grade.id).where(Grade.student_id == student.id).limit(1)).first()
    has_submissions = db.execute(
        select(HomeworkSubmission.id).where(HomeworkSubmission.student_id == student.id).limit(1)
    ).first()
    if has_grades is not None or has_submissions is not None:
        raise BusinessRuleError("Cannot delete student with recorded grades or submissions")

    db.execute(delete(ParentLink).where(ParentLink.student_id == student.id))
    db.execute(delete(ActivityParticipant).where(ActivityParticipant.student_id == student.id))
    log_activity(db, user=actor, action="student.delete", entity_type="student", entity_id=student.id)
    db.delete(student)
    db.commit()
    logger.info("Student deleted: id=%s", student_id)
    return {"success": True}


@router.get("/students/{student_id}/parents", response_model=list[ParentLinkOut])
def list_parent_links(
    student_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[ParentLinkOut]:
    student = _get_viewable_student(db, actor, student_id)
    return list(db.execute(select(ParentLink).where(ParentLink.student_id == student.id)).scalars())


@router.post("/students/{student_id}/parents", response_model=ParentLinkOut, status_code=status.HTTP_201_CREATED)
def link_parent(
    student_id: int,
    payload: ParentLinkCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> ParentLinkOut:
    student = get_visible(db, actor, Student, student_id, "Student")
    parent = get_in_establishment(db, User, payload.parent_user_id, student.establishment_id, "User")
    if relationship_facts.is_parent_of_student(db, parent.id, student.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Parent is already linked to this student")

    link = ParentLink(parent_user_id=parent.id, student_id=student.id, relationship=payload.relationship)
    db.add(link)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="student.link_parent",
        entity_type="student",
        entity_id=student.id,
        details={"parent_user_id": parent.id, "relationship": link.relationship},
    )
    db.commit()
    db.refresh(link)
    logger.info("Parent linked: student=%s parent=%s", student.id, parent.id)
    return link


@router.delete("/students/{student_id}/parents/{parent_user_id}")
def unlink_parent(
    student_id: int,
    parent_user_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    student = get_visible(db, actor, Student, student_id, "Student")
    link = db.execute(
        select(ParentLink).where(ParentLink.student_id == student.id, ParentLink.parent_user_id == parent_user_id)
    ).scalar_one_or_none()
    if link is None:
        raise ResourceNotFoundError("Parent link", parent_user_id)
    log_activity(
        db,
        user=actor,
        action="student.unlink_parent",
        entity_type="student",
        entity_id=student.id,
        details={"parent_user_id": parent_user_id},
    )
    db.delete(link)
    db.commit()
    return {"success": True}


@router.get("/students/{student_id}/submissions", response_model=list[SubmissionOut])
def student_submissions(
    student_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[SubmissionOut]:
    student = _get_viewable_student(db, actor, student_id)
    query = (
        select(HomeworkSubmission)
        .where(HomeworkSubmission.student_id == student.id)
        .order_by(HomeworkSubmission.submitted_at.desc(), HomeworkSubmission.id.desc())
    )
    return list(db.execute(query).scalars())


@router.get("/students/{student_id}/activities", response_model=list[ActivityOut])
def student_activities(
    student_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[ActivityOut]:
    student = _get_viewable_student(db, actor, student_id)
    query = (
        select(Activity)
        .join(ActivityParticipant, ActivityParticipant.activity_id == Activity.id)
        .where(ActivityParticipant.student_id == student.id)
        .order_by(Activity.name)
    )
    return list(db.execute(query).scalars())
