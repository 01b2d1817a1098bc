import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import Actor, get_current_actor, get_db, get_visible, require_admin_like, scoped_establishment_id
from app.core.exceptions import BusinessRuleError
from app.models.exam import Exam
from app.models.homework import Homework
from app.models.school import Subject
from app.models.timetable import TimetableEntry
from app.schemas.school import SubjectCreate, SubjectOut, SubjectUpdate
from app.services.audit import log_activity

router = APIRouter()
logger = logging.getLogger(__name__)


def _code_taken(db: Session, establishment_id: int, code: str, exclude_id: int | None = None) -> bool:
    query = select(Subject.id).where(Subject.establishment_id == establishment_id, Subject.code == code)
    if exclude_id is not None:
        query = query.where(Subject.id != exclude_id)
    return db.execute(query).first() is not None


@router.get("/", response_model=list[SubjectOut])
def list_subjects(
    establishment_id: int | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[SubjectOut]:
    scope = scoped_establishment_id(actor, establishment_id)
    return list(db.execute(select(Subject).where(Subject.establishment_id == scope).order_by(Subject.name)).scalars())


@router.get("/{subject_id}", response_model=SubjectOut)
def get_subject(subject_id: int, actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)) -> SubjectOut:
    return get_visible(db, actor, Subject, subject_id, "Subject")


@router.post("/", response_model=SubjectOut, status_code=status.HTTP_201_CREATED)
def create_subject(
    payload: SubjectCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> SubjectOut:
    establishment_id = scoped_establishment_id(actor, payload.establishment_id)
    if _code_taken(db, establishment_id, payload.code):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Subject code already exists")
    subject = Subject(**payload.model_dump(exclude={"establishment_id"}), establishment_id=establishment_id)
    db.add(subject)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="subject.create",
        entity_type="subject",
        entity_id=subject.id,
        details={"code": subject.code},
    )
    db.commit()
    db.refresh(subject)
    logger.info("Subject created: id=%s code=%s establishment=%s", subject.id, subject.code, establishment_id)
    return subject


@router.put("/{subject_id}", response_model=SubjectOut)
def update_subject(
    subject_id: int,
    payload: SubjectUpdate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> SubjectOut:
    subject = get_visible(db, actor, Subject, subject_id, "Subject")
    data = payload.model_dump(exclude_unset=True)
    if data.get("code") and _code_taken(db, subject.establishment_id, data["code"], exclude_id=subject.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Subject code already exists")

    for key, value in data.items():
        setattr(subject, key, value)
    if data:
        log_activity(db, user=actor, action="subject.update", entity_type="subject", entity_id=subject.id, details=data)
    db.commit()
    db.refresh(subject)
    return subject


@router.delete("/{subject_id}")
def delete_subject(
    subject_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    subject = get_visible(db, actor, Subject, subject_id, "Subject")
    for model in (TimetableEntry, Exam, Homework):
        if db.execute(select(model.id).where(model.subject_id == subject.id).limit(1)).first() is not None:
            raise BusinessRuleError("Cannot delete subject that is still in use")
    log_activity(db, user=actor, action="subject.delete", entity_type="subject", entity_id=subject.id)
    db.delete(subject)
    db.commit()
    logger.info("Subject deleted: id=%s", subject_id)
    return {"success": True}
