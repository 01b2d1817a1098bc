import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import Actor, get_current_actor, get_db, get_visible, require_admin_like, scoped_establishment_id
from app.core.exceptions import BusinessRuleError
from app.models.school import AcademicYear, SchoolClass
from app.models.timetable import TimetableEntry
from app.schemas.school import AcademicYearCreate, AcademicYearOut, AcademicYearUpdate
from app.services.audit import log_activity

router = APIRouter()
logger = logging.getLogger(__name__)


def _label_taken(db: Session, establishment_id: int, label: str, exclude_id: int | None = None) -> bool:
    query = select(AcademicYear.id).where(AcademicYear.establishment_id == establishment_id, AcademicYear.label == label)
    if exclude_id is not None:
        query = query.where(AcademicYear.id != exclude_id)
    return db.execute(query).first() is not None


@router.get("/", response_model=list[AcademicYearOut])
def list_academic_years(
    establishment_id: int | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[AcademicYearOut]:
    scope = scoped_establishment_id(actor, establishment_id)
    query = select(AcademicYear).where(AcademicYear.establishment_id == scope).order_by(AcademicYear.label)
    return list(db.execute(query).scalars())


@router.post("/", response_model=AcademicYearOut, status_code=status.HTTP_201_CREATED)
def create_academic_year(
    payload: AcademicYearCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> AcademicYearOut:
    establishment_id = scoped_establishment_id(actor, payload.establishment_id)
    if _label_taken(db, establishment_id, payload.label):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Academic year already exists")
    year = AcademicYear(**payload.model_dump(exclude={"establishment_id"}), establishment_id=establishment_id)
    db.add(year)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="academic_year.create",
        entity_type="academic_year",
        entity_id=year.id,
        details={"label": year.label},
    )
    db.commit()
    db.refresh(year)
    logger.info("Academic year created: id=%s label=%s", year.id, year.label)
    return year


@router.put("/{year_id}", response_model=AcademicYearOut)
def update_academic_year(
    year_id: int,
    payload: AcademicYearUpdate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> AcademicYearOut:
    year = get_visible(db, actor, AcademicYear, year_id, "Academic year")
    data = payload.model_dump(exclude_unset=True)
    if data.get("label") and _label_taken(db, year.establishment_id, data["label"], exclude_id=year.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Academic year already exists")
    starts_on = data.get("starts_on", year.starts_on)
    ends_on = data.get("ends_on", year.ends_on)
    if starts_on and ends_on and ends_on <= starts_on:
        raise BusinessRuleError("Academic year must end after it starts")

    for key, value in data.items():
        setattr(year, key, value)
    if data:
        log_activity(
            db,
            user=actor,
            action="academic_year.update",
            entity_type="academic_year",
            entity_id=year.id,
            details=payload.model_dump(mode="json", exclude_unset=True),
        )
    db.commit()
    db.refresh(year)
    return year


@router.delete("/{year_id}")
def delete_academic_year(
    year_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    year = get_visible(db, actor, AcademicYear, year_id, "Academic year")
    used_by_class = db.execute(select(SchoolClass.id).where(SchoolClass.academic_year_id == year.id).limit(1)).first()
    used_by_entry = db.execute(
        select(TimetableEntry.id).where(TimetableEntry.academic_year_id == year.id).limit(1)
    ).first()
    if used_by_class is not None or used_by_entry is not None:
        raise BusinessRuleError("Cannot delete academic year that is still in use")
    log_activity(db, user=actor, action="academic_year.delete", entity_type="academic_year", entity_id=year.id)
    db.delete(year)
    db.commit()
    logger.info("Academic year deleted: id=%s", year_id)
    return {"success": True}
