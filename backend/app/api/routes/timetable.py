import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.deps import (
    Actor,
    get_current_actor,
    get_db,
    get_in_establishment,
    require_admin_like,
    scoped_establishment_id,
)
from app.core.exceptions import BusinessRuleError, ResourceNotFoundError, TimetableConflictError
from app.models.room import Room
from app.models.school import AcademicYear, SchoolClass, Subject, Teacher
from app.models.timetable import TimetableEntry, TimetablePeriod
from app.schemas.timetable import (
    BulkEntryCreate,
    BulkEntryResponse,
    BulkEntryResultOut,
    EntryCreate,
    EntryOut,
    EntryUpdate,
    PeriodCreate,
    PeriodOut,
    PeriodUpdate,
    ScheduledEntryOut,
)
from app.services.audit import log_activity
from app.services.timetable_conflicts import (
    DAY_ORDER,
    REQUIRED_ENTRY_FIELDS,
    BulkEntryResult,
    BulkResultKind,
    ConflictReport,
    EntrySlot,
    ReferenceIndex,
    TimetableConflictDetector,
)

router = APIRouter()
logger = logging.getLogger(__name__)

PERIOD_OVERLAP_MESSAGE = "A period with overlapping time already exists for this day"
LATE_CONFLICT_MESSAGE = "Timetable entry conflicts with an existing entry"


def _get_period(db: Session, actor: Actor, period_id: int) -> TimetablePeriod:
    period = db.get(TimetablePeriod, period_id)
    if period is None or (not actor.is_superadmin and period.establishment_id != actor.establishment_id):
        raise ResourceNotFoundError("Period", period_id)
    return period


def _establishment_periods(db: Session, establishment_id: int, day_of_week: str) -> list[TimetablePeriod]:
    return list(
        db.execute(
            select(TimetablePeriod).where(
                TimetablePeriod.establishment_id == establishment_id,
                TimetablePeriod.day_of_week == day_of_week,
            )
        ).scalars()
    )


def _reference_index(db: Session, establishment_id: int) -> ReferenceIndex:
    def ids(model) -> frozenset[int]:
        return frozenset(db.execute(select(model.id).where(model.establishment_id == establishment_id)).scalars())

    return ReferenceIndex(
        class_ids=ids(SchoolClass),
        subject_ids=ids(Subject),
        teacher_ids=ids(Teacher),
        period_ids=ids(TimetablePeriod),
        room_ids=ids(Room),
    )


def _get_academic_year(db: Session, establishment_id: int, academic_year_id: int) -> AcademicYear:
    return get_in_establishment(db, AcademicYear, academic_year_id, establishment_id, "Academic year")


def _entry_detector(db: Session, academic_year_id: int, period_ids: set[int]) -> TimetableConflictDetector:
    if not period_ids:
        return TimetableConflictDetector()
    entries = db.execute(
        select(TimetableEntry).where(
            TimetableEntry.academic_year_id == academic_year_id,
            TimetableEntry.period_id.in_(period_ids),
        )
    ).scalars()
    return TimetableConflictDetector.from_models(entries=entries)


def _raise_conflict(report: ConflictReport) -> None:
    first = report.first
    logger.warning(
        "Timetable conflict: %s",
        ", ".join(f"{conflict.kind.value}={conflict.resource_id}" for conflict in report.conflicts),
    )
    raise TimetableConflictError(
        first.message,
        conflict_with=first.entry.to_dict(),
        conflicts=[conflict.to_dict() for conflict in report.conflicts],
    )


def _raise_late_conflict(db: Session, candidate: EntrySlot, exclude_entry_id: int | None = None) -> None:
    # A concurrent writer got past the pre-check; report what storage now holds.
    report = _entry_detector(db, candidate.academic_year_id, {candidate.period_id}).validate_entry_write(
        candidate, exclude_entry_id=exclude_entry_id
    )
    if not report.ok:
        _raise_conflict(report)
    raise TimetableConflictError(LATE_CONFLICT_MESSAGE)


def _scheduled(db: Session, *conditions) -> list[ScheduledEntryOut]:
    rows = db.execute(
        select(TimetableEntry, TimetablePeriod)
        .join(TimetablePeriod, TimetablePeriod.id == TimetableEntry.period_id)
        .where(*conditions)
    ).all()
    rows.sort(key=lambda row: (DAY_ORDER.get(row[1].day_of_week, 7), row[1].rank, row[1].start_time))
    return [
        ScheduledEntryOut(
            **EntryOut.model_validate(entry).model_dump(),
            day_of_week=period.day_of_week,
            start_time=period.start_time,
            end_time=period.end_time,
            period_name=period.name,
            rank=period.rank,
        )
        for entry, period in rows
    ]


@router.get("/periods", response_model=list[PeriodOut])
def list_periods(
    establishment_id: int | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[PeriodOut]:
    scope = scoped_establishment_id(actor, establishment_id)
    periods = list(
        db.execute(select(TimetablePeriod).where(TimetablePeriod.establishment_id == scope)).scalars()
    )
    periods.sort(key=lambda period: (DAY_ORDER.get(period.day_of_week, 7), period.rank, period.start_time))
    return periods


@router.post("/periods", response_model=PeriodOut, status_code=status.HTTP_201_CREATED)
def create_period(
    payload: PeriodCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> PeriodOut:
    establishment_id = scoped_establishment_id(actor, payload.establishment_id)
    detector = TimetableConflictDetector.from_models(
        periods=_establishment_periods(db, establishment_id, payload.day_of_week)
    )
    overlapping = detector.find_overlapping_periods(
        establishment_id, payload.day_of_week, payload.start_time, payload.end_time
    )
    if overlapping:
        raise TimetableConflictError(
            PERIOD_OVERLAP_MESSAGE,
            conflict_with=overlapping[0].to_dict(),
            conflicts=[period.to_dict() for period in overlapping],
        )

    period = TimetablePeriod(
        **payload.model_dump(exclude={"establishment_id"}),
        establishment_id=establishment_id,
        created_by_id=actor.id,
    )
    db.add(period)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="timetable.period.create",
        entity_type="timetable_period",
        entity_id=period.id,
        details={"day": period.day_of_week, "start": period.start_time, "end": period.end_time},
    )
    db.commit()
    db.refresh(period)
    logger.info(
        "Timetable period created: id=%s day=%s %s-%s",
        period.id,
        period.day_of_week,
        period.start_time,
        period.end_time,
    )
    return period


@router.put("/periods/{period_id}", response_model=PeriodOut)
def update_period(
    period_id: int,
    payload: PeriodUpdate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> PeriodOut:
    period = _get_period(db, actor, period_id)
    data = {key: value for key, value in payload.model_dump(exclude_unset=True).items() if value is not None}

    day_of_week = data.get("day_of_week", period.day_of_week)
    start_time = data.get("start_time", period.start_time)
    end_time = data.get("end_time", period.end_time)
    if {"day_of_week", "start_time", "end_time"} & data.keys():
        detector = TimetableConflictDetector.from_models(
            periods=_establishment_periods(db, period.establishment_id, day_of_week)
        )
        overlapping = detector.find_overlapping_periods(
            period.establishment_id, day_of_week, start_time, end_time, exclude_period_id=period.id
        )
        if overlapping:
            raise TimetableConflictError(
                PERIOD_OVERLAP_MESSAGE,
                conflict_with=overlapping[0].to_dict(),
                conflicts=[other.to_dict() for other in overlapping],
            )

    for key, value in data.items():
        setattr(period, key, value)
    if data:
        period.updated_by_id = actor.id
        log_activity(
            db,
            user=actor,
            action="timetable.period.update",
            entity_type="timetable_period",
            entity_id=period.id,
            details=data,
        )
    db.commit()
    db.refresh(period)
    return period


@router.delete("/periods/{period_id}")
def delete_period(
    period_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    period = _get_period(db, actor, period_id)
    in_use = db.execute(select(TimetableEntry.id).where(TimetableEntry.period_id == period.id).limit(1)).first()
    if in_use is not None:
        raise BusinessRuleError("Cannot delete period that is used in timetables")
    log_activity(db, user=actor, action="timetable.period.delete", entity_type="timetable_period", entity_id=period.id)
    db.delete(period)
    db.commit()
    logger.info("Timetable period deleted: id=%s", period_id)
    return {"success": True}


@router.get("/classes/{class_id}", response_model=list[ScheduledEntryOut])
def class_timetable(
    class_id: int,
    academic_year_id: int | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[ScheduledEntryOut]:
    school_class = db.get(SchoolClass, class_id)
    if school_class is None or (not actor.is_superadmin and school_class.establishment_id != actor.establishment_id):
        raise ResourceNotFoundError("Class", class_id)
    conditions = [TimetableEntry.class_id == class_id]
    if academic_year_id is not None:
        conditions.append(TimetableEntry.academic_year_id == academic_year_id)
    return _scheduled(db, *conditions)


@router.get("/teachers/{teacher_id}", response_model=list[ScheduledEntryOut])
def teacher_timetable(
    teacher_id: int,
    academic_year_id: int | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[ScheduledEntryOut]:
    teacher = db.get(Teacher, teacher_id)
    if teacher is None or (not actor.is_superadmin and teacher.establishment_id != actor.establishment_id):
        raise ResourceNotFoundError("Teacher", teacher_id)
    conditions = [TimetableEntry.teacher_id == teacher_id]
    if academic_year_id is not None:
        conditions.append(TimetableEntry.academic_year_id == academic_year_id)
    return _scheduled(db, *conditions)


@router.post("/entries", response_model=EntryOut, status_code=status.HTTP_201_CREATED)
def create_entry(
    payload: EntryCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> EntryOut:
    establishment_id = scoped_establishment_id(actor)
    _get_academic_year(db, establishment_id, payload.academic_year_id)
    candidate = EntrySlot(**payload.model_dump())

    missing = _reference_index(db, establishment_id).missing_reference(candidate)
    if missing is not None:
        raise ResourceNotFoundError(missing.resource_type, missing.resource_id)

    report = _entry_detector(db, candidate.academic_year_id, {candidate.period_id}).validate_entry_write(candidate)
    if not report.ok:
        _raise_conflict(report)

    entry = TimetableEntry(**payload.model_dump(), created_by_id=actor.id)
    db.add(entry)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        _raise_late_conflict(db, candidate)
    log_activity(
        db,
        user=actor,
        action="timetable.entry.create",
        entity_type="timetable_entry",
        entity_id=entry.id,
        details=candidate.to_dict(),
    )
    db.commit()
    db.refresh(entry)
    logger.info(
        "Timetable entry created: id=%s class=%s teacher=%s period=%s room=%s",
        entry.id,
        entry.class_id,
        entry.teacher_id,
        entry.period_id,
        entry.room_id,
    )
    return entry


@router.put("/entries/{entry_id}", response_model=EntryOut)
def update_entry(
    entry_id: int,
    payload: EntryUpdate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> EntryOut:
    establishment_id = scoped_establishment_id(actor)
    entry = db.get(TimetableEntry, entry_id)
    references = _reference_index(db, establishment_id)
    if entry is None or entry.class_id not in references.class_ids:
        raise ResourceNotFoundError("Timetable entry", entry_id)

    changes = payload.model_dump(exclude_unset=True)
    cleared = [name for name in REQUIRED_ENTRY_FIELDS if name in changes and changes[name] is None]
    if cleared:
        raise BusinessRuleError(f"Required fields cannot be cleared: {', '.join(cleared)}")

    existing = EntrySlot.from_model(entry)
    updated = existing.merged(changes)
    missing = references.missing_reference(updated)
    if missing is not None:
        raise ResourceNotFoundError(missing.resource_type, missing.resource_id)

    detector = _entry_detector(db, updated.academic_year_id, {updated.period_id})
    report = detector.validate_entry_update(existing, changes)
    if not report.ok:
        _raise_conflict(report)

    for key, value in changes.items():
        setattr(entry, key, value)
    if changes:
        entry.updated_by_id = actor.id
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            _raise_late_conflict(db, updated, exclude_entry_id=entry_id)
        log_activity(
            db,
            user=actor,
            action="timetable.entry.update",
            entity_type="timetable_entry",
            entity_id=entry_id,
            details=changes,
        )
    db.commit()
    db.refresh(entry)
    logger.info("Timetable entry updated: id=%s fields=%s", entry_id, sorted(changes))
    return entry


@router.delete("/entries/{entry_id}")
def delete_entry(
    entry_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    establishment_id = scoped_establishment_id(actor)
    entry = db.get(TimetableEntry, entry_id)
    if entry is None or entry.class_id not in _reference_index(db, establishment_id).class_ids:
        raise ResourceNotFoundError("Timetable entry", entry_id)
    log_activity(
        db,
        user=actor,
        action="timetable.entry.delete",
        entity_type="timetable_entry",
        entity_id=entry_id,
        details=EntrySlot.from_model(entry).to_dict(),
    )
    db.delete(entry)
    db.commit()
    logger.info("Timetable entry deleted: id=%s", entry_id)
    return {"success": True}


def _bulk_result_out(result: BulkEntryResult, entry: TimetableEntry | None = None) -> BulkEntryResultOut:
    if entry is not None:
        entry_payload = EntryOut.model_validate(entry).model_dump(mode="json")
    elif result.candidate is not None:
        entry_payload = result.candidate.to_dict()
    else:
        entry_payload = None
    return BulkEntryResultOut(
        index=result.index,
        success=result.success,
        kind=result.kind.value,
        error=result.error,
        entry=entry_payload,
        conflictWith=result.conflict_with.to_dict() if result.conflict_with is not None else None,
    )


@router.post("/entries/bulk", response_model=BulkEntryResponse)
def bulk_create_entries(
    payload: BulkEntryCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> BulkEntryResponse:
    establishment_id = scoped_establishment_id(actor)
    _get_academic_year(db, establishment_id, payload.academic_year_id)
    candidates = [item.model_dump() for item in payload.entries]
    period_ids = {item["period_id"] for item in candidates if item["period_id"] is not None}

    detector = _entry_detector(db, payload.academic_year_id, period_ids)
    results = detector.bulk_validate(candidates, payload.academic_year_id, _reference_index(db, establishment_id))

    outputs: list[BulkEntryResultOut] = []
    for result in results:
        if not result.success:
            outputs.append(_bulk_result_out(result))
            continue
        fields = {key: value for key, value in result.candidate.to_dict().items() if key != "id"}
        entry = TimetableEntry(**fields, created_by_id=actor.id)
        db.add(entry)
        try:
            # Each candidate is committed on its own so a late clash only drops that candidate.
            db.commit()
        except IntegrityError:
            db.rollback()
            late = _entry_detector(db, payload.academic_year_id, {result.candidate.period_id}).validate_entry_write(
                result.candidate
            )
            outputs.append(
                _bulk_result_out(
                    BulkEntryResult(
                        index=result.index,
                        kind=BulkResultKind.conflict,
                        candidate=result.candidate,
                        error=late.message or LATE_CONFLICT_MESSAGE,
                        conflict_with=late.first.entry if late.first else None,
                        conflicts=late.conflicts,
                    )
                )
            )
            continue
        outputs.append(_bulk_result_out(result, entry))

    success_count = sum(1 for item in outputs if item.success)
    if success_count:
        log_activity(
            db,
            user=actor,
            action="timetable.entry.bulk_create",
            entity_type="timetable_entry",
            details={"academic_year_id": payload.academic_year_id, "created": success_count},
        )
    db.commit()
    logger.info(
        "Bulk timetable create: total=%s success=%s failure=%s",
        len(outputs),
        success_count,
        len(outputs) - success_count,
    )
    return BulkEntryResponse(
        totalEntries=len(outputs),
        successCount=success_count,
        failureCount=len(outputs) - success_count,
        results=outputs,
    )
