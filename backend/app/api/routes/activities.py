import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.api.deps import (
    Actor,
    get_current_actor,
    get_db,
    get_in_establishment,
    get_visible,
    require_roles,
    scoped_establishment_id,
)
from app.core.exceptions import BusinessRuleError, PermissionDeniedError, ResourceNotFoundError
from app.models.activity import Activity, ActivityParticipant, ActivityStatus
from app.models.school import AcademicYear, Student
from app.models.user import User
from app.schemas.activity import (
    ActivityCreate,
    ActivityOut,
    ActivityParticipantAdd,
    ActivityParticipantOut,
    ActivityUpdate,
)
from app.services.audit import log_activity
from app.services.authorization import ADMIN_LIKE_ROLES, TEACHING_ROLES, can_manage_own_resource

router = APIRouter()
logger = logging.getLogger(__name__)

require_teaching_staff = require_roles(*TEACHING_ROLES, *ADMIN_LIKE_ROLES)


def _require_responsible(actor: Actor, activity: Activity) -> None:
    if not can_manage_own_resource(actor.id, activity.responsible_user_id, actor.roles):
        logger.warning("Activity ownership check denied: activity=%s user=%s", activity.id, actor.id)
        raise PermissionDeniedError("Only the responsible staff member can manage this activity", code="not_owner")


def _participant_count(db: Session, activity_id: int) -> int:
    query = select(func.count(ActivityParticipant.id)).where(ActivityParticipant.activity_id == activity_id)
    return db.execute(query).scalar_one()


@router.get("/", response_model=list[ActivityOut])
def list_activities(
    include_archived: bool = False,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[ActivityOut]:
    query = select(Activity).order_by(Activity.name)
    if not actor.is_superadmin:
        query = query.where(Activity.establishment_id == actor.establishment_id)
    if not include_archived:
        query = query.where(Activity.status == ActivityStatus.active)
    return list(db.execute(query).scalars())


@router.get("/{activity_id}", response_model=ActivityOut)
def get_activity(
    activity_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> ActivityOut:
    return get_visible(db, actor, Activity, activity_id, "Activity")


@router.post("/", response_model=ActivityOut, status_code=status.HTTP_201_CREATED)
def create_activity(
    payload: ActivityCreate,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> ActivityOut:
    establishment_id = scoped_establishment_id(actor)
    responsible_id = payload.responsible_user_id or actor.id
    get_in_establishment(db, User, responsible_id, establishment_id, "User")
    if payload.academic_year_id is not None:
        get_in_establishment(db, AcademicYear, payload.academic_year_id, establishment_id, "Academic year")

    activity = Activity(
        **payload.model_dump(exclude={"responsible_user_id"}),
        responsible_user_id=responsible_id,
        establishment_id=establishment_id,
        created_by_id=actor.id,
    )
    db.add(activity)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="activity.create",
        entity_type="activity",
        entity_id=activity.id,
        details={"name": activity.name},
    )
    db.commit()
    db.refresh(activity)
    logger.info("Activity created: id=%s responsible=%s", activity.id, responsible_id)
    return activity


@router.put("/{activity_id}", response_model=ActivityOut)
def update_activity(
    activity_id: int,
    payload: ActivityUpdate,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> ActivityOut:
    activity = get_visible(db, actor, Activity, activity_id, "Activity")
    _require_responsible(actor, activity)
    data = payload.model_dump(exclude_unset=True)
    if data.get("responsible_user_id") is not None:
        get_in_establishment(db, User, data["responsible_user_id"], activity.establishment_id, "User")
    starts_on = data.get("starts_on", activity.starts_on)
    ends_on = data.get("ends_on", activity.ends_on)
    if starts_on and ends_on and ends_on < starts_on:
        raise BusinessRuleError("Activity cannot end before it starts")
    if data.get("max_participants") is not None:
        enrolled = _participant_count(db, activity.id)
        if enrolled > data["max_participants"]:
            raise BusinessRuleError(
                "Activity already has more participants than the new maximum",
                details={"participants": enrolled},
            )

    for key, value in data.items():
        setattr(activity, key, value)
    if data:
        log_activity(
            db,
            user=actor,
            action="activity.update",
            entity_type="activity",
            entity_id=activity.id,
            details=payload.model_dump(mode="json", exclude_unset=True),
        )
    db.commit()
    db.refresh(activity)
    return activity


@router.delete("/{activity_id}")
def archive_activity(
    activity_id: int,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> dict:
    activity = get_visible(db, actor, Activity, activity_id, "Activity")
    _require_responsible(actor, activity)
    # Participation history is kept; the activity only leaves the active list.
    activity.status = ActivityStatus.archived
    log_activity(db, user=actor, action="activity.archive", entity_type="activity", entity_id=activity.id)
    db.commit()
    logger.info("Activity archived: id=%s by=%s", activity_id, actor.id)
    return {"success": True}


@router.get("/{activity_id}/participants", response_model=list[ActivityParticipantOut])
def list_participants(
    activity_id: int,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> list[ActivityParticipantOut]:
    activity = get_visible(db, actor, Activity, activity_id, "Activity")
    query = (
        select(ActivityParticipant)
        .where(ActivityParticipant.activity_id == activity.id)
        .order_by(ActivityParticipant.joined_at, ActivityParticipant.id)
    )
    return list(db.execute(query).scalars())


@router.post(
    "/{activity_id}/participants",
    response_model=ActivityParticipantOut,
    status_code=status.HTTP_201_CREATED,
)
def add_participant(
    activity_id: int,
    payload: ActivityParticipantAdd,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> ActivityParticipantOut:
    activity = get_visible(db, actor, Activity, activity_id, "Activity")
    _require_responsible(actor, activity)
    if activity.status != ActivityStatus.active:
        raise BusinessRuleError("Activity is archived")
    student = get_in_establishment(db, Student, payload.student_id, activity.establishment_id, "Student")
    existing = db.execute(
        select(ActivityParticipant.id).where(
            ActivityParticipant.activity_id == activity.id,
            ActivityParticipant.student_id == student.id,
        )
    ).first()
    if existing is not None:
        raise BusinessRuleError("Student is already a participant")
    if activity.max_participants and _participant_count(db, activity.id) >= activity.max_participants:
        raise BusinessRuleError("Activity has reached maximum number of participants")

    participant = ActivityParticipant(activity_id=activity.id, student_id=student.id)
    db.add(participant)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="activity.add_participant",
        entity_type="activity",
        entity_id=activity.id,
        details={"student_id": student.id},
    )
    db.commit()
    db.refresh(participant)
    return participant


@router.delete("/{activity_id}/participants/{student_id}")
def remove_participant(
    activity_id: int,
    student_id: int,
    actor: Actor = Depends(require_teaching_staff),
    db: Session = Depends(get_db),
) -> dict:
    activity = get_visible(db, actor, Activity, activity_id, "Activity")
    _require_responsible(actor, activity)
    participant = db.execute(
        select(ActivityParticipant).where(
            ActivityParticipant.activity_id == activity.id,
            ActivityParticipant.student_id == student_id,
        )
    ).scalar_one_or_none()
    if participant is None:
        raise ResourceNotFoundError("Participant", student_id)
    log_activity(
        db,
        user=actor,
        action="activity.remove_participant",
        entity_type="activity",
        entity_id=activity.id,
        details={"student_id": student_id},
    )
    db.delete(participant)
    db.commit()
    return {"success": True}
