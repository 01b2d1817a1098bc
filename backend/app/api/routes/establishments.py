import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import Actor, get_current_actor, get_db, require_roles
from app.db.bootstrap import seed_system_roles
from app.models.establishment import Establishment
from app.schemas.establishment import EstablishmentCreate, EstablishmentOut
from app.services.audit import log_activity
from app.services.authorization import SUPERADMIN_ROLE

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/", response_model=list[EstablishmentOut])
def list_establishments(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[EstablishmentOut]:
    query = select(Establishment).order_by(Establishment.name)
    if not actor.is_superadmin:
        query = query.where(Establishment.id == actor.establishment_id)
    return list(db.execute(query).scalars())


@router.post("/", response_model=EstablishmentOut, status_code=status.HTTP_201_CREATED)
def create_establishment(
    payload: EstablishmentCreate,
    actor: Actor = Depends(require_roles(SUPERADMIN_ROLE)),
    db: Session = Depends(get_db),
) -> EstablishmentOut:
    existing = db.execute(select(Establishment).where(Establishment.code == payload.code)).scalar_one_or_none()
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Establishment code already exists")

    establishment = Establishment(**payload.model_dump())
    db.add(establishment)
    db.flush()
    seeded = seed_system_roles(db, establishment.id)
    log_activity(
        db,
        user=actor,
        action="establishment.create",
        entity_type="establishment",
        entity_id=establishment.id,
        details={"code": establishment.code, "roles": seeded},
    )
    db.commit()
    db.refresh(establishment)
    logger.info("Establishment created: id=%s code=%s", establishment.id, establishment.code)
    return establishment
