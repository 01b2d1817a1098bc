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
    scoped_establishment_id,
)
from app.core.exceptions import BusinessRuleError
from app.models.school import Department, Teacher
from app.models.user import User
from app.schemas.school import DepartmentCreate, DepartmentOut, DepartmentUpdate
from app.services.audit import log_activity

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/", response_model=list[DepartmentOut])
def list_departments(
    establishment_id: int | None = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
) -> list[DepartmentOut]:
    scope = scoped_establishment_id(actor, establishment_id)
    query = select(Department).where(Department.establishment_id == scope).order_by(Department.name)
    return list(db.execute(query).scalars())


@router.post("/", response_model=DepartmentOut, status_code=status.HTTP_201_CREATED)
def create_department(
    payload: DepartmentCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> DepartmentOut:
    establishment_id = scoped_establishment_id(actor, payload.establishment_id)
    if payload.head_user_id is not None:
        get_in_establishment(db, User, payload.head_user_id, establishment_id, "User")
    department = Department(**payload.model_dump(exclude={"establishment_id"}), establishment_id=establishment_id)
    db.add(department)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="department.create",
        entity_type="department",
        entity_id=department.id,
        details={"name": department.name},
    )
    db.commit()
    db.refresh(department)
    logger.info("Department created: id=%s name=%s", department.id, department.name)
    return department


@router.put("/{department_id}", response_model=DepartmentOut)
def update_department(
    department_id: int,
    payload: DepartmentUpdate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> DepartmentOut:
    department = get_visible(db, actor, Department, department_id, "Department")
    data = payload.model_dump(exclude_unset=True)
    if data.get("head_user_id") is not None:
        get_in_establishment(db, User, data["head_user_id"], department.establishment_id, "User")

    for key, value in data.items():
        setattr(department, key, value)
    if data:
        log_activity(
            db,
            user=actor,
            action="department.update",
            entity_type="department",
            entity_id=department.id,
            details=data,
        )
    db.commit()
    db.refresh(department)
    return department


@router.delete("/{department_id}")
def delete_department(
    department_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    department = get_visible(db, actor, Department, department_id, "Department")
    assigned = db.execute(select(Teacher.id).where(Teacher.department_id == department.id).limit(1)).first()
    if assigned is not None:
        raise BusinessRuleError("Cannot delete department with assigned teachers")
    log_activity(db, user=actor, action="department.delete", entity_type="department", entity_id=department.id)
    db.delete(department)
    db.commit()
    logger.info("Department deleted: id=%s", department_id)
    return {"success": True}
