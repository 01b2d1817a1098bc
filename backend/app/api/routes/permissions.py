import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.api.deps import Actor, ensure_visible, get_db, require_admin_like, require_capability, scoped_establishment_id
from app.core.exceptions import BusinessRuleError, ResourceNotFoundError
from app.models.role import Permission, Role, RolePermission
from app.schemas.role import PermissionCreate, PermissionOut, PermissionUpdate, RoleOut
from app.services.audit import log_activity

router = APIRouter()
logger = logging.getLogger(__name__)


def _get_permission(db: Session, actor: Actor, permission_id: int) -> Permission:
    permission = db.get(Permission, permission_id)
    if permission is None:
        raise ResourceNotFoundError("Permission", permission_id)
    ensure_visible(actor, permission.establishment_id, "Permission", permission_id)
    return permission


def _functionality_taken(
    db: Session,
    functionality: str,
    establishment_id: int | None,
    exclude_id: int | None = None,
) -> bool:
    query = select(Permission.id).where(
        Permission.functionality == functionality,
        Permission.establishment_id == establishment_id,
    )
    if exclude_id is not None:
        query = query.where(Permission.id != exclude_id)
    return db.execute(query).first() is not None


@router.get("/", response_model=list[PermissionOut])
def list_permissions(
    establishment_id: int | None = None,
    actor: Actor = Depends(require_capability("permissions", "view")),
    db: Session = Depends(get_db),
) -> list[PermissionOut]:
    scope = scoped_establishment_id(actor, establishment_id)
    query = select(Permission).where(Permission.establishment_id == scope).order_by(Permission.functionality)
    return list(db.execute(query).scalars())


@router.post("/", response_model=PermissionOut, status_code=201)
def create_permission(
    payload: PermissionCreate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> PermissionOut:
    establishment_id = scoped_establishment_id(actor, payload.establishment_id)
    if _functionality_taken(db, payload.functionality, establishment_id):
        raise BusinessRuleError("Permission for this functionality already exists")

    permission = Permission(**payload.model_dump(exclude={"establishment_id"}), establishment_id=establishment_id)
    db.add(permission)
    db.flush()
    log_activity(
        db,
        user=actor,
        action="permission.create",
        entity_type="permission",
        entity_id=permission.id,
        details={"functionality": permission.functionality},
    )
    db.commit()
    db.refresh(permission)
    logger.info("Permission created: id=%s functionality=%s", permission.id, permission.functionality)
    return permission


@router.get("/{permission_id}", response_model=PermissionOut)
def get_permission(
    permission_id: int,
    actor: Actor = Depends(require_capability("permissions", "view")),
    db: Session = Depends(get_db),
) -> PermissionOut:
    return _get_permission(db, actor, permission_id)


@router.put("/{permission_id}", response_model=PermissionOut)
def update_permission(
    permission_id: int,
    payload: PermissionUpdate,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> PermissionOut:
    permission = _get_permission(db, actor, permission_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("functionality") is None:
        data.pop("functionality", None)
    elif _functionality_taken(db, data["functionality"], permission.establishment_id, exclude_id=permission.id):
        raise BusinessRuleError("Permission for this functionality already exists")

    for key, value in data.items():
        if value is not None:
            setattr(permission, key, value)
    if data:
        log_activity(
            db,
            user=actor,
            action="permission.update",
            entity_type="permission",
            entity_id=permission.id,
            details=data,
        )
    db.commit()
    db.refresh(permission)
    return permission


@router.delete("/{permission_id}")
def delete_permission(
    permission_id: int,
    actor: Actor = Depends(require_admin_like()),
    db: Session = Depends(get_db),
) -> dict:
    permission = _get_permission(db, actor, permission_id)
    assigned_count = db.execute(
        select(func.count(RolePermission.id)).where(RolePermission.permission_id == permission.id)
    ).scalar_one()
    if assigned_count:
        raise BusinessRuleError(
            f"Permission cannot be deleted as it is assigned to {assigned_count} role(s)",
            details={"assignedRoles": assigned_count},
        )
    log_activity(
        db,
        user=actor,
        action="permission.delete",
        entity_type="permission",
        entity_id=permission.id,
        details={"functionality": permission.functionality},
    )
    db.delete(permission)
    db.commit()
    logger.info("Permission deleted: id=%s", permission_id)
    return {"success": True}


@router.get("/{permission_id}/roles", response_model=list[RoleOut])
def list_permission_roles(
    permission_id: int,
    actor: Actor = Depends(require_capability("permissions", "view")),
    db: Session = Depends(get_db),
) -> list[RoleOut]:
    permission = _get_permission(db, actor, permission_id)
    return list(
        db.execute(
            select(Role)
            .join(RolePermission, RolePermission.role_id == Role.id)
            .where(RolePermission.permission_id == permission.id)
            .order_by(Role.name)
        ).scalars()
    )
